from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from inmogestor.application.local_store import LocalStore
from inmogestor.core.metrics import medir_tiempo
from inmogestor.domain.collections import REMOTE_LAST_SYNC, REMOTE_PENDING
from inmogestor.domain.models import PendingApproval, to_wire
from inmogestor.domain.ports import CloudDocumentPort, SubscriptionHandle
from inmogestor.domain.services import Clock, now_iso, utc_now
from inmogestor.domain.sync_models import RemoteSnapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[RemoteSnapshot], None]


class CloudMirror:
    """Espejo remoto del snapshot local para un propietario.

    Los errores de la nube (`inmogestor.domain.cloud_errors`) se propagan; es el
    coordinador quien decide absorberlos.
    """

    def __init__(
        self,
        document_port: CloudDocumentPort,
        local_store: LocalStore,
        owner_id: str,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._document_port = document_port
        self._local_store = local_store
        self._owner_id = owner_id
        self._clock = clock

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @medir_tiempo("cloud_mirror.push")
    def push(self) -> str:
        """Sube el snapshot local y devuelve el `lastSync` que lo identifica.

        La marca se guarda en local antes de escribir para que el eco de la
        propia escritura en la suscripción no se confunda con un cambio ajeno.
        """
        data = self._local_store.snapshot()
        last_sync = now_iso(self._clock)
        data[REMOTE_LAST_SYNC] = last_sync
        previous = self._local_store.get_last_sync()
        self._local_store.set_last_sync(last_sync)
        try:
            self._document_port.write_fields(self._owner_id, data)
        except Exception:
            self._local_store.set_last_sync(previous)
            raise
        logger.info(
            "Snapshot subido a la nube",
            extra={"extra": {"owner_id": self._owner_id, "last_sync": last_sync, "keys": sorted(data)}},
        )
        return last_sync

    @medir_tiempo("cloud_mirror.pull")
    def pull(self) -> RemoteSnapshot | None:
        data = self._document_port.read(self._owner_id)
        if data is None:
            logger.info("El documento remoto aún no existe", extra={"extra": {"owner_id": self._owner_id}})
            return None
        return RemoteSnapshot(data)

    def subscribe(self, callback: SnapshotCallback) -> SubscriptionHandle:
        def _on_change(data: dict[str, Any] | None) -> None:
            if data is None:
                return
            callback(RemoteSnapshot(data))

        return self._document_port.subscribe(self._owner_id, _on_change)

    def append_pending(self, entries: Iterable[PendingApproval | Mapping[str, Any]]) -> None:
        payload = [to_wire(entry) if isinstance(entry, PendingApproval) else dict(entry) for entry in entries]
        self._document_port.append_pending(self._owner_id, payload)

    def read_pending(self) -> list[dict[str, Any]]:
        snapshot = self.pull()
        if snapshot is None:
            return []
        return [entry for entry in snapshot.pending_approvals if isinstance(entry, dict)]

    def write_pending(self, pending: list[dict[str, Any]], extra_fields: Mapping[str, Any] | None = None) -> None:
        data: dict[str, Any] = dict(extra_fields or {})
        data[REMOTE_PENDING] = list(pending)
        self._document_port.write_fields(self._owner_id, data)
