from __future__ import annotations

import logging
from threading import Lock, get_ident
from typing import Callable

from inmogestor.application.cloud_mirror import CloudMirror
from inmogestor.application.local_store import LocalStore
from inmogestor.bootstrap.logging import log_operational_error
from inmogestor.core.metrics import (
    ERRORES_SYNC,
    PULLS_EJECUTADOS,
    PUSHES_EJECUTADOS,
    PUSHES_OMITIDOS,
    SNAPSHOTS_APLICADOS,
    metrics_registry,
)
from inmogestor.core.observability import OperationContext, log_event
from inmogestor.domain.cloud_errors import CloudConfigError, CloudServiceError, CloudUnavailableError
from inmogestor.domain.collections import MIRRORED_COLLECTIONS, REMOTE_SETTINGS, Collection
from inmogestor.domain.ports import NotifierPort, ScheduledTask, SchedulerPort, SubscriptionHandle
from inmogestor.domain.sync_models import (
    PushResult,
    RemoteSnapshot,
    SyncResult,
    SyncSession,
    SyncState,
    SyncStatus,
)

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 2.0

CLOUD_ERRORS = (CloudConfigError, CloudServiceError, CloudUnavailableError)

ApplyListener = Callable[[tuple[str, ...]], None]


class SyncCoordinator:
    """Decide cuándo el estado remoto sustituye al local y cuándo se sube el local.

    Política de conflicto: el documento entero gana o pierde según un único
    `lastSync`. Dos dispositivos que escriben dentro de la misma ventana se
    pisan; un borrado local sin subir reaparece tras el siguiente pull.
    """

    def __init__(
        self,
        session: SyncSession,
        local_store: LocalStore,
        mirror: CloudMirror,
        scheduler: SchedulerPort,
        notifier: NotifierPort,
        *,
        debounce_seconds: float = DEBOUNCE_SECONDS,
    ) -> None:
        self._session = session
        self._local_store = local_store
        self._mirror = mirror
        self._scheduler = scheduler
        self._notifier = notifier
        self._debounce_seconds = debounce_seconds
        self._push_task: ScheduledTask | None = None
        self._subscription: SubscriptionHandle | None = None
        self._apply_listeners: list[ApplyListener] = []
        self._flags_lock = Lock()
        local_store.add_mutation_listener(self._on_local_mutation)

    @property
    def session(self) -> SyncSession:
        return self._session

    def add_apply_listener(self, listener: ApplyListener) -> None:
        self._apply_listeners.append(listener)

    # -- arranque ------------------------------------------------------------------

    def enable_cloud(self) -> None:
        self._session.cloud_enabled = True

    def init_cloud(self, *, subscribe: bool = True) -> SyncResult:
        """Activa la nube, hace el pull de arranque y engancha la suscripción."""
        self.enable_cloud()
        with OperationContext("init_cloud", owner_id=self._session.owner_id):
            result = self.sync_from_cloud()
            if subscribe and self._subscription is None:
                try:
                    self._subscription = self._mirror.subscribe(self.handle_remote_snapshot)
                except CLOUD_ERRORS as exc:
                    self._fail("subscribe", exc)
        return result

    def sync_from_cloud(self) -> SyncResult:
        """Pull de arranque: aplica si el local está vacío o si el `lastSync` remoto cambió."""
        if not self._session.cloud_enabled:
            return SyncResult(state=SyncState.IDLE, reason="cloud_disabled")
        with OperationContext("sync_from_cloud", owner_id=self._session.owner_id):
            snapshot, error = self._pull()
            if error:
                return SyncResult(state=SyncState.IDLE, reason="error")
            if snapshot is None:
                return self._finish_unchanged("no_remote_document")

            local_empty = not self._local_store.get_raw(Collection.PROPERTIES)
            if local_empty and snapshot.properties:
                return self._apply_and_finish(snapshot, reason="local_empty")
            if snapshot.last_sync != self._local_store.get_last_sync():
                return self._apply_and_finish(snapshot, reason="remote_changed")
            return self._finish_unchanged("same_last_sync")

    def manual_sync(self) -> SyncResult:
        """Pull forzado: aplica lo que haya en remoto sin mirar marcas de tiempo."""
        with OperationContext("manual_sync", owner_id=self._session.owner_id):
            snapshot, error = self._pull()
            if error:
                return SyncResult(state=SyncState.IDLE, reason="error")
            if snapshot is None:
                return self._finish_unchanged("no_remote_document")
            return self._apply_and_finish(snapshot, reason="forced")

    # -- notificaciones remotas ----------------------------------------------------

    def handle_remote_snapshot(self, snapshot: RemoteSnapshot) -> SyncResult:
        with OperationContext("remote_snapshot", owner_id=self._session.owner_id):
            if snapshot.last_sync == self._local_store.get_last_sync():
                logger.debug("Snapshot remoto ya aplicado: %s", snapshot.last_sync)
                return SyncResult(state=SyncState.UNCHANGED, last_sync=snapshot.last_sync, reason="same_last_sync")
            self._set_state(SyncState.PULLING)
            return self._apply_and_finish(snapshot, reason="remote_changed")

    def apply_remote(self, snapshot: RemoteSnapshot) -> tuple[str, ...]:
        """Sustituye en bloque cada clave presente en el documento remoto.

        Las claves ausentes no se tocan. Nunca programa una subida de lo que
        aplica; un cambio local hecho desde otro hilo mientras tanto queda
        pendiente y se programa al terminar.
        """
        applied: list[str] = []
        with self._flags_lock:
            self._session.applying_thread = get_ident()
        try:
            for collection in MIRRORED_COLLECTIONS:
                value = snapshot.data.get(collection.remote_key)
                if value is None:
                    continue
                if not isinstance(value, list):
                    logger.warning("Clave remota %s ignorada: no es una lista", collection.remote_key)
                    continue
                self._local_store.replace_collection(collection, [item for item in value if isinstance(item, dict)])
                applied.append(collection.remote_key)
            settings = snapshot.data.get(REMOTE_SETTINGS)
            if isinstance(settings, dict):
                self._local_store.replace_settings(settings)
                applied.append(REMOTE_SETTINGS)
            if snapshot.last_sync:
                self._local_store.set_last_sync(snapshot.last_sync)
        finally:
            with self._flags_lock:
                self._session.applying_thread = None
                push_owed, self._session.push_owed = self._session.push_owed, False

        metrics_registry.incrementar(SNAPSHOTS_APLICADOS)
        log_event(logger, "remote_snapshot_applied", {"keys": applied, "last_sync": snapshot.last_sync})
        keys = tuple(applied)
        if push_owed:
            self.schedule_push()
        for listener in list(self._apply_listeners):
            listener(keys)
        return keys

    # -- subidas -------------------------------------------------------------------

    def schedule_push(self) -> ScheduledTask | None:
        if not self._session.cloud_enabled:
            return None
        if self._deferred_by_apply():
            return None
        if self._session.is_delegated:
            logger.debug("Sesión delegada: no se suben snapshots")
            return None
        if self._push_task is not None and self._push_task.active:
            self._push_task.cancel()
        self._push_task = self._scheduler.schedule(self._debounce_seconds, self._run_scheduled_push)
        self._set_state(SyncState.PENDING_PUSH)
        return self._push_task

    def push_now(self) -> PushResult:
        if not self._session.cloud_enabled:
            return PushResult(pushed=False, reason="cloud_disabled")
        if self._session.is_delegated:
            return PushResult(pushed=False, reason="delegated")
        if self._deferred_by_apply():
            return PushResult(pushed=False, reason="applying_remote")
        with self._flags_lock:
            if self._session.push_in_flight:
                metrics_registry.incrementar(PUSHES_OMITIDOS)
                return PushResult(pushed=False, reason="in_flight")
            self._session.push_in_flight = True

        with OperationContext("push", owner_id=self._session.owner_id):
            self._set_state(SyncState.PUSHING)
            self._publish_status(SyncStatus.SYNCING)
            try:
                last_sync = self._mirror.push()
            except CLOUD_ERRORS as exc:
                self._fail("push", exc)
                return PushResult(pushed=False, reason="error")
            finally:
                self._session.push_in_flight = False
                self._settle_state()

        metrics_registry.incrementar(PUSHES_EJECUTADOS)
        self._session.last_error = None
        self._publish_status(SyncStatus.SYNCED)
        return PushResult(pushed=True, last_sync=last_sync)

    def shutdown(self) -> None:
        if self._push_task is not None:
            self._push_task.cancel()
            self._push_task = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._local_store.remove_mutation_listener(self._on_local_mutation)
        self._session.cloud_enabled = False
        self._set_state(SyncState.IDLE)
        self._publish_status(SyncStatus.OFFLINE)

    # -- internos ------------------------------------------------------------------

    def _deferred_by_apply(self) -> bool:
        """Durante un `apply_remote` no se sube nada.

        Lo que llega desde el propio hilo que aplica es eco del remoto y se
        descarta; lo que llega desde otro hilo es un cambio del usuario y se
        deja anotado para subirlo al terminar.
        """
        with self._flags_lock:
            applying_thread = self._session.applying_thread
            if applying_thread is None:
                return False
            if applying_thread != get_ident():
                self._session.push_owed = True
                logger.debug("Subida aplazada hasta terminar de aplicar el snapshot remoto")
                return True
        metrics_registry.incrementar(PUSHES_OMITIDOS)
        return True

    def _on_local_mutation(self, _remote_key: str) -> None:
        self.schedule_push()

    def _run_scheduled_push(self) -> None:
        self._push_task = None
        if self._session.push_in_flight:
            # La subida en curso lleva datos anteriores a esta ráfaga.
            self.schedule_push()
            return
        self.push_now()

    def _pull(self) -> tuple[RemoteSnapshot | None, bool]:
        self._set_state(SyncState.PULLING)
        self._publish_status(SyncStatus.SYNCING)
        try:
            snapshot = self._mirror.pull()
        except CLOUD_ERRORS as exc:
            self._fail("pull", exc)
            return None, True
        metrics_registry.incrementar(PULLS_EJECUTADOS)
        return snapshot, False

    def _apply_and_finish(self, snapshot: RemoteSnapshot, *, reason: str) -> SyncResult:
        keys = self.apply_remote(snapshot)
        self._set_state(SyncState.APPLIED)
        self._settle_state()
        self._publish_status(SyncStatus.SYNCED)
        return SyncResult(
            state=SyncState.APPLIED,
            applied=True,
            last_sync=snapshot.last_sync,
            reason=reason,
            collections=keys,
        )

    def _finish_unchanged(self, reason: str) -> SyncResult:
        self._set_state(SyncState.UNCHANGED)
        self._set_state(SyncState.IDLE)
        self._publish_status(SyncStatus.SYNCED)
        return SyncResult(state=SyncState.UNCHANGED, last_sync=self._local_store.get_last_sync(), reason=reason)

    def _fail(self, operation: str, exc: Exception) -> None:
        self._session.last_error = str(exc)
        metrics_registry.incrementar(ERRORES_SYNC)
        log_operational_error(
            logger,
            f"Fallo de sincronización en {operation}",
            exc=exc,
            extra={"owner_id": self._session.owner_id, "error_type": type(exc).__name__},
        )
        self._set_state(SyncState.IDLE)
        self._publish_status(SyncStatus.ERROR)
        self._notifier.notify(f"Error de sincronización: {exc}", "error")

    def _settle_state(self) -> None:
        if self._push_task is not None and self._push_task.active:
            self._set_state(SyncState.PENDING_PUSH)
        else:
            self._set_state(SyncState.IDLE)

    def _set_state(self, state: SyncState) -> None:
        if self._session.state is not state:
            logger.debug("Sync %s -> %s", self._session.state.value, state.value)
        self._session.state = state

    def _publish_status(self, status: SyncStatus) -> None:
        self._session.status = status
        self._notifier.update_sync_status(status)
