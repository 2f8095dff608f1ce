from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Mapping

from inmogestor.application.local_store import LocalStore
from inmogestor.bootstrap.logging import log_operational_error
from inmogestor.core.errors import ImportValidationError
from inmogestor.domain.collections import MIRRORED_COLLECTIONS, REMOTE_SETTINGS, Collection
from inmogestor.domain.services import Clock, now_iso, utc_now
from inmogestor.domain.sync_models import ImportPreview, ImportResult

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
BACKUP_FILENAME_TEMPLATE = "InmoGestorPro_Backup_{date}.json"

ImportConfirmation = Callable[[ImportPreview], bool]

RECOGNIZED_KEYS: tuple[str, ...] = (*(collection.remote_key for collection in MIRRORED_COLLECTIONS), REMOTE_SETTINGS)


class BackupService:
    def __init__(self, local_store: LocalStore, *, clock: Clock = utc_now) -> None:
        self._local_store = local_store
        self._clock = clock

    def export_data(self) -> dict[str, Any]:
        payload = self._local_store.snapshot()
        payload[Collection.ACTIVITIES.remote_key] = self._local_store.get_raw(Collection.ACTIVITIES)
        payload["exportedAt"] = now_iso(self._clock)
        payload["version"] = BACKUP_VERSION
        return payload

    def default_filename(self) -> str:
        return BACKUP_FILENAME_TEMPLATE.format(date=self._clock().date().isoformat())

    def export_to_file(self, path: Path | None = None) -> Path:
        target = path or Path.cwd() / self.default_filename()
        if target.is_dir():
            target = target / self.default_filename()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.export_data(), indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Backup exportado", extra={"extra": {"path": str(target)}})
        return target

    def preview(self, payload: Mapping[str, Any]) -> ImportPreview:
        """Valida el fichero completo antes de tocar nada y cuenta registros por colección."""
        if not isinstance(payload, Mapping) or not any(key in payload for key in RECOGNIZED_KEYS):
            raise ImportValidationError("Archivo inválido: no contiene ninguna colección reconocida")
        counts: dict[str, int] = {}
        for collection in MIRRORED_COLLECTIONS:
            if collection.remote_key not in payload:
                continue
            value = payload[collection.remote_key]
            if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
                raise ImportValidationError(f"Archivo inválido: '{collection.remote_key}' debe ser una lista de registros")
            counts[collection.remote_key] = len(value)
        if REMOTE_SETTINGS in payload and not isinstance(payload[REMOTE_SETTINGS], Mapping):
            raise ImportValidationError("Archivo inválido: 'settings' debe ser un objeto")
        return ImportPreview(counts=counts)

    def import_data(self, payload: Mapping[str, Any], confirm: ImportConfirmation) -> ImportResult:
        """Reemplaza todas las colecciones presentes. Destructivo: exige confirmación."""
        preview = self.preview(payload)
        if not confirm(preview):
            logger.info("Importación cancelada por el usuario")
            return ImportResult(imported=False, counts=preview.counts, reason="cancelled")

        changed: list[str] = []
        for collection in MIRRORED_COLLECTIONS:
            if collection.remote_key not in payload:
                continue
            if not self._local_store.replace_collection(collection, list(payload[collection.remote_key])):
                return self._persist_failed(preview, collection.remote_key, changed)
            changed.append(collection.remote_key)
        if REMOTE_SETTINGS in payload:
            if not self._local_store.replace_settings(payload[REMOTE_SETTINGS]):
                return self._persist_failed(preview, REMOTE_SETTINGS, changed)
            changed.append(REMOTE_SETTINGS)

        for remote_key in changed:
            self._local_store.emit_mutation(remote_key)
        logger.info("Backup importado", extra={"extra": {"counts": preview.counts}})
        return ImportResult(imported=True, counts=preview.counts)

    def _persist_failed(self, preview: ImportPreview, failed_key: str, changed: list[str]) -> ImportResult:
        # Lo ya reemplazado se queda en local pero no se sube: la nube conserva el estado previo.
        log_operational_error(
            logger,
            "Importación interrumpida: no se pudo guardar una colección",
            extra={"failed": failed_key, "replaced": changed},
        )
        return ImportResult(imported=False, counts=preview.counts, reason="persist_failed")

    def import_from_file(self, path: Path, confirm: ImportConfirmation) -> ImportResult:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ImportValidationError(f"Archivo inválido: JSON mal formado ({exc.msg})") from exc
        except OSError as exc:
            raise ImportValidationError(f"No se pudo leer {path}: {exc}") from exc
        return self.import_data(payload, confirm)
