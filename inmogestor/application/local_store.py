from __future__ import annotations

import json
import logging
from threading import RLock
from typing import Any, Callable, Mapping

from inmogestor.bootstrap.logging import log_operational_error
from inmogestor.core.errors import PersistenceError
from inmogestor.core.metrics import ESCRITURAS_FALLIDAS, metrics_registry
from inmogestor.domain.collections import (
    ACTIVITY_LIMIT,
    LAST_SYNC_KEY,
    MIRRORED_COLLECTIONS,
    REMOTE_SETTINGS,
    SETTINGS_KEY,
    THEME_KEY,
    Collection,
)
from inmogestor.domain.models import (
    DEFAULT_SETTINGS,
    Activity,
    AgentSettings,
    Client,
    Colleague,
    Expense,
    Followup,
    Property,
    Record,
    Sale,
    Sign,
    from_wire,
    to_wire,
)
from inmogestor.domain.ports import ImageProcessorPort, KeyValueStorePort, NotifierPort
from inmogestor.domain.services import Clock, generate_id, now_iso, utc_now

logger = logging.getLogger(__name__)

MutationListener = Callable[[str], None]

DEFAULT_THEME = "light"

_STORE_MANAGED_KEYS = ("id", "createdAt", "updatedAt")

_DELETED_LABELS: dict[Collection, str] = {
    Collection.PROPERTIES: "Propiedad eliminada",
    Collection.CLIENTS: "Cliente eliminado",
    Collection.FOLLOWUPS: "Seguimiento eliminado",
    Collection.SIGNS: "Cartel eliminado",
    Collection.EXPENSES: "Gasto eliminado",
    Collection.SALES: "Venta eliminada",
}


class LocalStore:
    """Colecciones tipadas guardadas como JSON, una clave por colección.

    Las lecturas nunca fallan: una clave ausente o corrupta se ve como colección
    vacía. Las escrituras que fallan (cuota, SQLite) se registran y se avisan por
    el notificador sin relanzar; lo ya devuelto al llamador no se deshace.
    """

    def __init__(
        self,
        kv_store: KeyValueStorePort,
        *,
        notifier: NotifierPort | None = None,
        image_processor: ImageProcessorPort | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._kv_store = kv_store
        self._notifier = notifier
        self._image_processor = image_processor
        self._clock = clock
        self._lock = RLock()
        self._listeners: list[MutationListener] = []

    # -- listeners -----------------------------------------------------------------

    def add_mutation_listener(self, listener: MutationListener) -> None:
        self._listeners.append(listener)

    def remove_mutation_listener(self, listener: MutationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit_mutation(self, remote_key: str) -> None:
        """Avisa a los oyentes de un cambio local en la clave remota indicada."""
        for listener in list(self._listeners):
            listener(remote_key)

    # -- generic operations --------------------------------------------------------

    def get(self, collection: Collection) -> list[Any]:
        record_type = collection.record_type
        return [from_wire(record_type, item) for item in self.get_raw(collection)]

    def get_raw(self, collection: Collection) -> list[dict[str, Any]]:
        value = self._read_json(collection.storage_key)
        if value is None:
            return []
        if not isinstance(value, list):
            logger.error("La colección %s no es una lista; se ignora", collection.storage_key)
            return []
        return [item for item in value if isinstance(item, dict)]

    def save(self, collection: Collection, record: Record | Mapping[str, Any]) -> Any:
        """Alta si el registro no trae id; si lo trae, parche superficial.

        Un id que no existe en la colección se inserta tal cual.
        """
        patch = dict(to_wire(record) if isinstance(record, Record) else record)
        record_id = patch.get("id")
        for key in _STORE_MANAGED_KEYS:
            patch.pop(key, None)

        now = now_iso(self._clock)
        with self._lock:
            items = self.get_raw(collection)
            index = self._index_of(items, record_id) if record_id else None
            if index is not None:
                stored = {**items[index], **patch, "id": record_id, "updatedAt": now}
                items[index] = stored
                action = "updated"
            else:
                stored = {**patch, "id": record_id or generate_id(self._clock), "createdAt": now}
                items.append(stored)
                action = "created"
            persisted = self._write_json(collection.storage_key, items)

        saved = from_wire(collection.record_type, stored)
        if collection.activity_type:
            if collection is Collection.SALES:
                action = "registered"
            self.add_activity(collection.activity_type, action, saved.activity_label())
        if persisted:
            self.emit_mutation(collection.remote_key)
        return saved

    def delete(self, collection: Collection, record_id: str) -> bool:
        with self._lock:
            items = self.get_raw(collection)
            remaining = [item for item in items if item.get("id") != record_id]
            removed = len(remaining) != len(items)
            persisted = self._write_json(collection.storage_key, remaining)
        if collection.activity_type:
            self.add_activity(collection.activity_type, "deleted", _DELETED_LABELS.get(collection, "Registro eliminado"))
        if persisted:
            self.emit_mutation(collection.remote_key)
        return removed

    def insert_approved(self, collection: Collection, payload: Mapping[str, Any]) -> Any:
        """Añade un registro ya identificado (aprobación de pendientes) sin tocar su id ni su createdAt."""
        data = dict(payload)
        if not data.get("id"):
            data["id"] = generate_id(self._clock)
        data.setdefault("createdAt", now_iso(self._clock))
        with self._lock:
            items = [item for item in self.get_raw(collection) if item.get("id") != data["id"]]
            items.append(data)
            persisted = self._write_json(collection.storage_key, items)
        if persisted:
            self.emit_mutation(collection.remote_key)
        return from_wire(collection.record_type, data)

    def replace_collection(self, collection: Collection, items: list[dict[str, Any]]) -> bool:
        """Sustitución en bloque para sync e importación. No emite mutaciones."""
        return self._write_json(collection.storage_key, list(items))

    def replace_settings(self, settings: Mapping[str, Any]) -> bool:
        return self._write_json(SETTINGS_KEY, dict(settings))

    def snapshot(self) -> dict[str, Any]:
        data: dict[str, Any] = {collection.remote_key: self.get_raw(collection) for collection in MIRRORED_COLLECTIONS}
        data[REMOTE_SETTINGS] = self.get_settings_raw()
        return data

    # -- properties ----------------------------------------------------------------

    def get_properties(self) -> list[Property]:
        return self.get(Collection.PROPERTIES)

    def save_property(self, record: Property | Mapping[str, Any]) -> Property:
        return self.save(Collection.PROPERTIES, record)

    def delete_property(self, record_id: str) -> bool:
        return self.delete(Collection.PROPERTIES, record_id)

    # -- clients -------------------------------------------------------------------

    def get_clients(self) -> list[Client]:
        return self.get(Collection.CLIENTS)

    def save_client(self, record: Client | Mapping[str, Any]) -> Client:
        return self.save(Collection.CLIENTS, record)

    def delete_client(self, record_id: str) -> bool:
        return self.delete(Collection.CLIENTS, record_id)

    # -- followups -----------------------------------------------------------------

    def get_followups(self) -> list[Followup]:
        return self.get(Collection.FOLLOWUPS)

    def save_followup(self, record: Followup | Mapping[str, Any]) -> Followup:
        return self.save(Collection.FOLLOWUPS, record)

    def delete_followup(self, record_id: str) -> bool:
        return self.delete(Collection.FOLLOWUPS, record_id)

    # -- signs ---------------------------------------------------------------------

    def get_signs(self) -> list[Sign]:
        return self.get(Collection.SIGNS)

    def save_sign(self, record: Sign | Mapping[str, Any]) -> Sign:
        return self.save(Collection.SIGNS, record)

    def delete_sign(self, record_id: str) -> bool:
        return self.delete(Collection.SIGNS, record_id)

    # -- expenses ------------------------------------------------------------------

    def get_expenses(self) -> list[Expense]:
        return self.get(Collection.EXPENSES)

    def save_expense(self, record: Expense | Mapping[str, Any]) -> Expense:
        return self.save(Collection.EXPENSES, record)

    def delete_expense(self, record_id: str) -> bool:
        return self.delete(Collection.EXPENSES, record_id)

    # -- sales ---------------------------------------------------------------------

    def get_sales(self) -> list[Sale]:
        return self.get(Collection.SALES)

    def save_sale(self, record: Sale | Mapping[str, Any]) -> Sale:
        return self.save(Collection.SALES, record)

    def delete_sale(self, record_id: str) -> bool:
        return self.delete(Collection.SALES, record_id)

    # -- colleagues ----------------------------------------------------------------

    def get_colleagues(self) -> list[Colleague]:
        return self.get(Collection.COLLEAGUES)

    def save_colleague(self, record: Colleague | Mapping[str, Any]) -> Colleague:
        """Agenda de colegas: el nombre (sin distinguir mayúsculas) es la clave."""
        patch = dict(to_wire(record) if isinstance(record, Record) else record)
        name = str(patch.get("name") or "").strip()
        if not name:
            return self.save(Collection.COLLEAGUES, patch)
        with self._lock:
            existing = next(
                (
                    item
                    for item in self.get_raw(Collection.COLLEAGUES)
                    if str(item.get("name") or "").strip().lower() == name.lower()
                ),
                None,
            )
            if existing is not None:
                patch["id"] = existing.get("id")
            return self.save(Collection.COLLEAGUES, patch)

    def delete_colleague(self, record_id: str) -> bool:
        return self.delete(Collection.COLLEAGUES, record_id)

    # -- settings ------------------------------------------------------------------

    def get_settings_raw(self) -> dict[str, Any]:
        value = self._read_json(SETTINGS_KEY)
        if not isinstance(value, dict):
            return dict(DEFAULT_SETTINGS)
        return value

    def get_settings(self) -> AgentSettings:
        return from_wire(AgentSettings, self.get_settings_raw())

    def save_settings(self, settings: AgentSettings | Mapping[str, Any]) -> AgentSettings:
        patch = to_wire(settings) if isinstance(settings, AgentSettings) else dict(settings)
        with self._lock:
            merged = {**self.get_settings_raw(), **patch}
            persisted = self._write_json(SETTINGS_KEY, merged)
        if persisted:
            self.emit_mutation(REMOTE_SETTINGS)
        return from_wire(AgentSettings, merged)

    # -- activities ----------------------------------------------------------------

    def get_activities(self) -> list[Activity]:
        return self.get(Collection.ACTIVITIES)

    def add_activity(self, activity_type: str, action: str, description: str) -> Activity:
        entry = {
            "id": generate_id(self._clock),
            "type": activity_type,
            "action": action,
            "description": description,
            "timestamp": now_iso(self._clock),
        }
        with self._lock:
            activities = [entry, *self.get_raw(Collection.ACTIVITIES)][:ACTIVITY_LIMIT]
            self._write_json(Collection.ACTIVITIES.storage_key, activities)
        return from_wire(Activity, entry)

    # -- theme / sync markers ------------------------------------------------------

    def get_theme(self) -> str:
        value = self._read_json(THEME_KEY)
        return value if isinstance(value, str) and value else DEFAULT_THEME

    def set_theme(self, theme: str) -> None:
        self._write_json(THEME_KEY, theme)

    def get_last_sync(self) -> str | None:
        value = self._read_json(LAST_SYNC_KEY)
        return value if isinstance(value, str) and value else None

    def set_last_sync(self, last_sync: str | None) -> None:
        if last_sync is None:
            try:
                self._kv_store.delete(LAST_SYNC_KEY)
            except PersistenceError as exc:
                log_operational_error(logger, "No se pudo borrar la marca de sincronización", exc=exc)
            return
        self._write_json(LAST_SYNC_KEY, last_sync)

    # -- images --------------------------------------------------------------------

    def process_image(self, raw: bytes) -> str | None:
        if self._image_processor is None:
            logger.warning("No hay procesador de imágenes configurado")
            return None
        return self._image_processor.process(raw)

    # -- internals -----------------------------------------------------------------

    @staticmethod
    def _index_of(items: list[dict[str, Any]], record_id: str) -> int | None:
        for index, item in enumerate(items):
            if item.get("id") == record_id:
                return index
        return None

    def _read_json(self, key: str) -> Any:
        raw = self._kv_store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            log_operational_error(logger, "Datos locales corruptos; se tratan como vacíos", exc=exc, extra={"key": key})
            return None

    def _write_json(self, key: str, value: Any) -> bool:
        try:
            self._kv_store.set(key, json.dumps(value, ensure_ascii=False))
        except PersistenceError as exc:
            metrics_registry.incrementar(ESCRITURAS_FALLIDAS)
            log_operational_error(logger, "No se pudo guardar en el almacenamiento local", exc=exc, extra={"key": key})
            if self._notifier is not None:
                self._notifier.notify("No se pudieron guardar los cambios: almacenamiento local lleno", "error")
            return False
        return True
