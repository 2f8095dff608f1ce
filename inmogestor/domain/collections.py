from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from inmogestor.domain.models import (
    Activity,
    Client,
    Colleague,
    Expense,
    Followup,
    Property,
    Record,
    Sale,
    Sign,
)

KEY_PREFIX = "inmogestor_"
LAST_SYNC_KEY = f"{KEY_PREFIX}last_sync"
THEME_KEY = f"{KEY_PREFIX}theme"
SETTINGS_KEY = f"{KEY_PREFIX}settings"
USER_ROLE_KEY = f"{KEY_PREFIX}user_role"

REMOTE_LAST_SYNC = "lastSync"
REMOTE_SETTINGS = "settings"
REMOTE_PENDING = "pendingApprovals"

ACTIVITY_LIMIT = 50


@dataclass(frozen=True)
class CollectionSpec:
    storage_key: str
    remote_key: str
    record_type: type[Record]
    activity_type: str | None
    mirrored: bool = True


class Collection(Enum):
    PROPERTIES = CollectionSpec(f"{KEY_PREFIX}properties", "properties", Property, "property")
    CLIENTS = CollectionSpec(f"{KEY_PREFIX}clients", "clients", Client, "client")
    FOLLOWUPS = CollectionSpec(f"{KEY_PREFIX}followups", "followups", Followup, "followup")
    COLLEAGUES = CollectionSpec(f"{KEY_PREFIX}colleagues", "colleagues", Colleague, None)
    SALES = CollectionSpec(f"{KEY_PREFIX}sales", "sales", Sale, "sale")
    SIGNS = CollectionSpec(f"{KEY_PREFIX}signs", "signs", Sign, "sign")
    EXPENSES = CollectionSpec(f"{KEY_PREFIX}expenses", "expenses", Expense, "expense")
    ACTIVITIES = CollectionSpec(f"{KEY_PREFIX}activities", "activities", Activity, None, mirrored=False)

    @property
    def storage_key(self) -> str:
        return self.value.storage_key

    @property
    def remote_key(self) -> str:
        return self.value.remote_key

    @property
    def record_type(self) -> type[Record]:
        return self.value.record_type

    @property
    def activity_type(self) -> str | None:
        return self.value.activity_type

    @property
    def mirrored(self) -> bool:
        return self.value.mirrored

    @classmethod
    def from_remote_key(cls, remote_key: str) -> "Collection | None":
        for collection in cls:
            if collection.remote_key == remote_key:
                return collection
        return None


MIRRORED_COLLECTIONS: tuple[Collection, ...] = tuple(item for item in Collection if item.mirrored)

# Claves del documento remoto que la sincronización reemplaza en bloque.
REMOTE_SNAPSHOT_KEYS: tuple[str, ...] = (*(item.remote_key for item in MIRRORED_COLLECTIONS), REMOTE_SETTINGS)

PENDING_TARGETS: dict[str, Collection] = {
    "property": Collection.PROPERTIES,
    "client": Collection.CLIENTS,
    "sign": Collection.SIGNS,
}
