from __future__ import annotations

from typing import Any, Callable, Iterable, Protocol

from inmogestor.domain.sync_models import SyncStatus


class KeyValueStorePort(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        """Lanza PersistenceError (o StorageQuotaError) si no se puede escribir."""

    def delete(self, key: str) -> None:
        ...

    def keys(self) -> Iterable[str]:
        ...


class SubscriptionHandle(Protocol):
    def unsubscribe(self) -> None:
        ...


RemoteDocumentCallback = Callable[[dict[str, Any] | None], None]


class CloudDocumentPort(Protocol):
    """Documento `users/{owner_id}/data/main` de un propietario."""

    def read(self, owner_id: str) -> dict[str, Any] | None:
        ...

    def write_fields(self, owner_id: str, data: dict[str, Any]) -> None:
        """Reemplaza en bloque solo las claves de primer nivel indicadas."""

    def append_pending(self, owner_id: str, entries: list[dict[str, Any]]) -> None:
        ...

    def subscribe(self, owner_id: str, callback: RemoteDocumentCallback) -> SubscriptionHandle:
        ...


class UserDirectoryPort(Protocol):
    """Colección `users`: perfil, `parentUserId`, `role` y roster `subUsers`."""

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        ...

    def update_user(self, user_id: str, fields: dict[str, Any]) -> None:
        """Un valor None borra el campo."""

    def find_user_ids_by_email(self, email: str) -> list[str]:
        ...

    def list_users(self) -> list[tuple[str, dict[str, Any]]]:
        """Todos los perfiles como (user_id, datos)."""


class ScheduledTask(Protocol):
    def cancel(self) -> None:
        ...

    @property
    def active(self) -> bool:
        ...


class SchedulerPort(Protocol):
    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> ScheduledTask:
        ...


class NotifierPort(Protocol):
    def notify(self, message: str, severity: str = "info") -> None:
        ...

    def update_sync_status(self, status: SyncStatus) -> None:
        ...


class ImageProcessorPort(Protocol):
    def process(self, raw: bytes) -> str | None:
        ...
