from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from google.api_core import exceptions as gcp_exceptions
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore
from google.cloud.firestore import FieldFilter

from inmogestor.bootstrap.logging import log_operational_error
from inmogestor.core.observability import get_correlation_id
from inmogestor.domain.collections import REMOTE_PENDING
from inmogestor.domain.ports import RemoteDocumentCallback, SubscriptionHandle
from inmogestor.infrastructure.firestore_errors import map_firestore_exception

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
DATA_COLLECTION = "data"
MAIN_DOCUMENT = "main"

T = TypeVar("T")

_API_ERRORS = (gcp_exceptions.GoogleAPICallError, gcp_exceptions.RetryError, GoogleAuthError, OSError)


def _call(operation: str, owner_id: str, func: Callable[[], T]) -> T:
    try:
        return func()
    except _API_ERRORS as exc:
        mapped = map_firestore_exception(exc)
        logger.warning(
            "Fallo Firestore en %s",
            operation,
            extra={"extra": {"owner_id": owner_id, "error": type(mapped).__name__, "correlation_id": get_correlation_id()}},
        )
        raise mapped from exc


class FirestoreDocumentGateway:
    """Documento `users/{owner_id}/data/main` con el snapshot de un propietario."""

    def __init__(self, client: firestore.Client) -> None:
        self._client = client

    def _document(self, owner_id: str) -> firestore.DocumentReference:
        return (
            self._client.collection(USERS_COLLECTION)
            .document(owner_id)
            .collection(DATA_COLLECTION)
            .document(MAIN_DOCUMENT)
        )

    def read(self, owner_id: str) -> dict[str, Any] | None:
        snapshot = _call("read", owner_id, lambda: self._document(owner_id).get())
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def write_fields(self, owner_id: str, data: dict[str, Any]) -> None:
        if not data:
            return
        # merge con rutas explícitas: cada clave se sustituye entera y el resto
        # del documento (pendingApprovals incluido) se conserva.
        _call("write_fields", owner_id, lambda: self._document(owner_id).set(data, merge=list(data.keys())))

    def append_pending(self, owner_id: str, entries: list[dict[str, Any]]) -> None:
        if not entries:
            return
        payload = {REMOTE_PENDING: firestore.ArrayUnion(entries)}
        _call("append_pending", owner_id, lambda: self._document(owner_id).set(payload, merge=True))

    def subscribe(self, owner_id: str, callback: RemoteDocumentCallback) -> SubscriptionHandle:
        def _on_snapshot(documents: list[Any], _changes: Any, _read_time: Any) -> None:
            for document in documents:
                data = (document.to_dict() or {}) if document.exists else None
                try:
                    callback(data)
                except Exception as exc:  # noqa: BLE001 - hilo del listener de Firestore
                    log_operational_error(
                        logger,
                        "Error procesando el snapshot remoto",
                        exc=exc,
                        extra={"owner_id": owner_id},
                    )

        return _call("subscribe", owner_id, lambda: self._document(owner_id).on_snapshot(_on_snapshot))


class FirestoreUserDirectory:
    """Colección `users` con perfil, rol y roster de sub-usuarios."""

    def __init__(self, client: firestore.Client) -> None:
        self._client = client

    def _user(self, user_id: str) -> firestore.DocumentReference:
        return self._client.collection(USERS_COLLECTION).document(user_id)

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        snapshot = _call("get_user", user_id, lambda: self._user(user_id).get())
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def update_user(self, user_id: str, fields: dict[str, Any]) -> None:
        payload = {key: firestore.DELETE_FIELD if value is None else value for key, value in fields.items()}
        _call("update_user", user_id, lambda: self._user(user_id).set(payload, merge=True))

    def find_user_ids_by_email(self, email: str) -> list[str]:
        query = self._client.collection(USERS_COLLECTION).where(filter=FieldFilter("email", "==", email))
        documents = _call("find_user_ids_by_email", email, lambda: list(query.stream()))
        return [document.id for document in documents]

    def list_users(self) -> list[tuple[str, dict[str, Any]]]:
        # Firestore no filtra por campos de mapas dentro de un array: hay que recorrer la colección.
        documents = _call("list_users", USERS_COLLECTION, lambda: list(self._client.collection(USERS_COLLECTION).stream()))
        return [(document.id, document.to_dict() or {}) for document in documents]
