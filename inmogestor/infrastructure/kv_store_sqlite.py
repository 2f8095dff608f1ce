from __future__ import annotations

import logging
import sqlite3
from threading import RLock

from inmogestor.core.errors import PersistenceError, StorageQuotaError
from inmogestor.domain.services import now_iso

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class SQLiteKeyValueStore:
    """Almacén clave/valor con cuota, una fila por clave en `kv_store`.

    La cuota reproduce el límite del almacenamiento del navegador: una escritura
    que la supere falla entera y deja el valor anterior intacto.
    """

    def __init__(self, connection: sqlite3.Connection, *, quota_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
        self._connection = connection
        self._quota_bytes = quota_bytes
        self._lock = RLock()

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self._connection.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return None if row is None else str(row[0])

    def set(self, key: str, value: str) -> None:
        with self._lock:
            used = self._used_bytes(excluding=key)
            if used + _entry_size(key, value) > self._quota_bytes:
                raise StorageQuotaError(f"Cuota de almacenamiento local superada al guardar {key}")
            try:
                with self._connection:
                    self._connection.execute(
                        """
                        INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                        """,
                        (key, value, now_iso()),
                    )
            except sqlite3.OperationalError as exc:
                if "full" in str(exc).lower():
                    raise StorageQuotaError(str(exc)) from exc
                raise PersistenceError(str(exc)) from exc
            except sqlite3.DatabaseError as exc:
                raise PersistenceError(str(exc)) from exc

    def delete(self, key: str) -> None:
        with self._lock:
            try:
                with self._connection:
                    self._connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            except sqlite3.DatabaseError as exc:
                raise PersistenceError(str(exc)) from exc

    def keys(self) -> list[str]:
        with self._lock:
            rows = self._connection.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [str(row[0]) for row in rows]

    def used_bytes(self) -> int:
        with self._lock:
            return self._used_bytes()

    def _used_bytes(self, excluding: str | None = None) -> int:
        row = self._connection.execute(
            "SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) "
            "FROM kv_store WHERE key IS NOT ?",
            (excluding,),
        ).fetchone()
        return int(row[0])
