from __future__ import annotations

import os
import sqlite3
from pathlib import Path

DB_FILENAME = "inmogestor.db"
DB_RUNTIME_DIR = Path("logs") / "runtime"
DB_PATH_ENV = "INMOGESTOR_DB_PATH"
DEFAULT_BUSY_TIMEOUT_MS = 30000
MEMORY_DATABASE = ":memory:"


def default_db_path() -> Path:
    env_path = os.environ.get(DB_PATH_ENV)
    if env_path:
        return Path(env_path)
    return Path(__file__).resolve().parents[2] / DB_RUNTIME_DIR / DB_FILENAME


def _is_file_backed(connection: sqlite3.Connection) -> bool:
    main_db = connection.execute("PRAGMA database_list").fetchone()
    return bool(main_db["file"])


def configure_sqlite_connection(connection: sqlite3.Connection, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
    """WAL en disco: el listener de Firestore escribe desde otro hilo mientras se lee."""
    connection.row_factory = sqlite3.Row
    pragmas = ["synchronous=NORMAL", f"busy_timeout={int(busy_timeout_ms)}"]
    if _is_file_backed(connection):
        pragmas.insert(0, "journal_mode=WAL")
    for pragma in pragmas:
        connection.execute(f"PRAGMA {pragma}")


def get_connection(
    db_path: Path | None = None,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    check_same_thread: bool = False,
) -> sqlite3.Connection:
    path = db_path or default_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(path, check_same_thread=check_same_thread, timeout=max(1.0, busy_timeout_ms / 1000))
    configure_sqlite_connection(connection, busy_timeout_ms=busy_timeout_ms)
    return connection


def get_memory_connection() -> sqlite3.Connection:
    """Base efímera para tests y para `--selfcheck`."""
    connection = sqlite3.connect(MEMORY_DATABASE, check_same_thread=False)
    configure_sqlite_connection(connection)
    return connection
