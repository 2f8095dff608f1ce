from __future__ import annotations

from inmogestor.infrastructure.db import DB_PATH_ENV, default_db_path, get_connection, get_memory_connection


def test_conexion_en_fichero_usa_wal(tmp_path) -> None:
    connection = get_connection(tmp_path / "sub" / "inmogestor.db", busy_timeout_ms=1500)
    try:
        assert connection.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert connection.execute("PRAGMA busy_timeout").fetchone()[0] == 1500
    finally:
        connection.close()


def test_conexion_en_memoria_no_usa_wal() -> None:
    connection = get_memory_connection()
    try:
        assert connection.execute("PRAGMA journal_mode").fetchone()[0] == "memory"
    finally:
        connection.close()


def test_ruta_por_defecto_admite_variable_de_entorno(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "otra.db"))

    assert default_db_path() == tmp_path / "otra.db"
