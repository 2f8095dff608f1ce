from __future__ import annotations

import pytest

from inmogestor.core.errors import StorageQuotaError
from inmogestor.infrastructure.kv_store_sqlite import SQLiteKeyValueStore


def test_set_y_get(kv_store: SQLiteKeyValueStore) -> None:
    kv_store.set("a", "1")
    kv_store.set("a", "2")

    assert kv_store.get("a") == "2"
    assert kv_store.get("no_existe") is None
    assert kv_store.keys() == ["a"]


def test_delete_es_idempotente(kv_store: SQLiteKeyValueStore) -> None:
    kv_store.set("a", "1")

    kv_store.delete("a")
    kv_store.delete("a")

    assert kv_store.get("a") is None


def test_used_bytes_cuenta_utf8(kv_store: SQLiteKeyValueStore) -> None:
    kv_store.set("k", "ñ")

    assert kv_store.used_bytes() == 1 + 2


def test_cuota_superada_no_modifica_el_valor_anterior(connection) -> None:
    store = SQLiteKeyValueStore(connection, quota_bytes=20)
    store.set("k", "0123456789")

    with pytest.raises(StorageQuotaError):
        store.set("k", "x" * 30)

    assert store.get("k") == "0123456789"


def test_cuota_excluye_la_clave_que_se_reemplaza(connection) -> None:
    store = SQLiteKeyValueStore(connection, quota_bytes=20)
    store.set("k", "x" * 15)

    store.set("k", "y" * 19)

    assert store.get("k") == "y" * 19


def test_cuota_cuenta_las_demas_claves(connection) -> None:
    store = SQLiteKeyValueStore(connection, quota_bytes=20)
    store.set("a", "x" * 10)

    with pytest.raises(StorageQuotaError):
        store.set("b", "y" * 10)

    assert store.get("b") is None
