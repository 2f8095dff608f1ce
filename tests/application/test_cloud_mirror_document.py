from __future__ import annotations

import pytest

from inmogestor.application.cloud_mirror import CloudMirror
from inmogestor.application.local_store import LocalStore
from inmogestor.core.metrics import metrics_registry
from inmogestor.domain.cloud_errors import CloudUnavailableError
from inmogestor.domain.models import PendingApproval
from inmogestor.domain.sync_models import RemoteSnapshot
from tests.fakes import OWNER_ID, FakeCloudDocument


def test_push_sube_snapshot_completo_con_last_sync(
    mirror: CloudMirror, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    local_store.save_client({"name": "Ana"})

    last_sync = mirror.push()

    owner_id, written = cloud_document.write_calls[-1]
    assert owner_id == OWNER_ID
    assert written["lastSync"] == last_sync
    assert [client["name"] for client in written["clients"]] == ["Ana"]
    assert "activities" not in written
    assert local_store.get_last_sync() == last_sync
    assert metrics_registry.snapshot()["timings_ms"]["cloud_mirror.push"]["count"] == 1


def test_push_conserva_pendientes_remotos(mirror: CloudMirror, cloud_document: FakeCloudDocument) -> None:
    cloud_document.documents[OWNER_ID] = {"pendingApprovals": [{"type": "sign", "data": {}}]}

    mirror.push()

    assert cloud_document.documents[OWNER_ID]["pendingApprovals"] == [{"type": "sign", "data": {}}]


def test_push_fallido_restaura_last_sync(
    mirror: CloudMirror, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    local_store.set_last_sync("anterior")
    cloud_document.fail_with = CloudUnavailableError("sin red")

    with pytest.raises(CloudUnavailableError):
        mirror.push()

    assert local_store.get_last_sync() == "anterior"


def test_pull_sin_documento_devuelve_none(mirror: CloudMirror) -> None:
    assert mirror.pull() is None


def test_pull_devuelve_snapshot(mirror: CloudMirror, cloud_document: FakeCloudDocument) -> None:
    cloud_document.documents[OWNER_ID] = {"lastSync": "T1", "properties": [{"id": "p1"}]}

    snapshot = mirror.pull()

    assert snapshot.last_sync == "T1"
    assert snapshot.properties == [{"id": "p1"}]


def test_subscribe_ignora_documento_inexistente(mirror: CloudMirror, cloud_document: FakeCloudDocument) -> None:
    received: list[RemoteSnapshot] = []
    handle = mirror.subscribe(received.append)

    cloud_document.emit(OWNER_ID)
    cloud_document.documents[OWNER_ID] = {"lastSync": "T2"}
    cloud_document.emit(OWNER_ID)
    handle.unsubscribe()
    cloud_document.emit(OWNER_ID)

    assert [snapshot.last_sync for snapshot in received] == ["T2"]


def test_pendientes_append_read_write(mirror: CloudMirror, cloud_document: FakeCloudDocument) -> None:
    mirror.append_pending([PendingApproval(type="client", data={"id": "c1"}, added_by="u2")])
    mirror.append_pending([{"type": "sign", "data": {"id": "s1"}, "addedBy": "u2"}])

    pending = mirror.read_pending()
    assert [entry["type"] for entry in pending] == ["client", "sign"]

    mirror.write_pending(pending[1:], {"lastSync": "T3"})

    assert cloud_document.documents[OWNER_ID]["pendingApprovals"] == [{"type": "sign", "data": {"id": "s1"}, "addedBy": "u2"}]
    assert cloud_document.documents[OWNER_ID]["lastSync"] == "T3"
