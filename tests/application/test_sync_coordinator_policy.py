from __future__ import annotations

import threading

from inmogestor.application.cloud_mirror import CloudMirror
from inmogestor.application.local_store import LocalStore
from inmogestor.application.sync_coordinator import DEBOUNCE_SECONDS, SyncCoordinator
from inmogestor.core.metrics import ERRORES_SYNC, PUSHES_EJECUTADOS, PUSHES_OMITIDOS, metrics_registry
from inmogestor.domain.cloud_errors import CloudPermissionError, CloudUnavailableError
from inmogestor.domain.collections import Collection
from inmogestor.domain.sync_models import (
    RemoteSnapshot,
    Role,
    SyncSession,
    SyncState,
    SyncStatus,
    UserIdentity,
    UserRole,
)
from tests.fakes import OWNER_ID, FakeCloudDocument, ManualScheduler, RecordingNotifier


def _remote(**data) -> dict:
    return dict(data)


# -- pull de arranque -------------------------------------------------------------


def test_arranque_con_local_vacio_aplica_remoto(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    cloud_document.documents[OWNER_ID] = _remote(lastSync="T1", properties=[{"id": "p1", "title": "Ático"}])

    result = coordinator.sync_from_cloud()

    assert result.applied is True
    assert result.reason == "local_empty"
    assert [prop.id for prop in local_store.get_properties()] == ["p1"]
    assert local_store.get_last_sync() == "T1"
    assert coordinator.session.state is SyncState.IDLE
    assert coordinator.session.status is SyncStatus.SYNCED


def test_arranque_con_mismo_last_sync_no_aplica(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    local_store.replace_collection(Collection.PROPERTIES, [{"id": "local"}])
    local_store.set_last_sync("T1")
    cloud_document.documents[OWNER_ID] = _remote(lastSync="T1", properties=[{"id": "remoto"}])

    result = coordinator.sync_from_cloud()

    assert result.applied is False
    assert result.state is SyncState.UNCHANGED
    assert [prop.id for prop in local_store.get_properties()] == ["local"]


def test_arranque_con_last_sync_distinto_aplica(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    local_store.replace_collection(Collection.PROPERTIES, [{"id": "local"}])
    local_store.set_last_sync("T1")
    cloud_document.documents[OWNER_ID] = _remote(lastSync="T2", properties=[{"id": "remoto"}])

    result = coordinator.sync_from_cloud()

    assert result.reason == "remote_changed"
    assert [prop.id for prop in local_store.get_properties()] == ["remoto"]


def test_arranque_sin_documento_remoto(coordinator: SyncCoordinator) -> None:
    result = coordinator.sync_from_cloud()

    assert result.applied is False
    assert result.reason == "no_remote_document"


def test_sin_nube_no_hace_nada(
    owner_session: SyncSession,
    local_store: LocalStore,
    mirror: CloudMirror,
    scheduler: ManualScheduler,
    notifier: RecordingNotifier,
    cloud_document: FakeCloudDocument,
) -> None:
    coordinator = SyncCoordinator(owner_session, local_store, mirror, scheduler, notifier)
    try:
        assert coordinator.sync_from_cloud().reason == "cloud_disabled"
        local_store.save_client({"name": "Ana"})
        assert scheduler.tasks == []
        assert coordinator.push_now().reason == "cloud_disabled"
        assert cloud_document.read_calls == 0
    finally:
        coordinator.shutdown()


# -- aplicar remoto ---------------------------------------------------------------


def test_aplicar_remoto_no_toca_claves_ausentes_ni_programa_subida(
    coordinator: SyncCoordinator, local_store: LocalStore, scheduler: ManualScheduler
) -> None:
    local_store.replace_collection(Collection.CLIENTS, [{"id": "c1", "name": "Ana"}])
    applied: list[tuple[str, ...]] = []
    coordinator.add_apply_listener(applied.append)

    keys = coordinator.apply_remote(
        RemoteSnapshot({"lastSync": "T5", "properties": [{"id": "p1"}], "settings": {"agentLevel": "oro"}})
    )

    assert keys == ("properties", "settings")
    assert applied == [keys]
    assert [client.id for client in local_store.get_clients()] == ["c1"]
    assert local_store.get_settings().agent_level == "oro"
    assert scheduler.tasks == []
    assert coordinator.session.applying_remote is False


def test_aplicar_remoto_ignora_claves_con_tipo_incorrecto(
    coordinator: SyncCoordinator, local_store: LocalStore
) -> None:
    local_store.replace_collection(Collection.SIGNS, [{"id": "s1"}])

    keys = coordinator.apply_remote(RemoteSnapshot({"signs": "roto", "clients": [{"id": "c1"}, "basura"]}))

    assert keys == ("clients",)
    assert [sign.id for sign in local_store.get_signs()] == ["s1"]
    assert [client.id for client in local_store.get_clients()] == ["c1"]


def _save_during_replace(monkeypatch, local_store: LocalStore, save) -> None:
    original_replace = local_store.replace_collection
    calls: list[Collection] = []

    def replace_and_save(collection: Collection, items: list[dict]) -> bool:
        if not calls:
            save()
        calls.append(collection)
        return original_replace(collection, items)

    monkeypatch.setattr(local_store, "replace_collection", replace_and_save)


def test_cambio_desde_otro_hilo_durante_aplicar_se_sube_al_terminar(
    monkeypatch,
    coordinator: SyncCoordinator,
    local_store: LocalStore,
    scheduler: ManualScheduler,
    cloud_document: FakeCloudDocument,
) -> None:
    def save_in_other_thread() -> None:
        worker = threading.Thread(target=lambda: local_store.save_client({"name": "Ana"}))
        worker.start()
        worker.join()
        assert scheduler.active_tasks == []

    _save_during_replace(monkeypatch, local_store, save_in_other_thread)

    coordinator.apply_remote(RemoteSnapshot({"lastSync": "T5", "properties": [{"id": "p1"}]}))

    assert [client.name for client in local_store.get_clients()] == ["Ana"]
    assert len(scheduler.active_tasks) == 1
    assert coordinator.session.push_owed is False
    assert metrics_registry.contador(PUSHES_OMITIDOS) == 0

    scheduler.run_pending()

    written = cloud_document.write_calls[0][1]
    assert [client["name"] for client in written["clients"]] == ["Ana"]
    assert [prop["id"] for prop in written["properties"]] == ["p1"]


def test_cambio_desde_el_hilo_que_aplica_no_programa_subida(
    monkeypatch, coordinator: SyncCoordinator, local_store: LocalStore, scheduler: ManualScheduler
) -> None:
    _save_during_replace(monkeypatch, local_store, lambda: local_store.save_client({"name": "Eco"}))

    coordinator.apply_remote(RemoteSnapshot({"lastSync": "T5", "properties": [{"id": "p1"}]}))

    assert scheduler.active_tasks == []
    assert metrics_registry.contador(PUSHES_OMITIDOS) == 1


def test_manual_sync_aplica_aunque_coincida_last_sync(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    local_store.replace_collection(Collection.PROPERTIES, [{"id": "local"}])
    local_store.set_last_sync("T1")
    cloud_document.documents[OWNER_ID] = _remote(lastSync="T1", properties=[{"id": "remoto"}])

    result = coordinator.manual_sync()

    assert result.reason == "forced"
    assert [prop.id for prop in local_store.get_properties()] == ["remoto"]


# -- subida con debounce ------------------------------------------------------------


def test_rafaga_de_cambios_produce_una_sola_subida(
    coordinator: SyncCoordinator, local_store: LocalStore, scheduler: ManualScheduler, cloud_document: FakeCloudDocument
) -> None:
    local_store.save_client({"name": "Ana"})
    local_store.save_client({"name": "Luis"})
    local_store.save_property({"title": "Ático"})

    assert len(scheduler.active_tasks) == 1
    assert scheduler.active_tasks[0].delay_seconds == DEBOUNCE_SECONDS
    assert coordinator.session.state is SyncState.PENDING_PUSH

    scheduler.run_pending()

    assert len(cloud_document.write_calls) == 1
    written = cloud_document.write_calls[0][1]
    assert [client["name"] for client in written["clients"]] == ["Ana", "Luis"]
    assert written["lastSync"] == local_store.get_last_sync()
    assert metrics_registry.contador(PUSHES_EJECUTADOS) == 1
    assert coordinator.session.state is SyncState.IDLE
    assert coordinator.session.status is SyncStatus.SYNCED


def test_subida_en_curso_rechaza_otra(coordinator: SyncCoordinator, cloud_document: FakeCloudDocument) -> None:
    coordinator.session.push_in_flight = True

    result = coordinator.push_now()

    assert result.pushed is False
    assert result.reason == "in_flight"
    assert cloud_document.write_calls == []


def test_subida_programada_se_reprograma_si_hay_otra_en_curso(
    coordinator: SyncCoordinator, local_store: LocalStore, scheduler: ManualScheduler, cloud_document: FakeCloudDocument
) -> None:
    local_store.save_client({"name": "Ana"})
    coordinator.session.push_in_flight = True

    scheduler.run_pending()

    assert cloud_document.write_calls == []
    assert len(scheduler.active_tasks) == 1

    coordinator.session.push_in_flight = False
    scheduler.run_pending()

    assert len(cloud_document.write_calls) == 1


def test_eco_de_la_propia_subida_no_se_aplica(
    coordinator: SyncCoordinator, local_store: LocalStore, scheduler: ManualScheduler, cloud_document: FakeCloudDocument
) -> None:
    coordinator.init_cloud()
    cloud_document.notify_on_write = True
    applied: list[tuple[str, ...]] = []
    coordinator.add_apply_listener(applied.append)

    local_store.save_client({"name": "Ana"})
    scheduler.run_pending()

    assert len(cloud_document.write_calls) == 1
    assert applied == []
    assert scheduler.active_tasks == []


def test_cambio_de_otro_dispositivo_se_aplica(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument, scheduler: ManualScheduler
) -> None:
    coordinator.init_cloud()
    cloud_document.documents[OWNER_ID] = _remote(lastSync="OTRO", clients=[{"id": "c9", "name": "Remota"}])

    cloud_document.emit(OWNER_ID)

    assert [client.id for client in local_store.get_clients()] == ["c9"]
    assert local_store.get_last_sync() == "OTRO"
    assert scheduler.tasks == []


def test_notificacion_con_mismo_last_sync_se_ignora(coordinator: SyncCoordinator, local_store: LocalStore) -> None:
    local_store.set_last_sync("T1")

    result = coordinator.handle_remote_snapshot(RemoteSnapshot({"lastSync": "T1", "clients": [{"id": "x"}]}))

    assert result.applied is False
    assert local_store.get_clients() == []


def test_fallo_de_subida_se_absorbe_y_se_avisa(
    coordinator: SyncCoordinator,
    local_store: LocalStore,
    cloud_document: FakeCloudDocument,
    notifier: RecordingNotifier,
) -> None:
    local_store.set_last_sync("T0")
    cloud_document.fail_with = CloudUnavailableError("sin red")

    result = coordinator.push_now()

    assert result.reason == "error"
    assert coordinator.session.status is SyncStatus.ERROR
    assert coordinator.session.push_in_flight is False
    assert coordinator.session.last_error == "sin red"
    assert local_store.get_last_sync() == "T0"
    assert notifier.messages[-1][1] == "error"
    assert metrics_registry.contador(ERRORES_SYNC) == 1

    cloud_document.fail_with = None
    assert coordinator.push_now().pushed is True
    assert coordinator.session.last_error is None


def test_fallo_de_pull_no_modifica_local(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    local_store.replace_collection(Collection.CLIENTS, [{"id": "c1"}])
    cloud_document.fail_with = CloudPermissionError("denegado")

    result = coordinator.sync_from_cloud()

    assert result.reason == "error"
    assert [client.id for client in local_store.get_clients()] == ["c1"]
    assert coordinator.session.status is SyncStatus.ERROR


def test_sesion_delegada_nunca_sube(
    local_store: LocalStore,
    mirror: CloudMirror,
    scheduler: ManualScheduler,
    notifier: RecordingNotifier,
    cloud_document: FakeCloudDocument,
) -> None:
    session = SyncSession(
        identity=UserIdentity("sec-1", "Secretaria"),
        role=UserRole.delegated(Role.SECRETARY, "sec-1", OWNER_ID),
    )
    coordinator = SyncCoordinator(session, local_store, mirror, scheduler, notifier)
    coordinator.enable_cloud()
    try:
        local_store.save_client({"name": "Ana"})

        assert scheduler.tasks == []
        assert coordinator.push_now().reason == "delegated"
        assert cloud_document.write_calls == []
    finally:
        coordinator.shutdown()


def test_shutdown_cancela_y_desuscribe(
    coordinator: SyncCoordinator, local_store: LocalStore, scheduler: ManualScheduler, cloud_document: FakeCloudDocument
) -> None:
    coordinator.init_cloud()
    local_store.save_client({"name": "Ana"})

    coordinator.shutdown()

    assert scheduler.active_tasks == []
    assert all(not subscription.active for subscription in cloud_document.subscriptions)
    assert coordinator.session.status is SyncStatus.OFFLINE
    local_store.save_client({"name": "Luis"})
    assert scheduler.active_tasks == []


# -- propiedades de la política -----------------------------------------------------


def test_aplicar_dos_veces_el_mismo_snapshot_no_duplica(coordinator: SyncCoordinator, local_store: LocalStore) -> None:
    snapshot = RemoteSnapshot(
        {"lastSync": "T1", "clients": [{"id": "c1", "name": "Ana"}], "signs": [{"id": "s1", "phone": "600"}]}
    )

    coordinator.apply_remote(snapshot)
    first = local_store.snapshot()
    coordinator.apply_remote(snapshot)

    assert local_store.snapshot() == first
    assert len(local_store.get_clients()) == 1


def test_arranque_vacio_con_tres_propiedades_remotas(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    remote_properties = [{"id": f"p{index}", "title": f"Piso {index}"} for index in range(3)]
    cloud_document.documents[OWNER_ID] = {"lastSync": "T1", "properties": remote_properties}

    coordinator.sync_from_cloud()

    assert local_store.get_raw(Collection.PROPERTIES) == remote_properties
    assert local_store.get_last_sync() == "T1"


def test_notificacion_igual_deja_intacto_un_cliente_mas_reciente(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    coordinator.init_cloud()
    local_store.replace_collection(
        Collection.CLIENTS, [{"id": "c1", "name": "Ana", "updatedAt": "2025-03-02T00:00:00.000Z"}]
    )
    local_store.set_last_sync("T1")
    before = local_store.get_raw(Collection.CLIENTS)
    cloud_document.documents[OWNER_ID] = {"lastSync": "T1", "clients": [{"id": "c1", "name": "Vieja"}]}

    cloud_document.emit(OWNER_ID)

    assert local_store.get_raw(Collection.CLIENTS) == before


def test_borrado_sin_subir_reaparece_tras_pull_anterior(
    coordinator: SyncCoordinator, local_store: LocalStore, cloud_document: FakeCloudDocument
) -> None:
    local_store.replace_collection(Collection.PROPERTIES, [{"id": "p1", "title": "Ático"}])
    local_store.set_last_sync("T0")
    cloud_document.documents[OWNER_ID] = {"lastSync": "T1", "properties": [{"id": "p1", "title": "Ático"}]}

    coordinator.session.cloud_enabled = False
    local_store.delete_property("p1")
    assert local_store.get_properties() == []

    coordinator.enable_cloud()
    coordinator.sync_from_cloud()

    assert [prop.id for prop in local_store.get_properties()] == ["p1"]
    assert cloud_document.write_calls == []
