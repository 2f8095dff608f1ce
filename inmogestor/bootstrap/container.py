from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable

from inmogestor.application.backup_service import BackupService
from inmogestor.application.cloud_mirror import CloudMirror
from inmogestor.application.local_store import LocalStore
from inmogestor.application.role_resolver import RoleResolver
from inmogestor.application.sync_coordinator import SyncCoordinator
from inmogestor.bootstrap.logging import log_operational_error
from inmogestor.domain.cloud_errors import CloudConfigError, CloudServiceError, CloudUnavailableError
from inmogestor.domain.models import CloudConfig
from inmogestor.domain.ports import CloudDocumentPort, NotifierPort, SchedulerPort, UserDirectoryPort
from inmogestor.domain.sync_models import SyncSession, UserIdentity
from inmogestor.infrastructure.db import get_connection
from inmogestor.infrastructure.firestore_client import build_firestore_client
from inmogestor.infrastructure.firestore_gateway import FirestoreDocumentGateway, FirestoreUserDirectory
from inmogestor.infrastructure.image_processing import PillowImageProcessor
from inmogestor.infrastructure.kv_store_sqlite import SQLiteKeyValueStore
from inmogestor.infrastructure.local_config import CloudConfigStore
from inmogestor.infrastructure.migrations import run_migrations
from inmogestor.infrastructure.notifier import LoggingNotifier
from inmogestor.infrastructure.scheduler import ThreadingScheduler

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], sqlite3.Connection]
CloudPorts = tuple[CloudDocumentPort, UserDirectoryPort]
CloudPortsFactory = Callable[[CloudConfig], CloudPorts]


def firestore_ports(config: CloudConfig) -> CloudPorts:
    client = build_firestore_client(config)
    return FirestoreDocumentGateway(client), FirestoreUserDirectory(client)


@dataclass
class AppContainer:
    connection: sqlite3.Connection
    local_store: LocalStore
    backup_service: BackupService
    notifier: NotifierPort
    config: CloudConfig | None = None
    role_resolver: RoleResolver | None = None
    mirror: CloudMirror | None = None
    coordinator: SyncCoordinator | None = None

    @property
    def cloud_available(self) -> bool:
        return self.coordinator is not None

    def close(self) -> None:
        if self.coordinator is not None:
            self.coordinator.shutdown()
        self.connection.close()


def build_container(
    connection_factory: ConnectionFactory = get_connection,
    *,
    config: CloudConfig | None = None,
    config_store: CloudConfigStore | None = None,
    cloud_factory: CloudPortsFactory = firestore_ports,
    scheduler: SchedulerPort | None = None,
    notifier: NotifierPort | None = None,
) -> AppContainer:
    """Monta una sesión completa. Sin configuración de nube se queda en modo local."""
    connection = connection_factory()
    run_migrations(connection)

    notifier = notifier or LoggingNotifier()
    kv_store = SQLiteKeyValueStore(connection)
    local_store = LocalStore(kv_store, notifier=notifier, image_processor=PillowImageProcessor())
    container = AppContainer(
        connection=connection,
        local_store=local_store,
        backup_service=BackupService(local_store),
        notifier=notifier,
    )

    if config is None:
        config = (config_store or CloudConfigStore()).load()
    container.config = config
    if config is None or not config.is_complete:
        logger.info("Sin configuración de Firestore: modo solo local")
        return container

    try:
        document_port, user_directory = cloud_factory(config)
    except (CloudConfigError, CloudServiceError, CloudUnavailableError) as exc:
        log_operational_error(logger, "Nube no disponible; se continúa en modo local", exc=exc)
        notifier.notify(f"Sin conexión con la nube: {exc}", "warning")
        return container

    identity = UserIdentity(
        user_id=config.user_id,
        display_name=config.user_name or None,
        email=config.user_email or None,
    )
    role_resolver = RoleResolver(user_directory, document_port, kv_store, identity, notifier=notifier)
    role = role_resolver.init_user_role()
    mirror = CloudMirror(document_port, local_store, role.owner_id)
    session = SyncSession(identity=identity, role=role)
    container.role_resolver = role_resolver
    container.mirror = mirror
    container.coordinator = SyncCoordinator(
        session,
        local_store,
        mirror,
        scheduler or ThreadingScheduler(),
        notifier,
    )
    return container
