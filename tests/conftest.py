from __future__ import annotations

import sqlite3
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from inmogestor.application.cloud_mirror import CloudMirror
from inmogestor.application.local_store import LocalStore
from inmogestor.application.sync_coordinator import SyncCoordinator
from inmogestor.core.metrics import metrics_registry
from inmogestor.domain.sync_models import SyncSession, UserIdentity, UserRole
from inmogestor.infrastructure.db import get_memory_connection
from inmogestor.infrastructure.kv_store_sqlite import SQLiteKeyValueStore
from inmogestor.infrastructure.migrations import run_migrations
from tests.fakes import (
    OWNER_ID,
    FakeCloudDocument,
    FakeUserDirectory,
    ManualScheduler,
    RecordingNotifier,
    SteppingClock,
)


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    metrics_registry.reset()


@pytest.fixture
def connection() -> sqlite3.Connection:
    conn = get_memory_connection()
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def kv_store(connection: sqlite3.Connection) -> SQLiteKeyValueStore:
    return SQLiteKeyValueStore(connection)


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock(datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc), step=timedelta(seconds=1))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def local_store(kv_store: SQLiteKeyValueStore, notifier: RecordingNotifier, clock: SteppingClock) -> LocalStore:
    return LocalStore(kv_store, notifier=notifier, clock=clock)


@pytest.fixture
def cloud_document() -> FakeCloudDocument:
    return FakeCloudDocument()


@pytest.fixture
def user_directory() -> FakeUserDirectory:
    return FakeUserDirectory()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def mirror(cloud_document: FakeCloudDocument, local_store: LocalStore, clock: SteppingClock) -> CloudMirror:
    return CloudMirror(cloud_document, local_store, OWNER_ID, clock=clock)


@pytest.fixture
def owner_session() -> SyncSession:
    return SyncSession(identity=UserIdentity(OWNER_ID, "Propietaria", "owner@example.com"), role=UserRole.owner(OWNER_ID))


@pytest.fixture
def coordinator(
    owner_session: SyncSession,
    local_store: LocalStore,
    mirror: CloudMirror,
    scheduler: ManualScheduler,
    notifier: RecordingNotifier,
) -> SyncCoordinator:
    coordinator = SyncCoordinator(owner_session, local_store, mirror, scheduler, notifier)
    coordinator.enable_cloud()
    yield coordinator
    coordinator.shutdown()
