import itertools
from typing import AsyncGenerator, List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from certsync.config.settings import Settings
from certsync.container import build_sync_service
from certsync.db.models import (
    ROLE_PERMISSIONS,
    Base,
    CertificateStatus,
    Collection,
    DocumentStatus,
    TemplateStatus,
    UserRole,
    UserStatus,
)
from certsync.db.session import build_engine, build_session_factory
from certsync.services.activity_recorder import ActivityRecorder
from certsync.services.notifications.dispatcher import NotificationDispatcher
from certsync.services.sync_service import SystemSyncService
from certsync.services.validation.consistency_validator import ConsistencyValidator
from certsync.services.workflow.orchestrator import WorkflowOrchestrator
from certsync.store.base import Record
from certsync.store.sql_store import SqlRecordStore
from certsync.utils.datetime_utils import naive_utc_now


def pytest_collection_modifyitems(config, items):
    # Anything touching the database engine is an integration test.
    for item in items:
        if "test_engine" in getattr(item, "fixturenames", ()):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# Test database setup: one SQLite file per test so concurrent listener
# workers get real connections instead of a shared in-memory pool.
@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'certsync-test.db'}",
        LISTENER_MAX_RETRIES=2,
        LISTENER_RETRY_DELAY_SECONDS=0.01,
        HEALTH_CHECK_INTERVAL_SECONDS=0.05,
        HEALTH_PROBE_TIMEOUT_SECONDS=2.0,
        HEALTH_STATS_CACHE_SECONDS=60.0,
        START_LISTENERS_ON_STARTUP=False,
        START_HEALTH_MONITOR_ON_STARTUP=False,
        BOOTSTRAP_ON_STARTUP=False,
        INITIAL_ADMIN_EMAIL="root@certsync.test",
        INITIAL_ADMIN_NAME="Root Admin",
    )


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = build_engine(test_settings.DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    return build_session_factory(test_engine)


@pytest.fixture
def store(session_factory: async_sessionmaker) -> SqlRecordStore:
    return SqlRecordStore(session_factory)


@pytest.fixture
def dispatcher(store: SqlRecordStore) -> NotificationDispatcher:
    return NotificationDispatcher(store)


@pytest.fixture
def recorder(store: SqlRecordStore) -> ActivityRecorder:
    return ActivityRecorder(store)


@pytest.fixture
def orchestrator(
    store: SqlRecordStore,
    dispatcher: NotificationDispatcher,
    recorder: ActivityRecorder,
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(store, dispatcher, recorder)


@pytest.fixture
def validator(store: SqlRecordStore) -> ConsistencyValidator:
    return ConsistencyValidator(store)


@pytest_asyncio.fixture
async def sync_service(
    session_factory: async_sessionmaker, test_settings: Settings
) -> AsyncGenerator[SystemSyncService, None]:
    service = build_sync_service(session_factory, test_settings)
    yield service
    await service.dispose()


# Test data factories
class RecordFactory:
    """Writes minimal valid records through the record store."""

    def __init__(self, store: SqlRecordStore):
        self.store = store
        self._sequence = itertools.count(1)

    async def user(
        self,
        role: UserRole = UserRole.RECIPIENT,
        status: UserStatus = UserStatus.ACTIVE,
        email: str = None,
        **fields,
    ) -> Record:
        n = next(self._sequence)
        values = {
            "email": email or f"{role.value}{n}@certsync.test",
            "display_name": f"{role.value.replace('_', ' ').title()} {n}",
            "role": role,
            "status": status,
            "permissions": list(ROLE_PERMISSIONS[role]),
        }
        values.update(fields)
        return await self.store.create(Collection.USERS, values)

    async def template(
        self,
        owner_id: str,
        status: TemplateStatus = TemplateStatus.PENDING_REVIEW,
        **fields,
    ) -> Record:
        n = next(self._sequence)
        values = {
            "name": f"Completion Template {n}",
            "owner_id": owner_id,
            "status": status,
            "revision": 1,
        }
        values.update(fields)
        return await self.store.create(Collection.TEMPLATES, values)

    async def document(
        self,
        uploader_id: str,
        status: DocumentStatus = DocumentStatus.UPLOADED,
        **fields,
    ) -> Record:
        n = next(self._sequence)
        values = {
            "name": f"transcript-{n}.pdf",
            "uploader_id": uploader_id,
            "status": status,
            "file_reference": f"documents/{uploader_id}/transcript-{n}.pdf",
            "file_hash": f"sha256-{n:064d}",
        }
        values.update(fields)
        return await self.store.create(Collection.DOCUMENTS, values)

    async def certificate(
        self,
        issuer_id: str,
        recipient_id: str = None,
        recipient_email: str = None,
        **fields,
    ) -> Record:
        n = next(self._sequence)
        values = {
            "title": f"Certificate of Completion {n}",
            "description": "Awarded for completing the programme",
            "issuer_id": issuer_id,
            "recipient_id": recipient_id,
            "recipient_email": recipient_email,
            "recipient_name": "Jane Recipient",
            "status": CertificateStatus.ISSUED,
            "issued_at": naive_utc_now(),
        }
        values.update(fields)
        return await self.store.create(Collection.CERTIFICATES, values)


@pytest.fixture
def factory(store: SqlRecordStore) -> RecordFactory:
    return RecordFactory(store)


@pytest_asyncio.fixture
async def admin_user(factory: RecordFactory) -> Record:
    """Create an active administrator."""
    return await factory.user(UserRole.ADMINISTRATOR, email="admin@certsync.test")


@pytest_asyncio.fixture
async def ca_user(factory: RecordFactory) -> Record:
    """Create an active issuing authority."""
    return await factory.user(UserRole.ISSUING_AUTHORITY, email="ca1@certsync.test")


@pytest_asyncio.fixture
async def recipient_user(factory: RecordFactory) -> Record:
    """Create an active recipient."""
    return await factory.user(UserRole.RECIPIENT, email="u1@certsync.test")


@pytest_asyncio.fixture
async def client_reviewers(factory: RecordFactory) -> List[Record]:
    """Three active client reviewers plus a suspended one that must be ignored."""
    reviewers = [await factory.user(UserRole.CLIENT_REVIEWER) for _ in range(3)]
    await factory.user(UserRole.CLIENT_REVIEWER, status=UserStatus.SUSPENDED)
    return reviewers
