from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from certsync.config.settings import Settings, settings
from certsync.container import build_sync_service
from certsync.db.session import build_engine, build_session_factory
from certsync.services.sync_service import SystemSyncService


@asynccontextmanager
async def task_sync_service(
    session_factory: Optional[async_sessionmaker] = None,
    task_settings: Settings = settings,
) -> AsyncIterator[SystemSyncService]:
    """
    Service graph for one task run. Listeners and the health monitor are not
    started; the task drives the orchestrator directly.
    """
    engine = None
    if session_factory is None:
        engine = build_engine(task_settings.DATABASE_URL)
        session_factory = build_session_factory(engine)
    try:
        yield build_sync_service(session_factory, task_settings)
    finally:
        if engine is not None:
            await engine.dispose()
