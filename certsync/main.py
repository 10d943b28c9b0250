from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from certsync.config.settings import Settings, settings
from certsync.container import build_sync_service
from certsync.db.db import create_tables
from certsync.db.session import build_engine, build_session_factory
from certsync.utils.logging import get_logger
from certsync.routers import main_router
from certsync.utils.errors import LockNotAcquiredError, setup_error_handlers
from certsync.middlewares import RequestIDMiddleware

# Initialize the logger
logger = get_logger()


def build_lifespan(app_settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{app_settings.NAME} is starting up...")
        engine = build_engine(app_settings.DATABASE_URL, echo=app_settings.DATABASE_ECHO)
        await create_tables(engine)

        sync_service = build_sync_service(build_session_factory(engine), app_settings)
        app.state.sync_service = sync_service

        if app_settings.BOOTSTRAP_ON_STARTUP:
            try:
                await sync_service.bootstrap()
            except LockNotAcquiredError:
                logger.warning("Bootstrap already running in another process, skipping")

        await sync_service.initialize(
            start_listeners=app_settings.START_LISTENERS_ON_STARTUP,
            start_monitor=app_settings.START_HEALTH_MONITOR_ON_STARTUP,
        )
        try:
            yield
        finally:
            await sync_service.dispose()
            await engine.dispose()
            logger.info(f"{app_settings.NAME} is shutting down...")

    return lifespan


def create_application(app_settings: Settings = settings) -> FastAPI:
    """Initialize the FastAPI application with settings and lifespan events."""
    application = FastAPI(
        title=app_settings.NAME,
        version=app_settings.VERSION,
        lifespan=build_lifespan(app_settings),
    )

    # Setup error handlers
    setup_error_handlers(application)

    # Add CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # Add custom middlewares
    application.add_middleware(RequestIDMiddleware)

    # Routers
    application.include_router(
        main_router, prefix=app_settings.API_PREFIX, tags=["APIs"]
    )

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "certsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_config=None,
        log_level=None,
    )
