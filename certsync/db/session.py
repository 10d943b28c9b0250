from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from certsync.config.settings import settings


def build_engine(database_url: str, echo: bool = False):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_async_engine(
        database_url,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=echo,
    )


def build_session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# Default engine for the table management script in certsync.db.db
engine = build_engine(str(settings.DATABASE_URL), echo=settings.DATABASE_ECHO)
