import asyncio

from .models import Base
from .session import engine

from certsync.utils.logging import get_logger

logger = get_logger()


async def create_tables(bind=engine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created all tables.")


async def drop_tables(bind=engine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Dropped all tables.")


async def reset_db(bind=engine):
    logger.info("Resetting database...")
    await drop_tables(bind)
    await create_tables(bind)
    logger.info("Database reset complete.")


if __name__ == "__main__":
    asyncio.run(reset_db())
