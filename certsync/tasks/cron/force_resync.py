import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from certsync.celery import celery
from certsync.tasks.cron.runtime import task_sync_service
from certsync.utils.context import request_scope
from certsync.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def force_resync_task(self, request_id: str):
    """
    Daily re-drive of pending template and document backlogs.

    Covers change events that were lost while no listener was running, e.g.
    records written during a deploy.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(_async_force_resync(request_id))


async def _async_force_resync(
    request_id: str, session_factory: Optional[async_sessionmaker] = None
):
    logger = get_logger().bind(request_id=request_id)

    with request_scope(request_id):
        try:
            async with task_sync_service(session_factory) as sync_service:
                logger.info("Starting force resync task")
                summary = await sync_service.force_resynchronize()

            logger.info(
                "Force resync task completed",
                failure_count=len(summary["failures"]),
            )
            return {"success": True, **summary, "request_id": request_id}
        except Exception as e:
            logger.opt(exception=True).error(
                "Force resync task exception",
                request_id=request_id,
                error=str(e),
            )
            return {"success": False, "error": str(e), "request_id": request_id}
