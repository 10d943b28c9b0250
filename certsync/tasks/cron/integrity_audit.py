import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from certsync.celery import celery
from certsync.tasks.cron.runtime import task_sync_service
from certsync.utils.context import request_scope
from certsync.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def integrity_audit_task(self, request_id: str):
    """
    Hourly integrity audit.

    Runs the consistency validator over every collection and persists the
    report to validation_reports so administrators can review the history.
    An invalid report is a normal outcome, not a task failure.

    Args:
        request_id: Request ID for tracking purposes
    """
    return asyncio.run(_async_integrity_audit(request_id))


async def _async_integrity_audit(
    request_id: str, session_factory: Optional[async_sessionmaker] = None
):
    logger = get_logger().bind(request_id=request_id)

    with request_scope(request_id):
        try:
            async with task_sync_service(session_factory) as sync_service:
                logger.info("Starting integrity audit task")
                report = await sync_service.run_validation(
                    persist=True, triggered_by=request_id
                )

            result = {
                "success": True,
                "is_valid": report.is_valid,
                **report.counts(),
                "request_id": request_id,
            }
            if report.is_valid:
                logger.info("Integrity audit completed", **report.counts())
            else:
                logger.warning(
                    "Integrity audit found issues",
                    **report.counts(),
                )
            return result
        except Exception as e:
            logger.opt(exception=True).error(
                "Integrity audit task exception",
                request_id=request_id,
                error=str(e),
            )
            return {"success": False, "error": str(e), "request_id": request_id}
