from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import Request

from certsync.db.models import Collection, DocumentStatus, TemplateStatus
from certsync.schemas.workflow_schemas import HandlerResult
from certsync.services.activity_recorder import ActivityRecorder
from certsync.services.bootstrap_service import BootstrapService
from certsync.services.health.aggregator import HealthAggregator
from certsync.services.health.schemas import OverallHealth
from certsync.services.validation.consistency_validator import ConsistencyValidator
from certsync.services.validation.report import ValidationReport
from certsync.services.workflow.listeners import ChangeListenerSubsystem
from certsync.services.workflow.orchestrator import WorkflowOrchestrator
from certsync.store.base import RecordStore
from certsync.utils.datetime_utils import naive_utc_now
from certsync.utils.logging import get_logger
from certsync.utils.streams import Subscription

logger = get_logger()


class SystemSyncService:
    """
    Outward facade of the synchronization engine: lifecycle, validation,
    health and re-synchronization for the API, the scheduled tasks and
    administration tooling.
    """

    def __init__(
        self,
        store: RecordStore,
        orchestrator: WorkflowOrchestrator,
        listeners: ChangeListenerSubsystem,
        validator: ConsistencyValidator,
        aggregator: HealthAggregator,
        recorder: ActivityRecorder,
        bootstrapper: BootstrapService,
        health_check_interval: float = 300.0,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.listeners = listeners
        self.validator = validator
        self.aggregator = aggregator
        self.recorder = recorder
        self.bootstrapper = bootstrapper
        self.health_check_interval = health_check_interval

    async def initialize(
        self, start_listeners: bool = True, start_monitor: bool = True
    ) -> None:
        if start_listeners:
            self.listeners.start()
        if start_monitor:
            self.aggregator.initialize(self.health_check_interval)
        logger.info("System sync service initialized")

    async def dispose(self) -> None:
        await self.listeners.stop()
        await self.aggregator.dispose()
        logger.info("System sync service disposed")

    async def bootstrap(self) -> Dict[str, Any]:
        return await self.bootstrapper.bootstrap()

    async def run_validation(
        self, persist: bool = False, triggered_by: str = "manual"
    ) -> ValidationReport:
        report = await self.validator.validate(triggered_by=triggered_by)
        if persist:
            await self.validator.persist_report(report)
        return report

    async def check_health(self) -> OverallHealth:
        return await self.aggregator.check_health()

    def subscribe_health(self, name: str = "health-feed") -> Subscription[OverallHealth]:
        return self.aggregator.subscribe(name)

    @property
    def latest_health(self) -> Optional[OverallHealth]:
        return self.aggregator.latest

    async def get_interaction_stats(self, limit: int = 100) -> Dict[str, Any]:
        return await self.recorder.get_interaction_stats(limit=limit)

    async def get_statistics(self, force_refresh: bool = False) -> Dict[str, Any]:
        cached = await self.aggregator.get_statistics(force_refresh=force_refresh)
        return {"computed_at": cached.computed_at, "statistics": cached.value}

    async def force_resynchronize(self) -> Dict[str, Any]:
        """
        Re-drive pending template and document backlogs through the
        orchestrator without waiting for new change events.

        Handlers are idempotent, so entities that were already handled only
        cost a lookup. Per-entity failures are collected in the summary.
        """
        orchestrator = self.orchestrator
        failures: List[Dict[str, str]] = []

        async def redrive(
            collection: Collection,
            status,
            handler: Callable[[str], Awaitable[HandlerResult]],
        ) -> Dict[str, int]:
            counts = {"processed": 0, "applied": 0, "notified": 0}
            records = await self.store.query(collection, {"status": status})
            for record in records:
                try:
                    result = await handler(record["id"])
                except Exception as e:
                    logger.opt(exception=True).error(
                        "Re-synchronization failed for entity",
                        collection=collection.value,
                        entity_id=record["id"],
                        error=str(e),
                    )
                    failures.append(
                        {
                            "collection": collection.value,
                            "entity_id": record["id"],
                            "error": str(e),
                        }
                    )
                    continue
                counts["processed"] += 1
                counts["applied"] += int(result.applied)
                counts["notified"] += result.notified
            return counts

        logger.info("Starting forced re-synchronization")
        summary: Dict[str, Any] = {
            "templates_pending_review": await redrive(
                Collection.TEMPLATES,
                TemplateStatus.PENDING_REVIEW,
                orchestrator.on_template_created,
            ),
            "templates_client_approved": await redrive(
                Collection.TEMPLATES,
                TemplateStatus.CLIENT_APPROVED,
                orchestrator.activate_template,
            ),
            "documents_uploaded": await redrive(
                Collection.DOCUMENTS,
                DocumentStatus.UPLOADED,
                orchestrator.on_document_uploaded,
            ),
            "documents_pending": await redrive(
                Collection.DOCUMENTS,
                DocumentStatus.PENDING,
                orchestrator.on_document_uploaded,
            ),
        }
        synced_at = naive_utc_now()
        summary["failures"] = failures
        summary["synced_at"] = synced_at.isoformat()

        await self.store.write(
            Collection.SYSTEM_CONFIG,
            "last_sync",
            {
                "value": {
                    "synced_at": synced_at.isoformat(),
                    "failure_count": len(failures),
                }
            },
        )
        logger.info(f"Forced re-synchronization finished with {len(failures)} failure(s)")
        return summary


def get_sync_service(request: Request) -> SystemSyncService:
    """Dependency returning the service graph built by the application lifespan"""
    return request.app.state.sync_service
