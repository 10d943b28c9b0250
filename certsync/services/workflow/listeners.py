import asyncio
import contextlib
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, FrozenSet, List, Optional

from certsync.db.models import Collection, DocumentStatus, TemplateStatus
from certsync.services.workflow.orchestrator import (
    DIRECT_REVIEW_SOURCE,
    WorkflowOrchestrator,
    status_marker,
)
from certsync.store.base import ChangeEvent, ChangeType, Filter, Predicate, RecordStore
from certsync.utils.context import request_scope
from certsync.utils.logging import get_logger
from certsync.utils.streams import Subscription

logger = get_logger()

EventHandler = Callable[[ChangeEvent], Awaitable[object]]

ADDED_OR_MODIFIED = frozenset({ChangeType.ADDED, ChangeType.MODIFIED})


@dataclass(frozen=True)
class ListenerSpec:
    name: str
    collection: Collection
    where: Optional[Predicate]
    change_types: FrozenSet[ChangeType]
    handler: EventHandler
    # Extra filter for conditions a predicate cannot express.
    accepts: Optional[Callable[[ChangeEvent], bool]] = None


def _status_changed(event: ChangeEvent) -> bool:
    return event.changed("status") and event.previous["status"] != event.record["status"]


class ChangeListenerSubsystem:
    """
    Routes change-feed events to the workflow orchestrator.

    One subscription and one worker task per listener. Delivery is
    at-least-once, so a failing handler is retried a bounded number of times
    and every handler tolerates repeats.
    """

    def __init__(
        self,
        store: RecordStore,
        orchestrator: WorkflowOrchestrator,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        failed_events_limit: int = 100,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._subscriptions: Dict[str, Subscription[ChangeEvent]] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        # Most recent events that exhausted their retries.
        self.failed_events: Deque[ChangeEvent] = deque(maxlen=failed_events_limit)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def listener_names(self) -> List[str]:
        return list(self._subscriptions)

    def build_specs(self) -> List[ListenerSpec]:
        orchestrator = self.orchestrator
        return [
            ListenerSpec(
                name="template_submitted",
                collection=Collection.TEMPLATES,
                where={"status": TemplateStatus.PENDING_REVIEW},
                change_types=ADDED_OR_MODIFIED,
                handler=lambda event: orchestrator.on_template_created(event.record),
            ),
            ListenerSpec(
                name="template_approved",
                collection=Collection.TEMPLATES,
                # Direct reviews activate in the same call, so only external approvals match.
                where={
                    "status": TemplateStatus.CLIENT_APPROVED,
                    "review_source": Filter.ne(DIRECT_REVIEW_SOURCE),
                },
                change_types=ADDED_OR_MODIFIED,
                handler=self._activate_approved_template,
            ),
            ListenerSpec(
                name="document_uploaded",
                collection=Collection.DOCUMENTS,
                where={"status": DocumentStatus.UPLOADED},
                change_types=ADDED_OR_MODIFIED,
                handler=lambda event: orchestrator.on_document_uploaded(event.record),
            ),
            ListenerSpec(
                name="document_reviewed",
                collection=Collection.DOCUMENTS,
                where={"status": [DocumentStatus.VERIFIED, DocumentStatus.REJECTED]},
                change_types=ADDED_OR_MODIFIED,
                handler=lambda event: orchestrator.on_document_review_recorded(
                    event.record
                ),
            ),
            ListenerSpec(
                name="certificate_issued",
                collection=Collection.CERTIFICATES,
                where=None,
                change_types=frozenset({ChangeType.ADDED}),
                handler=lambda event: orchestrator.on_certificate_issued(event.record),
            ),
            ListenerSpec(
                name="user_status",
                collection=Collection.USERS,
                where=None,
                change_types=frozenset({ChangeType.MODIFIED}),
                handler=self._announce_user_status,
                accepts=_status_changed,
            ),
        ]

    async def _activate_approved_template(self, event: ChangeEvent):
        # The event may be stale; only act if the template is still approved.
        template_id = event.record["id"]
        current = await self.store.get(Collection.TEMPLATES, template_id)
        if current is None or current["status"] != TemplateStatus.CLIENT_APPROVED:
            logger.debug(f"Template {template_id} no longer client_approved, skipping")
            return None
        return await self.orchestrator.activate_template(template_id)

    async def _announce_user_status(self, event: ChangeEvent):
        record = event.record
        return await self.orchestrator.on_user_status_changed(
            record["id"],
            event.previous["status"],
            record["status"],
            role=record["role"],
            changed_at=status_marker(record),
        )

    def start(self) -> None:
        if self.running:
            logger.warning("Change listeners already running")
            return

        for spec in self.build_specs():
            subscription = self.store.subscribe(
                spec.collection,
                where=spec.where,
                change_types=spec.change_types,
                name=spec.name,
            )
            self._subscriptions[spec.name] = subscription
            self._tasks[spec.name] = asyncio.create_task(
                self._run(spec, subscription), name=f"listener:{spec.name}"
            )

        logger.info(f"Started {len(self._tasks)} change listeners")

    async def _run(
        self, spec: ListenerSpec, subscription: Subscription[ChangeEvent]
    ) -> None:
        with request_scope(f"listener:{spec.name}"):
            async for event in subscription:
                try:
                    if spec.accepts is None or spec.accepts(event):
                        await self._dispatch(spec, event)
                finally:
                    subscription.task_done()

    async def _dispatch(self, spec: ListenerSpec, event: ChangeEvent) -> None:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                await spec.handler(event)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= attempts:
                    self.failed_events.append(event)
                    logger.opt(exception=True).error(
                        "Change listener gave up on event",
                        listener=spec.name,
                        record_id=event.record_id,
                        attempts=attempt,
                        error=str(e),
                    )
                    return
                logger.warning(
                    f"Listener {spec.name} failed on {event.record_id} "
                    f"(attempt {attempt}/{attempts}), retrying: {e}"
                )
                await asyncio.sleep(self.retry_delay)

    async def wait_idle(self) -> None:
        """Wait until every event delivered so far has been handled."""
        # Handlers write records that feed other listeners; loop until quiet.
        while True:
            subscriptions = [s for s in self._subscriptions.values() if not s.closed]
            for subscription in subscriptions:
                await subscription.join()
            if all(subscription.idle for subscription in subscriptions):
                return

    async def stop(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.close()

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._subscriptions.clear()
        self._tasks.clear()
        logger.info("Stopped change listeners")
