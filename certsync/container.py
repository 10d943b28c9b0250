from sqlalchemy.ext.asyncio import async_sessionmaker

from certsync.config.settings import Settings
from certsync.services.activity_recorder import ActivityRecorder
from certsync.services.bootstrap_service import BootstrapService
from certsync.services.health.aggregator import HealthAggregator
from certsync.services.health.probes import HealthProbes
from certsync.services.notifications.dispatcher import NotificationDispatcher
from certsync.services.sync_service import SystemSyncService
from certsync.services.validation.consistency_validator import ConsistencyValidator
from certsync.services.workflow.listeners import ChangeListenerSubsystem
from certsync.services.workflow.orchestrator import WorkflowOrchestrator
from certsync.store.sql_store import SqlRecordStore


def build_sync_service(
    session_factory: async_sessionmaker, settings: Settings
) -> SystemSyncService:
    """Construct the service graph once; every component receives its collaborators."""
    store = SqlRecordStore(session_factory)
    dispatcher = NotificationDispatcher(store)
    recorder = ActivityRecorder(store)
    orchestrator = WorkflowOrchestrator(store, dispatcher, recorder)
    listeners = ChangeListenerSubsystem(
        store,
        orchestrator,
        max_retries=settings.LISTENER_MAX_RETRIES,
        retry_delay=settings.LISTENER_RETRY_DELAY_SECONDS,
        failed_events_limit=settings.LISTENER_FAILED_EVENTS_LIMIT,
    )
    validator = ConsistencyValidator(store)
    probes = HealthProbes(
        store, validator, latency_warning_ms=settings.RECORD_STORE_LATENCY_WARNING_MS
    )
    aggregator = HealthAggregator(
        store,
        probes.all(),
        probe_timeout=settings.HEALTH_PROBE_TIMEOUT_SECONDS,
        stats_cache_seconds=settings.HEALTH_STATS_CACHE_SECONDS,
        feed_buffer=settings.HEALTH_FEED_BUFFER,
    )
    bootstrapper = BootstrapService(
        store,
        admin_email=settings.INITIAL_ADMIN_EMAIL,
        admin_name=settings.INITIAL_ADMIN_NAME,
        lease_seconds=settings.LOCK_LEASE_SECONDS,
    )
    return SystemSyncService(
        store=store,
        orchestrator=orchestrator,
        listeners=listeners,
        validator=validator,
        aggregator=aggregator,
        recorder=recorder,
        bootstrapper=bootstrapper,
        health_check_interval=settings.HEALTH_CHECK_INTERVAL_SECONDS,
    )
