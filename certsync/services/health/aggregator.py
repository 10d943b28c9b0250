import asyncio
import contextlib
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generic, Mapping, Optional, TypeVar

from certsync.db.models import (
    Collection,
    CertificateStatus,
    DocumentStatus,
    TemplateStatus,
    UserRole,
    UserStatus,
)
from certsync.services.health.probes import Probe
from certsync.services.health.schemas import ComponentHealth, OverallHealth
from certsync.services.health.severity import HealthStatus
from certsync.store.base import RecordStore
from certsync.utils.context import request_scope
from certsync.utils.datetime_utils import naive_utc_now
from certsync.utils.logging import get_logger
from certsync.utils.streams import Broadcaster, Subscription

logger = get_logger()

T = TypeVar("T")


@dataclass
class CachedValue(Generic[T]):
    """A computed value and when it was computed. Callers decide freshness."""

    value: T
    computed_at: datetime

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or naive_utc_now()) - self.computed_at).total_seconds()

    def is_fresh(self, max_age_seconds: float, now: Optional[datetime] = None) -> bool:
        return self.age_seconds(now) < max_age_seconds


class HealthAggregator:
    """
    Runs every component probe and reduces the results to one status.

    Probes run concurrently, each under its own timeout; a probe that raises
    or times out is reported as critical for its component and never fails
    the whole check. The latest snapshot is kept and broadcast to health
    feed subscribers.
    """

    def __init__(
        self,
        store: RecordStore,
        probes: Mapping[str, Probe],
        probe_timeout: float = 10.0,
        stats_cache_seconds: float = 60.0,
        feed_buffer: int = 16,
    ):
        self.store = store
        self.probes = dict(probes)
        self.probe_timeout = probe_timeout
        self.stats_cache_seconds = stats_cache_seconds
        self.stats_cache: Optional[CachedValue[Dict[str, Any]]] = None
        self._latest: Optional[OverallHealth] = None
        # Slow feed subscribers only keep the newest snapshots.
        self._feed: Broadcaster[OverallHealth] = Broadcaster(maxsize=feed_buffer)
        self._monitor_task: Optional[asyncio.Task] = None

    @property
    def latest(self) -> Optional[OverallHealth]:
        return self._latest

    @property
    def monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def subscribe(self, name: str = "health-feed") -> Subscription[OverallHealth]:
        return self._feed.subscribe(name=name)

    async def _run_probe(self, name: str, probe: Probe) -> ComponentHealth:
        try:
            return await asyncio.wait_for(probe(), timeout=self.probe_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Health probe {name} timed out after {self.probe_timeout}s")
            return ComponentHealth(
                status=HealthStatus.CRITICAL,
                message=f"{name} check timed out",
                errors=[f"Timed out after {self.probe_timeout}s"],
            )
        except Exception as e:
            logger.opt(exception=True).error(
                "Health probe failed", probe=name, error=str(e)
            )
            return ComponentHealth(
                status=HealthStatus.CRITICAL,
                message=f"{name} check failed: {e}",
                errors=[str(e)],
            )

    async def check_health(self) -> OverallHealth:
        started = time.perf_counter()
        names = list(self.probes)
        results = await asyncio.gather(
            *(self._run_probe(name, self.probes[name]) for name in names)
        )
        overall = OverallHealth.from_components(
            dict(zip(names, results)),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )

        self._latest = overall
        self._feed.publish(overall)

        if overall.status == HealthStatus.HEALTHY:
            logger.info(f"System health check: {overall.status.value}")
        else:
            degraded = {
                name: component.status.value
                for name, component in overall.components.items()
                if component.status != HealthStatus.HEALTHY
            }
            logger.warning(
                f"System health check: {overall.status.value}, degraded components: {degraded}"
            )

        await self._record_snapshot(overall)
        return overall

    async def _record_snapshot(self, overall: OverallHealth) -> None:
        try:
            await self.store.write(
                Collection.SYSTEM_CONFIG,
                "health_check",
                {
                    "value": {
                        "status": overall.status.value,
                        "checked_at": overall.timestamp.isoformat(),
                        "components": {
                            name: component.status.value
                            for name, component in overall.components.items()
                        },
                    }
                },
            )
        except Exception as e:
            logger.opt(exception=True).error("Failed to record health snapshot", error=str(e))

    async def get_statistics(self, force_refresh: bool = False) -> CachedValue[Dict[str, Any]]:
        """Collection statistics, recomputed once the cached copy is stale."""
        cached = self.stats_cache
        if (
            cached is not None
            and not force_refresh
            and cached.is_fresh(self.stats_cache_seconds)
        ):
            return cached

        self.stats_cache = CachedValue(
            value=await self._compute_statistics(), computed_at=naive_utc_now()
        )
        return self.stats_cache

    async def _compute_statistics(self) -> Dict[str, Any]:
        async def by_status(collection: Collection, statuses, **where) -> Dict[str, int]:
            return {
                status.value: await self.store.count(
                    collection, {**where, "status": status}
                )
                for status in statuses
            }

        return {
            "users": {
                role.value: await by_status(Collection.USERS, UserStatus, role=role)
                for role in UserRole
            },
            "templates": await by_status(Collection.TEMPLATES, TemplateStatus),
            "documents": await by_status(Collection.DOCUMENTS, DocumentStatus),
            "certificates": await by_status(Collection.CERTIFICATES, CertificateStatus),
            "notifications": {
                "total": await self.store.count(Collection.NOTIFICATIONS),
                "unread": await self.store.count(
                    Collection.NOTIFICATIONS, {"is_read": False}
                ),
            },
            "interactions": await self.store.count(Collection.INTERACTIONS),
        }

    def initialize(self, interval_seconds: float) -> None:
        """Start the periodic monitor. Safe to call when already running."""
        if self.monitoring:
            return
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(interval_seconds), name="health-monitor"
        )
        logger.info(f"Health monitor started, interval {interval_seconds}s")

    async def _monitor_loop(self, interval_seconds: float) -> None:
        with request_scope("health-monitor"):
            while True:
                try:
                    await self.check_health()
                except Exception as e:
                    logger.opt(exception=True).error("Health monitor run failed", error=str(e))
                await asyncio.sleep(interval_seconds)

    async def dispose(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("Health monitor stopped")
        self._feed.close_all()
