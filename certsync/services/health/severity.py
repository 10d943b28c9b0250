from typing import Iterable
import enum


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    CHECKING = "checking"


_RANKS = {
    HealthStatus.CHECKING: -1,
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.ERROR: 2,
    HealthStatus.CRITICAL: 3,
}


def severity_rank(status: HealthStatus) -> int:
    """
    Total order healthy < warning < error < critical.

    ``checking`` ranks below every final status so a probe still in flight
    never outweighs a finished one.
    """
    return _RANKS[HealthStatus(status)]


def max_severity(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Most severe status, or ``checking`` when nothing has been reported."""
    return max(
        (HealthStatus(status) for status in statuses),
        key=severity_rank,
        default=HealthStatus.CHECKING,
    )


def is_final(status: HealthStatus) -> bool:
    return HealthStatus(status) != HealthStatus.CHECKING
