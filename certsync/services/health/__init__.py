from .aggregator import CachedValue, HealthAggregator
from .probes import HealthProbes
from .schemas import ComponentHealth, OverallHealth
from .severity import HealthStatus, max_severity, severity_rank

__all__ = [
    "CachedValue",
    "ComponentHealth",
    "HealthAggregator",
    "HealthProbes",
    "HealthStatus",
    "OverallHealth",
    "max_severity",
    "severity_rank",
]
