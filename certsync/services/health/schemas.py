from typing import Any, Dict, List
from datetime import datetime

from pydantic import Field

from certsync.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from certsync.services.health.severity import HealthStatus, max_severity
from certsync.utils.datetime_utils import naive_utc_now


class ComponentHealth(BaseModel):
    """Health snapshot of one subsystem"""

    status: HealthStatus = HealthStatus.CHECKING
    message: str = ""
    timestamp: datetime = Field(default_factory=naive_utc_now)
    details: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class OverallHealth(BaseModel):
    """System status reduced from all component snapshots"""

    status: HealthStatus = HealthStatus.CHECKING
    components: Dict[str, ComponentHealth] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=naive_utc_now)
    duration_ms: float = 0.0

    @classmethod
    def from_components(
        cls, components: Dict[str, ComponentHealth], duration_ms: float = 0.0
    ) -> "OverallHealth":
        return cls(
            status=max_severity(component.status for component in components.values()),
            components=components,
            duration_ms=duration_ms,
        )

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY
