from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, List

from pydantic import Field

from certsync.config.settings import settings
from certsync.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class ResponseStatus(str, Enum):
    """Response status enumeration"""

    SUCCESS = "success"
    ERROR = "error"
    # Request succeeded but carries advisory findings (validation, degraded health)
    WARNING = "warning"


class ApiResponse(BaseModel):
    """Envelope shared by every certsync endpoint"""

    success: bool = Field(..., description="False only for error responses")
    status: ResponseStatus = Field(..., description="Response status")
    message: str = Field(..., description="Human-readable message")
    data: Optional[Any] = Field(default=None, description="Response payload")
    meta: Optional[Dict[str, Any]] = Field(
        default=None, description="Error code and error type for failures"
    )
    errors: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Per-field request validation errors"
    )
    warnings: Optional[List[str]] = Field(
        default=None, description="Findings or degraded components"
    )
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="Response timestamp",
    )
    request_id: str = Field(..., description="Request ID echoed in X-Request-ID")
    path: Optional[str] = Field(default=None, description="Request path")
    version: str = Field(default=settings.VERSION, description="Service version")
