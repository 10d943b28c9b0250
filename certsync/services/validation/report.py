from typing import Any, Dict, List, Optional
from datetime import datetime
import enum

from pydantic import Field

from certsync.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from certsync.utils.datetime_utils import naive_utc_now


class FindingSeverity(str, enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class FindingCategory(str, enum.Enum):
    REFERENCE_RESOLVED = "reference_resolved"
    DANGLING_REFERENCE = "dangling_reference"
    WRONG_ROLE_REFERENCE = "wrong_role_reference"
    ADMIN_PRESENCE = "admin_presence"
    PENDING_BACKLOG = "pending_backlog"
    MISSING_FIELD = "missing_field"
    MISSING_PERMISSION = "missing_permission"
    WORKFLOW_STATE = "workflow_state"
    VALIDATION_FAILURE = "validation_failure"


class ValidationFinding(BaseModel):
    """One check outcome"""

    severity: FindingSeverity
    category: FindingCategory
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


class ValidationReport(BaseModel):
    """Severity-classified findings of one validator run"""

    findings: List[ValidationFinding] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=naive_utc_now)
    completed_at: Optional[datetime] = None
    triggered_by: str = "manual"

    def add(
        self,
        severity: FindingSeverity,
        category: FindingCategory,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> ValidationFinding:
        finding = ValidationFinding(
            severity=severity,
            category=category,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        self.findings.append(finding)
        return finding

    def add_success(self, category: FindingCategory, message: str, **entity) -> ValidationFinding:
        return self.add(FindingSeverity.SUCCESS, category, message, **entity)

    def add_warning(self, category: FindingCategory, message: str, **entity) -> ValidationFinding:
        return self.add(FindingSeverity.WARNING, category, message, **entity)

    def add_error(self, category: FindingCategory, message: str, **entity) -> ValidationFinding:
        return self.add(FindingSeverity.ERROR, category, message, **entity)

    def add_critical(self, category: FindingCategory, message: str, **entity) -> ValidationFinding:
        return self.add(FindingSeverity.CRITICAL, category, message, **entity)

    def _with(self, severity: FindingSeverity) -> List[ValidationFinding]:
        return [finding for finding in self.findings if finding.severity == severity]

    @property
    def successes(self) -> List[ValidationFinding]:
        return self._with(FindingSeverity.SUCCESS)

    @property
    def warnings(self) -> List[ValidationFinding]:
        return self._with(FindingSeverity.WARNING)

    @property
    def errors(self) -> List[ValidationFinding]:
        return self._with(FindingSeverity.ERROR)

    @property
    def critical_errors(self) -> List[ValidationFinding]:
        return self._with(FindingSeverity.CRITICAL)

    @property
    def is_valid(self) -> bool:
        return not self.errors and not self.critical_errors

    def complete(self) -> "ValidationReport":
        self.completed_at = naive_utc_now()
        return self

    def counts(self) -> Dict[str, int]:
        return {
            "success_count": len(self.successes),
            "warning_count": len(self.warnings),
            "error_count": len(self.errors),
            "critical_count": len(self.critical_errors),
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "triggered_by": self.triggered_by,
            **self.counts(),
        }

    def to_response(self) -> Dict[str, Any]:
        """camelCase payload for the admin API"""
        return {
            **{
                key: value
                for key, value in self.model_dump(by_alias=True).items()
                if key != "findings"
            },
            "isValid": self.is_valid,
            "successCount": len(self.successes),
            "warningCount": len(self.warnings),
            "errorCount": len(self.errors),
            "criticalCount": len(self.critical_errors),
            "findings": [
                finding.model_dump(by_alias=True, exclude_none=True)
                for finding in self.findings
                if finding.severity != FindingSeverity.SUCCESS
            ],
        }
