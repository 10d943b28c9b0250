import time
from collections import Counter
from typing import Awaitable, Callable, Dict

from certsync.db.models import (
    Collection,
    DocumentStatus,
    TemplateStatus,
    UserRole,
    UserStatus,
)
from certsync.services.health.schemas import ComponentHealth
from certsync.services.health.severity import HealthStatus
from certsync.services.validation.consistency_validator import ConsistencyValidator
from certsync.services.validation.report import FindingSeverity
from certsync.store.base import Filter, RecordStore
from certsync.utils.datetime_utils import naive_utc_ago

Probe = Callable[[], Awaitable[ComponentHealth]]

# Entity types inspected by the linkage checks, reported as integration areas.
INTEGRATION_AREAS = {
    "document": "issuer_recipient_documents",
    "certificate": "certificate_user_linkages",
    "template": "issuer_reviewer_templates",
}

MAX_REPORTED_ERRORS = 10


class HealthProbes:
    """One independent probe per logical subsystem."""

    def __init__(
        self,
        store: RecordStore,
        validator: ConsistencyValidator,
        latency_warning_ms: float = 1000.0,
    ):
        self.store = store
        self.validator = validator
        self.latency_warning_ms = latency_warning_ms

    def all(self) -> Dict[str, Probe]:
        return {
            "administration": self.administration,
            "issuing_authority": self.issuing_authority,
            "recipient": self.recipient,
            "record_store": self.record_store,
            "notifications": self.notifications,
            "cross_system_integration": self.cross_system_integration,
        }

    async def administration(self) -> ComponentHealth:
        active_admins = await self.store.count(
            Collection.USERS,
            {"role": UserRole.ADMINISTRATOR, "status": UserStatus.ACTIVE},
        )
        recent_activity = await self.store.count(
            Collection.INTERACTIONS, {"timestamp": Filter.gt(naive_utc_ago(days=1))}
        )
        details = {"active_admins": active_admins, "recent_activities": recent_activity}
        if active_admins == 0:
            return ComponentHealth(
                status=HealthStatus.CRITICAL,
                message="No active admin users found",
                details=details,
            )
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Admin system operational",
            details=details,
        )

    async def issuing_authority(self) -> ComponentHealth:
        users = await self.store.query(
            Collection.USERS,
            {"role": [UserRole.ISSUING_AUTHORITY, UserRole.CLIENT_REVIEWER]},
        )
        counts = Counter(
            (user["role"], user["status"]) for user in users
        )
        active_cas = counts[(UserRole.ISSUING_AUTHORITY, UserStatus.ACTIVE)]
        recent_certificates = await self.store.count(
            Collection.CERTIFICATES, {"issued_at": Filter.gt(naive_utc_ago(days=7))}
        )
        pending_templates = await self.store.count(
            Collection.TEMPLATES, {"status": TemplateStatus.PENDING_REVIEW}
        )
        details = {
            "active_cas": active_cas,
            "pending_cas": counts[(UserRole.ISSUING_AUTHORITY, UserStatus.PENDING)],
            "active_client_reviewers": counts[
                (UserRole.CLIENT_REVIEWER, UserStatus.ACTIVE)
            ],
            "recent_certificates": recent_certificates,
            "templates_pending_review": pending_templates,
        }
        if active_cas == 0:
            return ComponentHealth(
                status=HealthStatus.WARNING,
                message="No active CAs available",
                details=details,
            )
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message=f"CA system operational with {active_cas} active CAs",
            details=details,
        )

    async def recipient(self) -> ComponentHealth:
        since = naive_utc_ago(days=7)
        total = await self.store.count(Collection.USERS, {"role": UserRole.RECIPIENT})
        active = await self.store.count(
            Collection.USERS, {"role": UserRole.RECIPIENT, "status": UserStatus.ACTIVE}
        )
        recent_registrations = await self.store.count(
            Collection.USERS,
            {"role": UserRole.RECIPIENT, "created_at": Filter.gt(since)},
        )
        recent_documents = await self.store.count(
            Collection.DOCUMENTS, {"created_at": Filter.gt(since)}
        )
        awaiting = await self.store.count(
            Collection.DOCUMENTS,
            {"status": [DocumentStatus.UPLOADED, DocumentStatus.PENDING]},
        )
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message=f"User system operational with {active} active users",
            details={
                "total_users": total,
                "active_users": active,
                "recent_registrations": recent_registrations,
                "recent_documents": recent_documents,
                "documents_awaiting_review": awaiting,
            },
        )

    async def record_store(self) -> ComponentHealth:
        started = time.perf_counter()
        await self.store.get(Collection.SYSTEM_CONFIG, "health_check")
        response_ms = round((time.perf_counter() - started) * 1000, 2)

        details = {
            "response_time_ms": response_ms,
            "user_count": await self.store.count(Collection.USERS),
            "certificate_count": await self.store.count(Collection.CERTIFICATES),
            "document_count": await self.store.count(Collection.DOCUMENTS),
        }
        if response_ms >= self.latency_warning_ms:
            return ComponentHealth(
                status=HealthStatus.WARNING,
                message=f"Record store slow ({response_ms}ms)",
                details=details,
            )
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message=f"Record store responsive ({response_ms}ms)",
            details=details,
        )

    async def notifications(self) -> ComponentHealth:
        recent = await self.store.count(
            Collection.NOTIFICATIONS, {"created_at": Filter.gt(naive_utc_ago(days=1))}
        )
        unread = await self.store.count(Collection.NOTIFICATIONS, {"is_read": False})
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Notification system operational",
            details={
                "collection_accessible": True,
                "recent_notifications": recent,
                "unread_notifications": unread,
            },
        )

    async def cross_system_integration(self) -> ComponentHealth:
        report = await self.validator.validate_linkages()
        if report.critical_errors:
            # The linkage run itself failed, so no area result can be trusted.
            return ComponentHealth(
                status=HealthStatus.CRITICAL,
                message="Cross-system validation failed",
                details={"linkage_findings": len(report.critical_errors)},
                errors=[
                    finding.message
                    for finding in report.critical_errors[:MAX_REPORTED_ERRORS]
                ],
            )

        problems = [
            finding
            for finding in report.findings
            if finding.severity != FindingSeverity.SUCCESS
        ]

        failing_areas = Counter(
            INTEGRATION_AREAS.get(finding.entity_type or "", "validation")
            for finding in problems
        )
        issues = len(failing_areas)
        details = {
            area: failing_areas.get(area, 0) == 0 for area in INTEGRATION_AREAS.values()
        }
        details["linkage_findings"] = len(problems)

        if issues == 0:
            status, message = HealthStatus.HEALTHY, "All cross-system integrations working"
        elif issues < 2:
            status, message = HealthStatus.WARNING, f"{issues} integration issues found"
        else:
            status, message = HealthStatus.ERROR, f"{issues} integration issues found"

        return ComponentHealth(
            status=status,
            message=message,
            details=details,
            errors=[finding.message for finding in problems[:MAX_REPORTED_ERRORS]],
        )
