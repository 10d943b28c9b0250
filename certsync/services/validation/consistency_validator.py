from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from certsync.db.models import (
    ROLE_PERMISSIONS,
    Collection,
    DocumentStatus,
    TemplateStatus,
    UserRole,
    UserStatus,
)
from certsync.services.validation.report import FindingCategory, ValidationReport
from certsync.store.base import Record, RecordStore
from certsync.utils.logging import get_logger

logger = get_logger()

UserLookup = Dict[str, Record]
Check = Callable[[ValidationReport, UserLookup, bool], Awaitable[None]]

ISSUER_ROLES = (UserRole.ISSUING_AUTHORITY, UserRole.ADMINISTRATOR)
VERIFIER_ROLES = (UserRole.ISSUING_AUTHORITY, UserRole.ADMINISTRATOR)
TEMPLATE_OWNER_ROLES = (UserRole.ISSUING_AUTHORITY, UserRole.ADMINISTRATOR)
TEMPLATE_REVIEWER_ROLES = (UserRole.CLIENT_REVIEWER, UserRole.ADMINISTRATOR)

NOTIFICATION_SAMPLE_SIZE = 50


def _value(value: Any) -> str:
    return getattr(value, "value", value)


class ConsistencyValidator:
    """
    Read-only auditor of referential and domain integrity across collections.

    Findings are report entries, never exceptions: a section whose own
    queries fail adds an error entry and the run continues, and only a run
    that cannot load its user lookup is reported as critical.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def validate(self, triggered_by: str = "manual") -> ValidationReport:
        report = ValidationReport(triggered_by=triggered_by)
        sections: List[Tuple[str, Check]] = [
            ("user accounts", self._check_accounts),
            ("document workflow", self._check_documents),
            ("certificate linkages", self._check_certificates),
            ("template workflow", self._check_templates),
            ("notification integration", self._check_notifications),
        ]
        await self._run_sections(report, sections, linkage_only=False)
        logger.info(
            "Validation run finished",
            triggered_by=triggered_by,
            is_valid=report.is_valid,
            **report.counts(),
        )
        return report

    async def validate_linkages(self) -> ValidationReport:
        """Reference checks between users and the entities pointing at them."""
        report = ValidationReport(triggered_by="linkage_probe")
        sections: List[Tuple[str, Check]] = [
            ("document workflow", self._check_documents),
            ("certificate linkages", self._check_certificates),
            ("template workflow", self._check_templates),
        ]
        await self._run_sections(report, sections, linkage_only=True)
        return report

    async def persist_report(self, report: ValidationReport) -> str:
        record = await self.store.create(
            Collection.VALIDATION_REPORTS,
            {
                "is_valid": report.is_valid,
                "started_at": report.started_at,
                "completed_at": report.completed_at,
                "triggered_by": report.triggered_by,
                "findings": [
                    finding.model_dump(by_alias=True, exclude_none=True)
                    for finding in report.findings
                ],
                **report.counts(),
            },
        )
        logger.info(f"Persisted validation report {record['id']}")
        return record["id"]

    async def _run_sections(
        self,
        report: ValidationReport,
        sections: List[Tuple[str, Check]],
        linkage_only: bool,
    ) -> None:
        try:
            users = await self.store.query(Collection.USERS)
            lookup: UserLookup = {user["id"]: user for user in users}

            for name, check in sections:
                try:
                    await check(report, lookup, linkage_only)
                except Exception as e:
                    logger.opt(exception=True).error(
                        "Validation section failed",
                        section=name,
                        error=str(e),
                    )
                    report.add_error(
                        FindingCategory.VALIDATION_FAILURE,
                        f"Failed to validate {name}: {e}",
                    )
        except Exception as e:
            logger.opt(exception=True).error("System validation failed", error=str(e))
            report.add_critical(
                FindingCategory.VALIDATION_FAILURE, f"System validation failed: {e}"
            )
        report.complete()

    # ------------------------------------------------------------------
    # Reference helper
    # ------------------------------------------------------------------

    def _check_reference(
        self,
        report: ValidationReport,
        lookup: UserLookup,
        entity_type: str,
        entity_id: str,
        field: str,
        user_id: Optional[str],
        roles: Optional[Tuple[UserRole, ...]] = None,
    ) -> bool:
        """
        Resolve one user reference. A dangling reference is a single error;
        the role check only runs once the user resolved.
        """
        entity = {"entity_type": entity_type, "entity_id": entity_id}
        user = lookup.get(user_id) if user_id else None
        if user is None:
            report.add_error(
                FindingCategory.DANGLING_REFERENCE,
                f"{entity_type.capitalize()} {entity_id} has invalid {field}: {user_id}",
                **entity,
            )
            return False

        if roles is not None and user["role"] not in roles:
            report.add_error(
                FindingCategory.WRONG_ROLE_REFERENCE,
                f"{entity_type.capitalize()} {entity_id} {field} {user['email']} "
                f"has role {_value(user['role'])}",
                **entity,
            )
            return False

        report.add_success(
            FindingCategory.REFERENCE_RESOLVED,
            f"{entity_type.capitalize()} {entity_id} has valid {field}: {user['email']}",
            **entity,
        )
        return True

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    async def _check_accounts(
        self, report: ValidationReport, lookup: UserLookup, linkage_only: bool
    ) -> None:
        users = list(lookup.values())

        active_admins = [
            user
            for user in users
            if user["role"] == UserRole.ADMINISTRATOR
            and user["status"] == UserStatus.ACTIVE
        ]
        if not active_admins:
            report.add_critical(
                FindingCategory.ADMIN_PRESENCE, "No active administrator found in the system"
            )
        else:
            report.add_success(
                FindingCategory.ADMIN_PRESENCE,
                f"Active administrators found: {len(active_admins)}",
            )

        for user in users:
            entity = {"entity_type": "user", "entity_id": user["id"]}
            if not user.get("email"):
                report.add_error(
                    FindingCategory.MISSING_FIELD,
                    f"User {user['id']} has no email",
                    **entity,
                )

            role = user["role"]
            if role == UserRole.ISSUING_AUTHORITY and user["status"] == UserStatus.PENDING:
                report.add_warning(
                    FindingCategory.PENDING_BACKLOG,
                    f"Issuing authority {user['email']} is pending approval",
                    **entity,
                )
                continue

            if (
                role in (UserRole.ADMINISTRATOR, UserRole.ISSUING_AUTHORITY)
                and user["status"] == UserStatus.ACTIVE
            ):
                missing = sorted(
                    set(ROLE_PERMISSIONS[UserRole(role)])
                    - set(user.get("permissions") or [])
                )
                if missing:
                    report.add_error(
                        FindingCategory.MISSING_PERMISSION,
                        f"User {user['email']} lacks permissions: {', '.join(missing)}",
                        **entity,
                    )
                else:
                    report.add_success(
                        FindingCategory.MISSING_PERMISSION,
                        f"User {user['email']} has proper permissions",
                        **entity,
                    )

    async def _check_documents(
        self, report: ValidationReport, lookup: UserLookup, linkage_only: bool
    ) -> None:
        documents = await self.store.query(Collection.DOCUMENTS)
        for document in documents:
            document_id = document["id"]
            entity = {"entity_type": "document", "entity_id": document_id}

            self._check_reference(
                report, lookup, "document", document_id, "uploader", document["uploader_id"]
            )

            verifier_id = document.get("verifier_id")
            if verifier_id:
                self._check_reference(
                    report,
                    lookup,
                    "document",
                    document_id,
                    "verifier",
                    verifier_id,
                    roles=VERIFIER_ROLES,
                )
            elif document["status"] == DocumentStatus.VERIFIED:
                report.add_error(
                    FindingCategory.WORKFLOW_STATE,
                    f"Document {document_id} is verified without a verifier",
                    **entity,
                )

            if linkage_only:
                continue

            if not document.get("file_reference"):
                report.add_error(
                    FindingCategory.MISSING_FIELD,
                    f"Document {document_id} has no file reference",
                    **entity,
                )
            else:
                report.add_success(
                    FindingCategory.MISSING_FIELD,
                    f"Document {document_id} has a file reference",
                    **entity,
                )

    async def _check_certificates(
        self, report: ValidationReport, lookup: UserLookup, linkage_only: bool
    ) -> None:
        certificates = await self.store.query(Collection.CERTIFICATES)
        for certificate in certificates:
            certificate_id = certificate["id"]

            self._check_reference(
                report,
                lookup,
                "certificate",
                certificate_id,
                "issuer",
                certificate["issuer_id"],
                roles=ISSUER_ROLES,
            )

            if certificate.get("recipient_id"):
                self._check_reference(
                    report,
                    lookup,
                    "certificate",
                    certificate_id,
                    "recipient",
                    certificate["recipient_id"],
                )

            if linkage_only:
                continue

            entity = {"entity_type": "certificate", "entity_id": certificate_id}
            if not certificate.get("title") or not certificate.get("recipient_name"):
                report.add_error(
                    FindingCategory.MISSING_FIELD,
                    f"Certificate {certificate_id} has incomplete data",
                    **entity,
                )
            else:
                report.add_success(
                    FindingCategory.MISSING_FIELD,
                    f"Certificate {certificate_id} has complete data",
                    **entity,
                )

    async def _check_templates(
        self, report: ValidationReport, lookup: UserLookup, linkage_only: bool
    ) -> None:
        templates = await self.store.query(Collection.TEMPLATES)
        for template in templates:
            template_id = template["id"]

            self._check_reference(
                report,
                lookup,
                "template",
                template_id,
                "owner",
                template["owner_id"],
                roles=TEMPLATE_OWNER_ROLES,
            )
            if template.get("client_reviewer_id"):
                self._check_reference(
                    report,
                    lookup,
                    "template",
                    template_id,
                    "client reviewer",
                    template["client_reviewer_id"],
                    roles=TEMPLATE_REVIEWER_ROLES,
                )

            if linkage_only:
                continue

            if (
                template["status"] == TemplateStatus.ACTIVE
                and template.get("client_approved_at") is None
            ):
                report.add_error(
                    FindingCategory.WORKFLOW_STATE,
                    f"Template {template_id} is active without client approval",
                    entity_type="template",
                    entity_id=template_id,
                )

    async def _check_notifications(
        self, report: ValidationReport, lookup: UserLookup, linkage_only: bool
    ) -> None:
        notifications = await self.store.query(
            Collection.NOTIFICATIONS,
            order_by="created_at",
            descending=True,
            limit=NOTIFICATION_SAMPLE_SIZE,
        )
        report.add_success(
            FindingCategory.REFERENCE_RESOLVED, "Notification system is accessible"
        )
        for notification in notifications:
            if not _has_structure(notification):
                report.add_error(
                    FindingCategory.MISSING_FIELD,
                    f"Notification {notification['id']} has incomplete structure",
                    entity_type="notification",
                    entity_id=notification["id"],
                )


def _has_structure(notification: Mapping[str, Any]) -> bool:
    return all(notification.get(key) for key in ("user_id", "title", "message"))
