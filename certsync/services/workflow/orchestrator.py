from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from certsync.db.models import (
    Collection,
    DocumentStatus,
    InteractionType,
    NotificationKind,
    ReviewDecision,
    TemplateStatus,
    UserRole,
    UserStatus,
)
from certsync.schemas.workflow_schemas import HandlerResult
from certsync.services.activity_recorder import ActivityRecorder
from certsync.services.notifications.dispatcher import NotificationDispatcher
from certsync.services.workflow.recipients import resolve_or_create_recipient
from certsync.services.workflow.state_machines import (
    DOCUMENT_TRANSITIONS,
    TEMPLATE_TRANSITIONS,
    USER_TRANSITIONS,
    TransitionTable,
    can_transition,
)
from certsync.store.base import Record, RecordStore
from certsync.utils.datetime_utils import isoformat_or_none, naive_utc_now
from certsync.utils.errors import (
    EntityNotFoundError,
    InvalidTransitionError,
    TransitionError,
)
from certsync.utils.logging import get_logger

logger = get_logger()

EntityRef = Union[str, Mapping[str, Any]]

SYSTEM_ROLE = "system"

# Marks template reviews applied by on_template_reviewed, which activates
# approved templates itself.
DIRECT_REVIEW_SOURCE = "direct"

TEMPLATE_DECISION_STATUS = {
    ReviewDecision.APPROVED: TemplateStatus.CLIENT_APPROVED,
    ReviewDecision.REJECTED: TemplateStatus.REJECTED,
    ReviewDecision.NEEDS_REVISION: TemplateStatus.NEEDS_REVISION,
}

DOCUMENT_DECISION_STATUS = {
    ReviewDecision.APPROVED: DocumentStatus.VERIFIED,
    ReviewDecision.REJECTED: DocumentStatus.REJECTED,
}

TEMPLATE_REVIEWER_ROLES = (UserRole.CLIENT_REVIEWER, UserRole.ADMINISTRATOR)
DOCUMENT_VERIFIER_ROLES = (UserRole.ISSUING_AUTHORITY, UserRole.ADMINISTRATOR)
WELCOMED_ROLES = (UserRole.ISSUING_AUTHORITY, UserRole.CLIENT_REVIEWER)

ROLE_LABELS = {
    UserRole.ADMINISTRATOR: "administrator",
    UserRole.ISSUING_AUTHORITY: "issuing authority",
    UserRole.CLIENT_REVIEWER: "client reviewer",
    UserRole.RECIPIENT: "recipient",
}

DECISION_LABELS = {
    ReviewDecision.APPROVED: "approved",
    ReviewDecision.REJECTED: "rejected",
    ReviewDecision.NEEDS_REVISION: "returned for revision",
}


def _entity_id(entity: EntityRef) -> str:
    return entity if isinstance(entity, str) else entity["id"]


def _value(value: Any) -> str:
    return getattr(value, "value", value)


def _comments_suffix(comments: Optional[str]) -> str:
    return f" Comments: {comments}" if comments else ""


def status_marker(user: Mapping[str, Any]) -> Optional[datetime]:
    """Timestamp identifying one status change of a user record."""
    return user.get("status_changed_at") or user.get("updated_at")


class WorkflowOrchestrator:
    """
    State machines for templates, documents, certificate issuance and user
    status, plus the cross-role side effects of each transition.

    Every handler follows the same order: apply the authoritative status
    change, write the interaction record for the logical event, then fan out
    notifications. The interaction record is keyed by the event, so a
    redelivered event finds it already written and skips the fan-out; status
    changes that are already in place are no-ops. Transition failures raise,
    notification failures are logged by the dispatcher and only reduce the
    ``notified`` count.
    """

    def __init__(
        self,
        store: RecordStore,
        dispatcher: NotificationDispatcher,
        recorder: ActivityRecorder,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.recorder = recorder

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _load(self, collection: Collection, entity_id: str, label: str) -> Record:
        record = await self.store.get(collection, entity_id)
        if record is None:
            raise EntityNotFoundError(f"{label} {entity_id} not found")
        return record

    async def _transition(
        self,
        collection: Collection,
        table: TransitionTable,
        record: Record,
        target,
        label: str,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Record, bool]:
        """
        Move ``record`` to ``target`` with a conditional update on its
        current status. Returns the fresh record and whether this call
        applied the change.
        """
        entity_id = record["id"]
        current = record["status"]
        if not can_transition(table, current, target):
            logger.info(f"{label} {entity_id} already {_value(target)}, nothing to apply")
            return record, False

        updated = await self.store.update(
            collection,
            entity_id,
            {"status": target, **dict(fields or {})},
            expected={"status": current},
        )
        if updated is None:
            latest = await self._load(collection, entity_id, label)
            if latest["status"] == target:
                logger.info(
                    f"{label} {entity_id} reached {_value(target)} concurrently"
                )
                return latest, False
            raise TransitionError(
                f"{label} {entity_id} changed from {_value(current)} to "
                f"{_value(latest['status'])} while transitioning to {_value(target)}"
            )

        logger.info(
            f"{label} {entity_id} transitioned {_value(current)} -> {_value(target)}"
        )
        return updated, True

    async def _notify_one(
        self,
        user_id: Optional[str],
        kind: NotificationKind,
        context: Mapping[str, Any],
        data: Mapping[str, Any],
    ) -> int:
        if not user_id:
            logger.warning(f"No target user for {kind.value} notification")
            return 0
        notification_id = await self.dispatcher.notify(user_id, kind, context, data)
        return 1 if notification_id else 0

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def on_template_created(self, template: EntityRef) -> HandlerResult:
        """
        Ask every active client reviewer to review a submitted template.

        The template status is left as the submitter set it.
        """
        template_id = _entity_id(template)
        record = await self._load(Collection.TEMPLATES, template_id, "Template")
        revision = record.get("revision") or 1

        interaction = await self.recorder.record(
            InteractionType.TEMPLATE_CREATED,
            UserRole.ISSUING_AUTHORITY,
            UserRole.CLIENT_REVIEWER,
            template_id,
            event_key=f"template_created:{template_id}:{revision}",
            payload={
                "template_name": record["name"],
                "owner_id": record["owner_id"],
                "revision": revision,
            },
        )
        if interaction is None:
            return HandlerResult(entity_id=template_id, status=_value(record["status"]))

        notified = await self.dispatcher.send_to_role(
            UserRole.CLIENT_REVIEWER,
            NotificationKind.TEMPLATE_REVIEW_REQUEST,
            context={"template_name": record["name"]},
            data={
                "template_id": template_id,
                "owner_id": record["owner_id"],
                "revision": revision,
            },
        )
        return HandlerResult(
            entity_id=template_id,
            recorded=True,
            notified=notified,
            status=_value(record["status"]),
        )

    async def on_template_reviewed(
        self,
        template: EntityRef,
        reviewer_id: str,
        decision: Union[ReviewDecision, str],
        comments: Optional[str] = None,
    ) -> HandlerResult:
        """
        Apply a client reviewer's decision, tell the owner, and activate the
        template when it was approved.
        """
        decision = ReviewDecision(decision)
        template_id = _entity_id(template)

        reviewer = await self._load(Collection.USERS, reviewer_id, "Reviewer")
        if reviewer["role"] not in TEMPLATE_REVIEWER_ROLES:
            raise InvalidTransitionError(
                f"User {reviewer_id} with role {_value(reviewer['role'])} cannot review templates"
            )

        record = await self._load(Collection.TEMPLATES, template_id, "Template")
        if (
            decision == ReviewDecision.APPROVED
            and record["status"] == TemplateStatus.ACTIVE
        ):
            logger.info(f"Template {template_id} already active, review is a no-op")
            return HandlerResult(entity_id=template_id, status=TemplateStatus.ACTIVE.value)

        now = naive_utc_now()
        fields: Dict[str, Any] = {
            "client_reviewer_id": reviewer_id,
            "review_comments": comments,
            "review_source": DIRECT_REVIEW_SOURCE,
            "reviewed_at": now,
        }
        if decision == ReviewDecision.APPROVED:
            fields["client_approved_at"] = now

        record, applied = await self._transition(
            Collection.TEMPLATES,
            TEMPLATE_TRANSITIONS,
            record,
            TEMPLATE_DECISION_STATUS[decision],
            "Template",
            fields,
        )
        revision = record.get("revision") or 1

        interaction = await self.recorder.record(
            InteractionType.TEMPLATE_REVIEWED,
            UserRole.CLIENT_REVIEWER,
            UserRole.ISSUING_AUTHORITY,
            template_id,
            event_key=f"template_reviewed:{template_id}:{revision}:{decision.value}",
            payload={
                "decision": decision.value,
                "reviewer_id": reviewer_id,
                "comments": comments,
                "revision": revision,
            },
        )

        notified = 0
        if interaction is not None:
            notified += await self._notify_one(
                record["owner_id"],
                NotificationKind.TEMPLATE_REVIEW_RESULT,
                {
                    "template_name": record["name"],
                    "decision_label": DECISION_LABELS[decision],
                    "comments_suffix": _comments_suffix(comments),
                },
                {
                    "template_id": template_id,
                    "decision": decision.value,
                    "reviewer_id": reviewer_id,
                },
            )

        status = _value(record["status"])
        if decision == ReviewDecision.APPROVED:
            activation = await self.activate_template(template_id)
            notified += activation.notified
            status = activation.status

        return HandlerResult(
            entity_id=template_id,
            applied=applied,
            recorded=interaction is not None,
            notified=notified,
            status=status,
        )

    async def activate_template(self, template_id: str) -> HandlerResult:
        """
        Activate a client-approved template and tell its owner.

        Raises InvalidTransitionError unless the template is client_approved.
        A template that is already active is left alone.
        """
        record = await self._load(Collection.TEMPLATES, template_id, "Template")
        status = record["status"]
        if status not in (TemplateStatus.CLIENT_APPROVED, TemplateStatus.ACTIVE):
            raise InvalidTransitionError(
                f"Template {template_id} must be client_approved to activate, "
                f"found {_value(status)}"
            )

        record, applied = await self._transition(
            Collection.TEMPLATES,
            TEMPLATE_TRANSITIONS,
            record,
            TemplateStatus.ACTIVE,
            "Template",
            {"activated_at": naive_utc_now()},
        )
        revision = record.get("revision") or 1

        interaction = await self.recorder.record(
            InteractionType.TEMPLATE_ACTIVATED,
            SYSTEM_ROLE,
            UserRole.ISSUING_AUTHORITY,
            template_id,
            event_key=f"template_activated:{template_id}:{revision}",
            payload={"revision": revision},
        )
        notified = 0
        if interaction is not None:
            notified = await self._notify_one(
                record["owner_id"],
                NotificationKind.TEMPLATE_ACTIVATED,
                {"template_name": record["name"]},
                {"template_id": template_id},
            )

        return HandlerResult(
            entity_id=template_id,
            applied=applied,
            recorded=interaction is not None,
            notified=notified,
            status=TemplateStatus.ACTIVE.value,
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def on_document_uploaded(self, document: EntityRef) -> HandlerResult:
        """
        Move an uploaded document to pending and ask every active issuing
        authority to verify it.

        A missing document record is fatal: the EntityNotFoundError propagates
        so the failure is visible instead of leaving reviewers unnotified.
        """
        document_id = _entity_id(document)
        record = await self._load(Collection.DOCUMENTS, document_id, "Document")

        if record["status"] in (DocumentStatus.VERIFIED, DocumentStatus.REJECTED):
            logger.info(
                f"Document {document_id} already reviewed, upload handling skipped"
            )
            return HandlerResult(entity_id=document_id, status=_value(record["status"]))

        record, applied = await self._transition(
            Collection.DOCUMENTS,
            DOCUMENT_TRANSITIONS,
            record,
            DocumentStatus.PENDING,
            "Document",
        )

        uploader = await self.store.get(Collection.USERS, record["uploader_id"])
        from_role = uploader["role"] if uploader else UserRole.RECIPIENT

        interaction = await self.recorder.record(
            InteractionType.DOCUMENT_UPLOADED,
            from_role,
            UserRole.ISSUING_AUTHORITY,
            document_id,
            event_key=f"document_uploaded:{document_id}",
            payload={
                "document_name": record["name"],
                "uploader_id": record["uploader_id"],
                "file_hash": record.get("file_hash"),
            },
        )
        if interaction is None:
            return HandlerResult(
                entity_id=document_id, applied=applied, status=_value(record["status"])
            )

        notified = await self.dispatcher.send_to_role(
            UserRole.ISSUING_AUTHORITY,
            NotificationKind.DOCUMENT_REVIEW_REQUEST,
            context={"document_name": record["name"]},
            data={"document_id": document_id, "uploader_id": record["uploader_id"]},
        )
        return HandlerResult(
            entity_id=document_id,
            applied=applied,
            recorded=True,
            notified=notified,
            status=_value(record["status"]),
        )

    async def on_document_reviewed(
        self,
        document_id: str,
        verifier_id: str,
        decision: Union[ReviewDecision, str],
        comments: Optional[str] = None,
    ) -> HandlerResult:
        """Record an issuing authority's verification decision on a pending document."""
        decision = ReviewDecision(decision)
        if decision not in DOCUMENT_DECISION_STATUS:
            raise InvalidTransitionError(
                f"Decision {decision.value} does not apply to documents"
            )

        verifier = await self._load(Collection.USERS, verifier_id, "Verifier")
        if verifier["role"] not in DOCUMENT_VERIFIER_ROLES:
            raise InvalidTransitionError(
                f"User {verifier_id} with role {_value(verifier['role'])} cannot verify documents"
            )

        record = await self._load(Collection.DOCUMENTS, document_id, "Document")
        record, applied = await self._transition(
            Collection.DOCUMENTS,
            DOCUMENT_TRANSITIONS,
            record,
            DOCUMENT_DECISION_STATUS[decision],
            "Document",
            {
                "verifier_id": verifier_id,
                "review_comments": comments,
                "reviewed_at": naive_utc_now(),
            },
        )

        result = await self.on_document_review_recorded(record)
        result.applied = applied
        return result

    async def on_document_review_recorded(self, document: EntityRef) -> HandlerResult:
        """Tell the uploader about a verification outcome already written to the document."""
        document_id = _entity_id(document)
        record = await self._load(Collection.DOCUMENTS, document_id, "Document")
        status = record["status"]
        if status not in (DocumentStatus.VERIFIED, DocumentStatus.REJECTED):
            logger.info(f"Document {document_id} is {_value(status)}, no review to report")
            return HandlerResult(entity_id=document_id, status=_value(status))

        interaction = await self.recorder.record(
            InteractionType.DOCUMENT_REVIEWED,
            UserRole.ISSUING_AUTHORITY,
            UserRole.RECIPIENT,
            document_id,
            event_key=f"document_reviewed:{document_id}:{_value(status)}",
            payload={
                "status": _value(status),
                "verifier_id": record.get("verifier_id"),
                "comments": record.get("review_comments"),
            },
        )
        notified = 0
        if interaction is not None:
            kind = (
                NotificationKind.DOCUMENT_VERIFIED
                if status == DocumentStatus.VERIFIED
                else NotificationKind.DOCUMENT_REJECTED
            )
            notified = await self._notify_one(
                record["uploader_id"],
                kind,
                {
                    "document_name": record["name"],
                    "comments_suffix": _comments_suffix(record.get("review_comments")),
                },
                {"document_id": document_id, "verifier_id": record.get("verifier_id")},
            )

        return HandlerResult(
            entity_id=document_id,
            recorded=interaction is not None,
            notified=notified,
            status=_value(status),
        )

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    async def on_certificate_issued(self, certificate: EntityRef) -> HandlerResult:
        """
        Link the certificate to its recipient, creating a placeholder account
        for an unknown email, then notify the recipient.
        """
        certificate_id = _entity_id(certificate)
        record = await self._load(Collection.CERTIFICATES, certificate_id, "Certificate")

        recipient_id = record.get("recipient_id")
        linked = False
        if not recipient_id or await self.store.get(Collection.USERS, recipient_id) is None:
            email = record.get("recipient_email")
            if not email:
                raise EntityNotFoundError(
                    f"Certificate {certificate_id} has no resolvable recipient"
                )
            try:
                recipient_id = await resolve_or_create_recipient(
                    self.store, email, record.get("recipient_name") or None
                )
            except ValueError as e:
                raise InvalidTransitionError(str(e)) from e

            updated = await self.store.update(
                Collection.CERTIFICATES, certificate_id, {"recipient_id": recipient_id}
            )
            if updated is None:
                raise EntityNotFoundError(f"Certificate {certificate_id} not found")
            record = updated
            linked = True
            logger.info(f"Certificate {certificate_id} linked to recipient {recipient_id}")

        interaction = await self.recorder.record(
            InteractionType.CERTIFICATE_ISSUED,
            UserRole.ISSUING_AUTHORITY,
            UserRole.RECIPIENT,
            certificate_id,
            event_key=f"certificate_issued:{certificate_id}",
            payload={
                "issuer_id": record["issuer_id"],
                "recipient_id": recipient_id,
                "title": record["title"],
            },
        )
        notified = 0
        if interaction is not None:
            notified = await self._notify_one(
                recipient_id,
                NotificationKind.CERTIFICATE_RECEIVED,
                {"certificate_title": record["title"]},
                {"certificate_id": certificate_id, "issuer_id": record["issuer_id"]},
            )

        return HandlerResult(
            entity_id=certificate_id,
            applied=linked,
            recorded=interaction is not None,
            notified=notified,
            status=_value(record["status"]),
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def on_user_status_changed(
        self,
        user_id: str,
        old_status: Union[UserStatus, str],
        new_status: Union[UserStatus, str],
        role: Optional[Union[UserRole, str]] = None,
        admin_id: Optional[str] = None,
        changed_at: Optional[datetime] = None,
    ) -> HandlerResult:
        """
        Log and announce a status change that has already been written.

        Issuing authorities and client reviewers becoming active also get a
        welcome notification, at most once per account.
        """
        old_status = UserStatus(old_status)
        new_status = UserStatus(new_status)
        user = await self._load(Collection.USERS, user_id, "User")
        role = UserRole(role) if role is not None else UserRole(user["role"])
        marker = isoformat_or_none(changed_at or status_marker(user))

        interaction = await self.recorder.record(
            InteractionType.USER_STATUS_CHANGED,
            UserRole.ADMINISTRATOR if admin_id else SYSTEM_ROLE,
            role,
            user_id,
            event_key=f"user_status_changed:{user_id}:{old_status.value}:{new_status.value}:{marker}",
            payload={
                "old_status": old_status.value,
                "new_status": new_status.value,
                "admin_id": admin_id,
            },
        )
        if interaction is None:
            return HandlerResult(entity_id=user_id, status=_value(user["status"]))

        notified = await self._notify_one(
            user_id,
            NotificationKind.STATUS_UPDATE,
            {"old_status": old_status.value, "new_status": new_status.value},
            {"old_status": old_status.value, "new_status": new_status.value},
        )

        if new_status == UserStatus.ACTIVE and role in WELCOMED_ROLES:
            claimed = await self.store.update(
                Collection.USERS,
                user_id,
                {"welcome_sent_at": naive_utc_now()},
                expected={"welcome_sent_at": None},
            )
            if claimed is not None:
                notified += await self._notify_one(
                    user_id,
                    NotificationKind.WELCOME,
                    {"role_label": ROLE_LABELS[role]},
                    {"role": role.value},
                )
            else:
                logger.info(f"Welcome already sent to user {user_id}")

        return HandlerResult(
            entity_id=user_id,
            recorded=True,
            notified=notified,
            status=_value(user["status"]),
        )

    async def change_user_status(
        self,
        user_id: str,
        new_status: Union[UserStatus, str],
        admin_id: Optional[str] = None,
    ) -> HandlerResult:
        """Administrative status change followed by its side effects."""
        new_status = UserStatus(new_status)
        if admin_id is not None:
            admin = await self._load(Collection.USERS, admin_id, "Administrator")
            if admin["role"] != UserRole.ADMINISTRATOR:
                raise InvalidTransitionError(
                    f"User {admin_id} is not an administrator"
                )

        user = await self._load(Collection.USERS, user_id, "User")
        old_status = UserStatus(user["status"])
        user, applied = await self._transition(
            Collection.USERS,
            USER_TRANSITIONS,
            user,
            new_status,
            "User",
            {"status_changed_at": naive_utc_now()},
        )
        if not applied:
            return HandlerResult(entity_id=user_id, status=_value(user["status"]))

        result = await self.on_user_status_changed(
            user_id,
            old_status,
            new_status,
            role=user["role"],
            admin_id=admin_id,
            changed_at=status_marker(user),
        )
        result.applied = True
        return result
