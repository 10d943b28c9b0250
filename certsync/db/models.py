from typing import Any, Dict, List, Optional
from datetime import datetime
from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Text,
    JSON,
    Enum,
    Index,
    DateTime,
    inspect,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import enum
import uuid

from certsync.utils.datetime_utils import naive_utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls):
    # Persist enum values ("client_approved"), not member names.
    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        length=32,
    )


class Base(DeclarativeBase):
    def to_dict(self) -> Dict[str, Any]:
        """Column snapshot of the record, keyed by attribute name."""
        return {
            attr.key: getattr(self, attr.key)
            for attr in inspect(self).mapper.column_attrs
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={getattr(self, 'id', None)!r}>"


# Enums
class Collection(str, enum.Enum):
    USERS = "users"
    TEMPLATES = "templates"
    DOCUMENTS = "documents"
    CERTIFICATES = "certificates"
    NOTIFICATIONS = "notifications"
    INTERACTIONS = "interactions"
    VALIDATION_REPORTS = "validation_reports"
    SYSTEM_LOCKS = "system_locks"
    SYSTEM_CONFIG = "system_config"


class UserRole(str, enum.Enum):
    ADMINISTRATOR = "administrator"
    ISSUING_AUTHORITY = "issuing_authority"
    CLIENT_REVIEWER = "client_reviewer"
    RECIPIENT = "recipient"


class UserStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class TemplateStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    CLIENT_APPROVED = "client_approved"
    REJECTED = "rejected"
    NEEDS_REVISION = "needs_revision"
    ACTIVE = "active"


class ReviewDecision(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_REVISION = "needs_revision"


class DocumentStatus(str, enum.Enum):
    UPLOADED = "uploaded"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class CertificateStatus(str, enum.Enum):
    ISSUED = "issued"
    REVOKED = "revoked"


class NotificationKind(str, enum.Enum):
    TEMPLATE_REVIEW_REQUEST = "template_review_request"
    TEMPLATE_REVIEW_RESULT = "template_review_result"
    TEMPLATE_ACTIVATED = "template_activated"
    DOCUMENT_REVIEW_REQUEST = "document_review_request"
    DOCUMENT_VERIFIED = "document_verified"
    DOCUMENT_REJECTED = "document_rejected"
    CERTIFICATE_RECEIVED = "certificate_received"
    STATUS_UPDATE = "status_update"
    WELCOME = "welcome"
    SYSTEM = "system"


class InteractionType(str, enum.Enum):
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_REVIEWED = "template_reviewed"
    TEMPLATE_ACTIVATED = "template_activated"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_REVIEWED = "document_reviewed"
    CERTIFICATE_ISSUED = "certificate_issued"
    USER_STATUS_CHANGED = "user_status_changed"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now, nullable=False
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False
    )  # RFC 5321 max length
    display_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole), nullable=False)
    status: Mapped[UserStatus] = mapped_column(
        _enum_column(UserStatus), default=UserStatus.PENDING, nullable=False
    )
    permissions: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    welcome_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    profile_metadata: Mapped[Dict[str, Any]] = mapped_column(
        JSON, default=dict, nullable=False
    )

    __table_args__ = (
        Index("idx_users_role_status", "role", "status"),
        Index("idx_users_email", "email"),
    )


class CertificateTemplate(Base, AuditMixin):
    __tablename__ = "templates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[TemplateStatus] = mapped_column(
        _enum_column(TemplateStatus), default=TemplateStatus.DRAFT, nullable=False
    )
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    client_reviewer_id: Mapped[Optional[str]] = mapped_column(String(64))
    review_comments: Mapped[Optional[str]] = mapped_column(Text)
    # "direct" when the review went through the orchestrator
    review_source: Mapped[Optional[str]] = mapped_column(String(32))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    client_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_templates_status", "status"),
        Index("idx_templates_owner", "owner_id"),
    )


class Document(Base, AuditMixin):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    uploader_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        _enum_column(DocumentStatus), default=DocumentStatus.UPLOADED, nullable=False
    )
    verifier_id: Mapped[Optional[str]] = mapped_column(String(64))
    file_reference: Mapped[str] = mapped_column(String(1024), default="", nullable=False)
    file_hash: Mapped[Optional[str]] = mapped_column(String(128))
    review_comments: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_documents_status", "status"),
        Index("idx_documents_uploader", "uploader_id"),
    )


class Certificate(Base, AuditMixin):
    __tablename__ = "certificates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    issuer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_id: Mapped[Optional[str]] = mapped_column(String(64))
    recipient_email: Mapped[Optional[str]] = mapped_column(String(320))
    recipient_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    status: Mapped[CertificateStatus] = mapped_column(
        _enum_column(CertificateStatus),
        default=CertificateStatus.ISSUED,
        nullable=False,
    )
    issued_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )

    __table_args__ = (
        Index("idx_certificates_issuer", "issuer_id"),
        Index("idx_certificates_recipient", "recipient_id"),
    )


class Notification(Base, AuditMixin):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[NotificationKind] = mapped_column(
        _enum_column(NotificationKind), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_notifications_user_read", "user_id", "is_read"),
        Index("idx_notifications_created", "created_at"),
    )


class InteractionRecord(Base, AuditMixin):
    """Append-only cross-role audit entry. The id is derived from event_key."""

    __tablename__ = "interactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    type: Mapped[InteractionType] = mapped_column(
        _enum_column(InteractionType), nullable=False
    )
    from_role: Mapped[str] = mapped_column(String(32), nullable=False)
    to_role: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )

    __table_args__ = (
        Index("idx_interactions_entity", "entity_id"),
        Index("idx_interactions_timestamp", "timestamp"),
    )


class ValidationReportRecord(Base, AuditMixin):
    __tablename__ = "validation_reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    warning_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    critical_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    triggered_by: Mapped[str] = mapped_column(String(64), default="manual", nullable=False)
    findings: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False
    )


class SystemLock(Base, AuditMixin):
    __tablename__ = "system_locks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class SystemConfig(Base, AuditMixin):
    __tablename__ = "system_config"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


COLLECTION_MODELS = {
    Collection.USERS: User,
    Collection.TEMPLATES: CertificateTemplate,
    Collection.DOCUMENTS: Document,
    Collection.CERTIFICATES: Certificate,
    Collection.NOTIFICATIONS: Notification,
    Collection.INTERACTIONS: InteractionRecord,
    Collection.VALIDATION_REPORTS: ValidationReportRecord,
    Collection.SYSTEM_LOCKS: SystemLock,
    Collection.SYSTEM_CONFIG: SystemConfig,
}


# Role defaults applied on account creation and by the permission back-fill.
ROLE_PERMISSIONS: Dict[UserRole, List[str]] = {
    UserRole.ADMINISTRATOR: [
        "manage_users",
        "manage_certificates",
        "manage_system",
        "view_analytics",
        "manage_ca",
        "approve_requests",
    ],
    UserRole.ISSUING_AUTHORITY: [
        "create_templates",
        "issue_certificates",
        "verify_documents",
    ],
    UserRole.CLIENT_REVIEWER: [
        "review_templates",
        "view_documents",
    ],
    UserRole.RECIPIENT: [
        "view_certificates",
        "upload_documents",
    ],
}
