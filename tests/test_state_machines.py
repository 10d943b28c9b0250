import pytest

from certsync.db.models import DocumentStatus, TemplateStatus, UserStatus
from certsync.services.workflow.state_machines import (
    DOCUMENT_TRANSITIONS,
    TEMPLATE_TRANSITIONS,
    USER_TRANSITIONS,
    can_transition,
    is_terminal,
)
from certsync.utils.errors import InvalidTransitionError


class TestTemplateTransitions:
    """Test the template review state machine."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (TemplateStatus.DRAFT, TemplateStatus.PENDING_REVIEW),
            (TemplateStatus.PENDING_REVIEW, TemplateStatus.CLIENT_APPROVED),
            (TemplateStatus.PENDING_REVIEW, TemplateStatus.REJECTED),
            (TemplateStatus.PENDING_REVIEW, TemplateStatus.NEEDS_REVISION),
            (TemplateStatus.CLIENT_APPROVED, TemplateStatus.ACTIVE),
            (TemplateStatus.NEEDS_REVISION, TemplateStatus.PENDING_REVIEW),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(TEMPLATE_TRANSITIONS, current, target) is True

    @pytest.mark.parametrize(
        "current,target",
        [
            (TemplateStatus.PENDING_REVIEW, TemplateStatus.ACTIVE),
            (TemplateStatus.DRAFT, TemplateStatus.ACTIVE),
            (TemplateStatus.REJECTED, TemplateStatus.CLIENT_APPROVED),
            (TemplateStatus.ACTIVE, TemplateStatus.PENDING_REVIEW),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransitionError):
            can_transition(TEMPLATE_TRANSITIONS, current, target)

    def test_same_status_is_noop(self):
        assert (
            can_transition(TEMPLATE_TRANSITIONS, TemplateStatus.ACTIVE, TemplateStatus.ACTIVE)
            is False
        )

    def test_terminal_statuses(self):
        assert is_terminal(TEMPLATE_TRANSITIONS, TemplateStatus.ACTIVE)
        assert is_terminal(TEMPLATE_TRANSITIONS, TemplateStatus.REJECTED)
        assert not is_terminal(TEMPLATE_TRANSITIONS, TemplateStatus.PENDING_REVIEW)


class TestDocumentTransitions:
    """Test the document verification state machine."""

    def test_upload_then_review(self):
        assert can_transition(
            DOCUMENT_TRANSITIONS, DocumentStatus.UPLOADED, DocumentStatus.PENDING
        )
        assert can_transition(
            DOCUMENT_TRANSITIONS, DocumentStatus.PENDING, DocumentStatus.VERIFIED
        )
        assert can_transition(
            DOCUMENT_TRANSITIONS, DocumentStatus.PENDING, DocumentStatus.REJECTED
        )

    def test_cannot_verify_without_pending(self):
        with pytest.raises(InvalidTransitionError):
            can_transition(
                DOCUMENT_TRANSITIONS, DocumentStatus.UPLOADED, DocumentStatus.VERIFIED
            )

    def test_reviewed_documents_are_terminal(self):
        with pytest.raises(InvalidTransitionError):
            can_transition(
                DOCUMENT_TRANSITIONS, DocumentStatus.VERIFIED, DocumentStatus.REJECTED
            )
        assert is_terminal(DOCUMENT_TRANSITIONS, DocumentStatus.REJECTED)


class TestUserTransitions:
    """Test account status changes."""

    def test_activation_and_suspension(self):
        assert can_transition(USER_TRANSITIONS, UserStatus.PENDING, UserStatus.ACTIVE)
        assert can_transition(USER_TRANSITIONS, UserStatus.ACTIVE, UserStatus.SUSPENDED)
        assert can_transition(USER_TRANSITIONS, UserStatus.SUSPENDED, UserStatus.ACTIVE)

    def test_cannot_return_to_pending(self):
        with pytest.raises(InvalidTransitionError):
            can_transition(USER_TRANSITIONS, UserStatus.ACTIVE, UserStatus.PENDING)
