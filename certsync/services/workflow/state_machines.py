from typing import Dict, FrozenSet, Mapping, TypeVar

from certsync.db.models import DocumentStatus, TemplateStatus, UserStatus
from certsync.utils.errors import InvalidTransitionError

S = TypeVar("S")

TransitionTable = Mapping[S, FrozenSet[S]]

TEMPLATE_TRANSITIONS: Dict[TemplateStatus, FrozenSet[TemplateStatus]] = {
    TemplateStatus.DRAFT: frozenset({TemplateStatus.PENDING_REVIEW}),
    TemplateStatus.PENDING_REVIEW: frozenset(
        {
            TemplateStatus.CLIENT_APPROVED,
            TemplateStatus.REJECTED,
            TemplateStatus.NEEDS_REVISION,
        }
    ),
    TemplateStatus.CLIENT_APPROVED: frozenset({TemplateStatus.ACTIVE}),
    # Resubmission is performed by the template editor, outside this engine.
    TemplateStatus.NEEDS_REVISION: frozenset({TemplateStatus.PENDING_REVIEW}),
    TemplateStatus.REJECTED: frozenset(),
    TemplateStatus.ACTIVE: frozenset(),
}

DOCUMENT_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.UPLOADED: frozenset({DocumentStatus.PENDING}),
    DocumentStatus.PENDING: frozenset(
        {DocumentStatus.VERIFIED, DocumentStatus.REJECTED}
    ),
    DocumentStatus.VERIFIED: frozenset(),
    DocumentStatus.REJECTED: frozenset(),
}

USER_TRANSITIONS: Dict[UserStatus, FrozenSet[UserStatus]] = {
    UserStatus.PENDING: frozenset({UserStatus.ACTIVE, UserStatus.SUSPENDED}),
    UserStatus.ACTIVE: frozenset({UserStatus.SUSPENDED}),
    UserStatus.SUSPENDED: frozenset({UserStatus.ACTIVE}),
}


def can_transition(table: TransitionTable, current: S, target: S) -> bool:
    """
    Check a status change against a transition table.

    Returns True when the change must be applied and False when the entity
    already holds ``target`` (a no-op). Raises InvalidTransitionError when
    the table does not allow the change.
    """
    if current == target:
        return False
    if target not in table.get(current, frozenset()):
        raise InvalidTransitionError(
            f"Cannot transition from {getattr(current, 'value', current)} "
            f"to {getattr(target, 'value', target)}"
        )
    return True


def is_terminal(table: TransitionTable, status: S) -> bool:
    return not table.get(status)
