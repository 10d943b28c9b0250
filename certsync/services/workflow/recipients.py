import re
import uuid
from typing import Optional

from certsync.db.models import (
    ROLE_PERMISSIONS,
    Collection,
    UserRole,
    UserStatus,
)
from certsync.store.base import RecordStore
from certsync.utils.datetime_utils import naive_utc_now
from certsync.utils.errors import RecordExistsError
from certsync.utils.logging import get_logger

logger = get_logger()

RECIPIENT_NAMESPACE = uuid.UUID("9d4f0f52-6a3b-4c8e-b1f4-2e7a5d0c8a13")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not _EMAIL_PATTERN.match(normalized):
        raise ValueError(f"Invalid recipient email: {email!r}")
    return normalized


def placeholder_recipient_id(email: str) -> str:
    return str(uuid.uuid5(RECIPIENT_NAMESPACE, normalize_email(email)))


async def resolve_or_create_recipient(
    store: RecordStore,
    email: str,
    display_name: Optional[str] = None,
    source: str = "certificate_issuance",
) -> str:
    """
    Return the id of the user owning ``email``, creating a placeholder
    recipient account when none exists.

    Repeated calls for the same address always resolve to the same user.
    The placeholder id is derived from the address, so two concurrent
    callers race on one record id and the loser re-reads the winner's user.
    """
    normalized = normalize_email(email)

    existing = await store.query(Collection.USERS, {"email": normalized}, limit=1)
    if existing:
        return existing[0]["id"]

    now = naive_utc_now()
    try:
        user = await store.create(
            Collection.USERS,
            {
                "email": normalized,
                "display_name": display_name or normalized.split("@")[0],
                "role": UserRole.RECIPIENT,
                "status": UserStatus.ACTIVE,
                "permissions": list(ROLE_PERMISSIONS[UserRole.RECIPIENT]),
                "status_changed_at": now,
                "profile_metadata": {
                    "created_by_certificate": True,
                    "source": source,
                },
            },
            record_id=placeholder_recipient_id(normalized),
        )
    except RecordExistsError:
        existing = await store.query(Collection.USERS, {"email": normalized}, limit=1)
        if not existing:
            raise
        return existing[0]["id"]

    logger.info(f"Created placeholder recipient {user['id']} for {normalized}")
    return user["id"]
