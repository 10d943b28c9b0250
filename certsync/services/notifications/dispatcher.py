from typing import Any, Dict, List, Mapping, Optional, Sequence

from certsync.db.models import Collection, NotificationKind, UserRole, UserStatus
from certsync.services.notifications.templates import construct_message
from certsync.store.base import RecordStore
from certsync.utils.logging import get_logger

logger = get_logger()


class NotificationDispatcher:
    """
    Fans notifications out to users.

    Delivery is best-effort: every failure is logged and reported through the
    return value, never raised, so callers can keep the workflow transition
    that triggered the notification.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def send(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationKind = NotificationKind.SYSTEM,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        """Write a single notification. Returns its id, or None on failure."""
        try:
            record = await self.store.create(
                Collection.NOTIFICATIONS,
                {
                    "user_id": user_id,
                    "kind": NotificationKind(type),
                    "title": title,
                    "message": message,
                    "data": dict(data or {}),
                    "is_read": False,
                },
            )
            logger.info(f"Notification {record['id']} sent to user {user_id}")
            return record["id"]
        except Exception as e:
            logger.opt(exception=True).error(
                "Failed to send notification",
                user_id=user_id,
                kind=str(type),
                error=str(e),
            )
            return None

    async def send_many(
        self,
        user_ids: Sequence[str],
        kind: NotificationKind,
        context: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """
        Write one notification per user as a single atomic batch.

        Returns the number of notifications written: all of them, or 0 when
        the batch failed.
        """
        recipients = list(dict.fromkeys(user_ids))
        if not recipients:
            logger.info(f"No recipients for {kind.value} notification, nothing sent")
            return 0

        content = construct_message(kind, context or {})
        payload: Dict[str, Any] = dict(data or {})
        items = [
            (
                Collection.NOTIFICATIONS,
                None,
                {
                    "user_id": user_id,
                    "kind": kind,
                    "title": content["subject"],
                    "message": content["body"],
                    "data": payload,
                    "is_read": False,
                },
            )
            for user_id in recipients
        ]

        try:
            records = await self.store.batch_write(items)
        except Exception as e:
            logger.opt(exception=True).error(
                "Notification batch failed",
                kind=kind.value,
                recipients=len(recipients),
                error=str(e),
            )
            return 0

        logger.info(f"Sent {len(records)} {kind.value} notification(s)")
        return len(records)

    async def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        context: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        """Render ``kind`` for ``context`` and send it to one user."""
        content = construct_message(kind, context or {})
        return await self.send(
            user_id, content["subject"], content["body"], type=kind, data=data
        )

    async def active_user_ids(self, role: UserRole) -> List[str]:
        users = await self.store.query(
            Collection.USERS, {"role": role, "status": UserStatus.ACTIVE}
        )
        return [user["id"] for user in users]

    async def send_to_role(
        self,
        role: UserRole,
        kind: NotificationKind,
        context: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """Notify every active user holding ``role``."""
        try:
            user_ids = await self.active_user_ids(role)
        except Exception as e:
            logger.opt(exception=True).error(
                "Failed to resolve notification recipients",
                role=role.value,
                error=str(e),
            )
            return 0
        return await self.send_many(user_ids, kind, context, data)
