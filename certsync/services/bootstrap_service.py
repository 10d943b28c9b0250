from typing import Any, Dict

from certsync.db.models import ROLE_PERMISSIONS, Collection, UserRole, UserStatus
from certsync.store.base import RecordStore, Transaction
from certsync.store.lock import LeaseLock
from certsync.utils.datetime_utils import naive_utc_now
from certsync.utils.logging import get_logger

logger = get_logger()

BOOTSTRAP_LOCK = "system_bootstrap"


class BootstrapService:
    """
    One-time system initialization, run under a lease lock so that only one
    process performs it at a time.
    """

    def __init__(
        self,
        store: RecordStore,
        admin_email: str,
        admin_name: str = "System Administrator",
        lease_seconds: int = 300,
    ):
        self.store = store
        self.admin_email = admin_email.strip().lower()
        self.admin_name = admin_name
        self.lease_seconds = lease_seconds

    async def bootstrap(self) -> Dict[str, Any]:
        """
        Ensure an active administrator exists, mark the system initialized and
        back-fill role default permissions.

        Raises LockNotAcquiredError when another process is bootstrapping.
        """
        async with LeaseLock(self.store, BOOTSTRAP_LOCK, lease_seconds=self.lease_seconds):
            admin_created = await self._ensure_admin()
            backfilled = await self.backfill_permissions()
            await self.store.write(
                Collection.SYSTEM_CONFIG,
                "admin_initialized",
                {
                    "value": {
                        "initialized": True,
                        "admin_email": self.admin_email,
                        "initialized_at": naive_utc_now().isoformat(),
                    }
                },
            )

        summary = {"admin_created": admin_created, "permissions_backfilled": backfilled}
        logger.info("System bootstrap complete", **summary)
        return summary

    async def _ensure_admin(self) -> bool:
        active_admins = await self.store.count(
            Collection.USERS,
            {"role": UserRole.ADMINISTRATOR, "status": UserStatus.ACTIVE},
        )
        if active_admins:
            logger.info(f"Found {active_admins} active administrator(s)")
            return False

        async def _create_or_promote(tx: Transaction) -> bool:
            existing = await tx.query(Collection.USERS, {"email": self.admin_email}, limit=1)
            fields = {
                "role": UserRole.ADMINISTRATOR,
                "status": UserStatus.ACTIVE,
                "permissions": list(ROLE_PERMISSIONS[UserRole.ADMINISTRATOR]),
                "status_changed_at": naive_utc_now(),
            }
            if existing:
                await tx.update(Collection.USERS, existing[0]["id"], fields)
                return False
            await tx.create(
                Collection.USERS,
                {
                    **fields,
                    "email": self.admin_email,
                    "display_name": self.admin_name,
                    "profile_metadata": {"source": "bootstrap"},
                },
            )
            return True

        created = await self.store.run_transaction(_create_or_promote)
        logger.warning(
            f"No active administrator found, {'created' if created else 'promoted'} "
            f"{self.admin_email}"
        )
        return True

    async def backfill_permissions(self) -> int:
        """Add missing role default permissions to every user. Returns users updated."""
        updated = 0
        users = await self.store.query(Collection.USERS)
        for user in users:
            defaults = ROLE_PERMISSIONS.get(UserRole(user["role"]), [])
            current = list(user.get("permissions") or [])
            missing = [permission for permission in defaults if permission not in current]
            if not missing:
                continue
            await self.store.update(
                Collection.USERS, user["id"], {"permissions": current + missing}
            )
            updated += 1
        if updated:
            logger.info(f"Back-filled permissions for {updated} user(s)")
        return updated
