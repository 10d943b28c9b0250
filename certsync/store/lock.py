import socket
import uuid
from datetime import timedelta
from typing import Optional

from certsync.db.models import Collection
from certsync.store.base import RecordStore, Transaction
from certsync.utils.datetime_utils import naive_utc_now
from certsync.utils.errors import LockNotAcquiredError, RecordExistsError
from certsync.utils.logging import get_logger

logger = get_logger()


def default_owner() -> str:
    return f"{socket.gethostname()}:{uuid.uuid4().hex[:8]}"


class LeaseLock:
    """
    Single-record lock with a lease timeout, for rare exclusive operations.

    Usage:
        async with LeaseLock(store, "bootstrap", lease_seconds=300):
            ...

    An expired lease may be taken over by another owner; release only deletes
    the record while this owner still holds it.
    """

    def __init__(
        self,
        store: RecordStore,
        name: str,
        owner: Optional[str] = None,
        lease_seconds: int = 300,
    ):
        self.store = store
        self.name = name
        self.owner = owner or default_owner()
        self.lease_seconds = lease_seconds
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    async def acquire(self) -> None:
        now = naive_utc_now()
        lease = {
            "owner": self.owner,
            "acquired_at": now,
            "expires_at": now + timedelta(seconds=self.lease_seconds),
        }

        async def _claim(tx: Transaction) -> bool:
            current = await tx.get(Collection.SYSTEM_LOCKS, self.name)
            if current is None:
                await tx.create(Collection.SYSTEM_LOCKS, lease, record_id=self.name)
                return True
            if current["owner"] != self.owner and current["expires_at"] > now:
                return False
            claimed = await tx.update(
                Collection.SYSTEM_LOCKS,
                self.name,
                lease,
                expected={
                    "owner": current["owner"],
                    "expires_at": current["expires_at"],
                },
            )
            return claimed is not None

        try:
            acquired = await self.store.run_transaction(_claim)
        except RecordExistsError:
            acquired = False

        if not acquired:
            raise LockNotAcquiredError(f"Lock '{self.name}' is held by another owner")

        self._held = True
        logger.info(f"Acquired lock {self.name} as {self.owner}")

    async def release(self) -> None:
        if not self._held:
            return

        async def _release(tx: Transaction) -> bool:
            current = await tx.get(Collection.SYSTEM_LOCKS, self.name)
            if current is None or current["owner"] != self.owner:
                return False
            return await tx.delete(Collection.SYSTEM_LOCKS, self.name)

        released = await self.store.run_transaction(_release)
        self._held = False
        if released:
            logger.info(f"Released lock {self.name}")
        else:
            logger.warning(f"Lock {self.name} was taken over before release")

    async def __aenter__(self) -> "LeaseLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()
