import uuid
from collections import Counter
from typing import Any, Dict, Mapping, Optional, Union

from certsync.db.models import Collection, InteractionType, UserRole
from certsync.store.base import Record, RecordStore
from certsync.utils.datetime_utils import naive_utc_now
from certsync.utils.errors import RecordExistsError
from certsync.utils.logging import get_logger

logger = get_logger()

INTERACTION_NAMESPACE = uuid.UUID("5b0c4a8e-2f7d-4d53-9a0e-7c1e3c6f9b21")

RoleName = Union[UserRole, str]


def interaction_id(event_key: str) -> str:
    """Deterministic record id for an interaction event key."""
    return str(uuid.uuid5(INTERACTION_NAMESPACE, event_key))


def _role_value(role: RoleName) -> str:
    return role.value if isinstance(role, UserRole) else str(role)


class ActivityRecorder:
    """
    Append-only log of cross-role workflow interactions.

    Each record is keyed by the logical event it describes, so a redelivered
    event finds its interaction already written. That existing record is what
    lets workflow handlers detect and skip duplicate fan-out.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def record(
        self,
        type: InteractionType,
        from_role: RoleName,
        to_role: RoleName,
        entity_id: str,
        event_key: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Record]:
        """
        Write the interaction for ``event_key``.

        Returns the new record, or None when the event was already recorded.
        Store failures other than the duplicate propagate.
        """
        try:
            record = await self.store.create(
                Collection.INTERACTIONS,
                {
                    "type": type,
                    "from_role": _role_value(from_role),
                    "to_role": _role_value(to_role),
                    "entity_id": entity_id,
                    "event_key": event_key,
                    "payload": dict(payload or {}),
                    "timestamp": naive_utc_now(),
                },
                record_id=interaction_id(event_key),
            )
        except RecordExistsError:
            logger.info(f"Interaction already recorded for {event_key}, skipping")
            return None

        logger.info(
            f"Recorded {type.value} interaction "
            f"({_role_value(from_role)} -> {_role_value(to_role)}) for {entity_id}"
        )
        return record

    async def has_recorded(self, event_key: str) -> bool:
        return (
            await self.store.get(Collection.INTERACTIONS, interaction_id(event_key))
        ) is not None

    async def get_interaction_stats(self, limit: int = 100) -> Dict[str, Any]:
        """Totals by type and by role flow over the latest ``limit`` records."""
        records = await self.store.query(
            Collection.INTERACTIONS,
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        by_type: Counter = Counter()
        by_role_flow: Counter = Counter()
        for record in records:
            interaction_type = record["type"]
            by_type[
                interaction_type.value
                if isinstance(interaction_type, InteractionType)
                else str(interaction_type)
            ] += 1
            by_role_flow[f"{record['from_role']}->{record['to_role']}"] += 1

        return {
            "total": len(records),
            "by_type": dict(by_type),
            "by_role_flow": dict(by_role_flow),
            "latest_at": records[0]["timestamp"] if records else None,
        }
