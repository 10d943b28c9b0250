from typing import Iterable, Optional, Sequence

from certsync.store.base import (
    ChangeEvent,
    ChangeType,
    CollectionName,
    Predicate,
    as_collection,
    matches,
)
from certsync.utils.logging import get_logger
from certsync.utils.streams import Broadcaster, Subscription

logger = get_logger()


class ChangeFeed:
    """In-process fan-out of committed change events to filtered subscribers."""

    def __init__(self):
        self._broadcaster: Broadcaster[ChangeEvent] = Broadcaster()

    @property
    def subscriber_count(self) -> int:
        return self._broadcaster.subscriber_count

    def subscribe(
        self,
        collection: CollectionName,
        where: Optional[Predicate] = None,
        change_types: Optional[Iterable[ChangeType]] = None,
        name: str = "subscription",
    ) -> Subscription[ChangeEvent]:
        target = as_collection(collection)
        allowed = frozenset(change_types) if change_types else None

        def accept(event: ChangeEvent) -> bool:
            if event.collection != target:
                return False
            if allowed is not None and event.change_type not in allowed:
                return False
            return matches(event.record, where)

        logger.debug(f"Change feed subscription opened: {name} on {target.value}")
        return self._broadcaster.subscribe(accept=accept, name=name)

    def publish(self, events: Sequence[ChangeEvent]) -> int:
        delivered = 0
        for event in events:
            delivered += self._broadcaster.publish(event)
        return delivered

    def close(self) -> None:
        self._broadcaster.close_all()
