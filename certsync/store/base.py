from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)
import enum

from certsync.db.models import Collection
from certsync.utils.streams import Subscription

Record = Dict[str, Any]
Predicate = Mapping[str, Any]
CollectionName = Union[Collection, str]
BatchItem = Tuple[CollectionName, Optional[str], Mapping[str, Any]]

R = TypeVar("R")


class ChangeType(str, enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass
class ChangeEvent:
    """One committed mutation as seen by change-feed subscribers."""

    change_type: ChangeType
    collection: Collection
    record: Record
    # Prior values of the fields a modification changed.
    previous: Record = field(default_factory=dict)

    @property
    def record_id(self) -> Optional[str]:
        return self.record.get("id")

    def changed(self, field_name: str) -> bool:
        return field_name in self.previous


@dataclass(frozen=True)
class Filter:
    """
    Comparison operand for predicates.

    A predicate maps field names to expected values. A plain value means
    equality, a list/tuple/set means membership, and a Filter expresses any
    other comparison, e.g. ``{"expires_at": Filter.lt(now)}``.
    """

    op: str
    value: Any = None

    @classmethod
    def ne(cls, value: Any) -> "Filter":
        return cls("ne", value)

    @classmethod
    def gt(cls, value: Any) -> "Filter":
        return cls("gt", value)

    @classmethod
    def gte(cls, value: Any) -> "Filter":
        return cls("gte", value)

    @classmethod
    def lt(cls, value: Any) -> "Filter":
        return cls("lt", value)

    @classmethod
    def lte(cls, value: Any) -> "Filter":
        return cls("lte", value)

    @classmethod
    def is_null(cls) -> "Filter":
        return cls("is_null")

    @classmethod
    def not_null(cls) -> "Filter":
        return cls("not_null")

    def test(self, actual: Any) -> bool:
        if self.op == "is_null":
            return actual is None
        if self.op == "not_null":
            return actual is not None
        if self.op == "ne":
            return actual != self.value
        if actual is None:
            return False
        if self.op == "gt":
            return actual > self.value
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lt":
            return actual < self.value
        if self.op == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter operator: {self.op}")


def is_membership(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def matches(record: Mapping[str, Any], predicate: Optional[Predicate]) -> bool:
    """Evaluate a predicate against a record snapshot."""
    if not predicate:
        return True
    for key, expected in predicate.items():
        actual = record.get(key)
        if isinstance(expected, Filter):
            if not expected.test(actual):
                return False
        elif is_membership(expected):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def as_collection(collection: CollectionName) -> Collection:
    return collection if isinstance(collection, Collection) else Collection(collection)


class Transaction(ABC):
    """Unit of work handed to ``RecordStore.run_transaction`` callbacks."""

    @abstractmethod
    async def get(self, collection: CollectionName, record_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def query(
        self,
        collection: CollectionName,
        where: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        ...

    @abstractmethod
    async def create(
        self,
        collection: CollectionName,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Record:
        ...

    @abstractmethod
    async def write(
        self, collection: CollectionName, record_id: str, fields: Mapping[str, Any]
    ) -> Record:
        ...

    @abstractmethod
    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        fields: Mapping[str, Any],
        expected: Optional[Predicate] = None,
    ) -> Optional[Record]:
        ...

    @abstractmethod
    async def delete(self, collection: CollectionName, record_id: str) -> bool:
        ...


class RecordStore(ABC):
    """
    Durable, queryable, transactional collections with a change feed.

    Every mutating call commits atomically and publishes its change events to
    subscribers only after the commit succeeded.
    """

    @abstractmethod
    async def get(self, collection: CollectionName, record_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def query(
        self,
        collection: CollectionName,
        where: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        ...

    @abstractmethod
    async def count(
        self, collection: CollectionName, where: Optional[Predicate] = None
    ) -> int:
        ...

    @abstractmethod
    async def create(
        self,
        collection: CollectionName,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Record:
        """Insert a new record; raises ``RecordExistsError`` on id or unique-key collision."""

    @abstractmethod
    async def write(
        self, collection: CollectionName, record_id: str, fields: Mapping[str, Any]
    ) -> Record:
        """Upsert ``fields`` into the record with ``record_id``."""

    @abstractmethod
    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        fields: Mapping[str, Any],
        expected: Optional[Predicate] = None,
    ) -> Optional[Record]:
        """
        Conditional update. Returns the updated record, or ``None`` when the
        record is missing or no longer satisfies ``expected``.
        """

    @abstractmethod
    async def delete(self, collection: CollectionName, record_id: str) -> bool:
        ...

    @abstractmethod
    async def batch_write(self, items: Sequence[BatchItem]) -> List[Record]:
        """
        Apply all items atomically. An item with a ``None`` id creates a new
        record; otherwise it upserts the given id.
        """

    @abstractmethod
    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[R]]) -> R:
        ...

    @abstractmethod
    def subscribe(
        self,
        collection: CollectionName,
        where: Optional[Predicate] = None,
        change_types: Optional[Iterable[ChangeType]] = None,
        name: str = "subscription",
    ) -> Subscription[ChangeEvent]:
        ...
