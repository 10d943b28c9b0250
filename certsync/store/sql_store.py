from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
)

from sqlalchemy import func, or_, select, update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from certsync.db.models import COLLECTION_MODELS, Collection
from certsync.store.base import (
    BatchItem,
    ChangeEvent,
    ChangeType,
    CollectionName,
    Filter,
    Predicate,
    R,
    Record,
    RecordStore,
    Transaction,
    as_collection,
    is_membership,
    matches,
)
from certsync.store.change_feed import ChangeFeed
from certsync.utils.datetime_utils import naive_utc_now
from certsync.utils.errors import RecordExistsError
from certsync.utils.logging import get_logger
from certsync.utils.streams import Subscription

logger = get_logger()

_FILTER_OPERATORS = {
    "gt": lambda column, value: column > value,
    "gte": lambda column, value: column >= value,
    "lt": lambda column, value: column < value,
    "lte": lambda column, value: column <= value,
    # NULL != value is unknown in SQL; keep Python semantics.
    "ne": lambda column, value: or_(column != value, column.is_(None)),
    "is_null": lambda column, _: column.is_(None),
    "not_null": lambda column, _: column.is_not(None),
}


def _model_for(collection: Collection):
    return COLLECTION_MODELS[collection]


def build_clauses(model, where: Optional[Predicate]) -> list:
    """Translate a record predicate into SQLAlchemy where-clauses."""
    clauses = []
    for key, expected in (where or {}).items():
        column = getattr(model, key)
        if isinstance(expected, Filter):
            clauses.append(_FILTER_OPERATORS[expected.op](column, expected.value))
        elif is_membership(expected):
            clauses.append(column.in_(list(expected)))
        elif expected is None:
            clauses.append(column.is_(None))
        else:
            clauses.append(column == expected)
    return clauses


class SqlTransaction(Transaction):
    """Transaction over one AsyncSession; collects change events until commit."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.events: List[ChangeEvent] = []

    async def get(self, collection: CollectionName, record_id: str) -> Optional[Record]:
        model = _model_for(as_collection(collection))
        obj = await self.session.get(model, record_id)
        return obj.to_dict() if obj is not None else None

    async def query(
        self,
        collection: CollectionName,
        where: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        model = _model_for(as_collection(collection))
        stmt = select(model).where(*build_clauses(model, where))
        if order_by:
            column = getattr(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [obj.to_dict() for obj in result.scalars().all()]

    async def count(
        self, collection: CollectionName, where: Optional[Predicate] = None
    ) -> int:
        model = _model_for(as_collection(collection))
        stmt = select(func.count()).select_from(model).where(*build_clauses(model, where))
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def create(
        self,
        collection: CollectionName,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Record:
        target = as_collection(collection)
        model = _model_for(target)
        values = dict(fields)
        if record_id is not None:
            values["id"] = record_id

        if values.get("id") is not None:
            existing = await self.session.get(model, values["id"])
            if existing is not None:
                raise RecordExistsError(
                    f"{target.value}/{values['id']} already exists"
                )

        obj = model(**values)
        self.session.add(obj)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise RecordExistsError(
                f"{target.value} record conflicts with an existing record"
            ) from exc

        await self.session.refresh(obj)
        record = obj.to_dict()
        self.events.append(ChangeEvent(ChangeType.ADDED, target, record))
        return record

    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        fields: Mapping[str, Any],
        expected: Optional[Predicate] = None,
    ) -> Optional[Record]:
        target = as_collection(collection)
        model = _model_for(target)
        obj = await self.session.get(model, record_id)
        if obj is None:
            return None

        before = obj.to_dict()
        if expected and not matches(before, expected):
            return None

        changes = {key: value for key, value in fields.items() if before.get(key) != value}
        if not changes:
            return before
        changes.setdefault("updated_at", naive_utc_now())

        # The expectation is re-checked in SQL so concurrent writers cannot
        # both pass it.
        stmt = (
            sa_update(model)
            .where(model.id == record_id, *build_clauses(model, expected))
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except IntegrityError as exc:
            raise RecordExistsError(
                f"{target.value}/{record_id} update conflicts with an existing record"
            ) from exc
        if result.rowcount == 0:
            return None

        await self.session.refresh(obj)
        record = obj.to_dict()
        previous = {key: before.get(key) for key in changes}
        self.events.append(ChangeEvent(ChangeType.MODIFIED, target, record, previous))
        return record

    async def write(
        self, collection: CollectionName, record_id: str, fields: Mapping[str, Any]
    ) -> Record:
        target = as_collection(collection)
        existing = await self.session.get(_model_for(target), record_id)
        if existing is None:
            return await self.create(target, fields, record_id=record_id)
        record = await self.update(target, record_id, fields)
        if record is None:
            raise RecordExistsError(f"{target.value}/{record_id} changed during write")
        return record

    async def delete(self, collection: CollectionName, record_id: str) -> bool:
        target = as_collection(collection)
        obj = await self.session.get(_model_for(target), record_id)
        if obj is None:
            return False
        before = obj.to_dict()
        await self.session.delete(obj)
        await self.session.flush()
        self.events.append(ChangeEvent(ChangeType.REMOVED, target, before))
        return True


class SqlRecordStore(RecordStore):
    """RecordStore over an async SQLAlchemy session factory."""

    def __init__(
        self, session_factory: async_sessionmaker, feed: Optional[ChangeFeed] = None
    ):
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[SqlTransaction]:
        async with self._session_factory() as session:
            tx = SqlTransaction(session)
            try:
                yield tx
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise RecordExistsError(
                    "Write conflicts with an existing record"
                ) from exc
            except Exception:
                await session.rollback()
                raise

        if tx.events:
            delivered = self.feed.publish(tx.events)
            logger.debug(
                f"Published {len(tx.events)} change event(s) to {delivered} subscription(s)"
            )

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[SqlTransaction]:
        async with self._session_factory() as session:
            yield SqlTransaction(session)

    async def get(self, collection: CollectionName, record_id: str) -> Optional[Record]:
        async with self._reader() as tx:
            return await tx.get(collection, record_id)

    async def query(
        self,
        collection: CollectionName,
        where: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        async with self._reader() as tx:
            return await tx.query(
                collection,
                where=where,
                order_by=order_by,
                descending=descending,
                limit=limit,
            )

    async def count(
        self, collection: CollectionName, where: Optional[Predicate] = None
    ) -> int:
        async with self._reader() as tx:
            return await tx.count(collection, where)

    async def create(
        self,
        collection: CollectionName,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Record:
        async with self._transaction() as tx:
            record = await tx.create(collection, fields, record_id=record_id)
        return record

    async def write(
        self, collection: CollectionName, record_id: str, fields: Mapping[str, Any]
    ) -> Record:
        async with self._transaction() as tx:
            record = await tx.write(collection, record_id, fields)
        return record

    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        fields: Mapping[str, Any],
        expected: Optional[Predicate] = None,
    ) -> Optional[Record]:
        async with self._transaction() as tx:
            record = await tx.update(collection, record_id, fields, expected=expected)
        return record

    async def delete(self, collection: CollectionName, record_id: str) -> bool:
        async with self._transaction() as tx:
            deleted = await tx.delete(collection, record_id)
        return deleted

    async def batch_write(self, items: Sequence[BatchItem]) -> List[Record]:
        records: List[Record] = []
        if not items:
            return records
        async with self._transaction() as tx:
            for collection, record_id, fields in items:
                if record_id is None:
                    records.append(await tx.create(collection, fields))
                else:
                    records.append(await tx.write(collection, record_id, fields))
        return records

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[R]]) -> R:
        async with self._transaction() as tx:
            result = await fn(tx)
        return result

    def subscribe(
        self,
        collection: CollectionName,
        where: Optional[Predicate] = None,
        change_types: Optional[Iterable[ChangeType]] = None,
        name: str = "subscription",
    ) -> Subscription[ChangeEvent]:
        return self.feed.subscribe(
            collection, where=where, change_types=change_types, name=name
        )

    def close(self) -> None:
        self.feed.close()
