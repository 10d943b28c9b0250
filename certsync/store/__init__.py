from .base import ChangeEvent, ChangeType, Filter, RecordStore, Transaction, matches
from .change_feed import ChangeFeed
from .lock import LeaseLock
from .sql_store import SqlRecordStore

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "ChangeFeed",
    "Filter",
    "LeaseLock",
    "RecordStore",
    "SqlRecordStore",
    "Transaction",
    "matches",
]
