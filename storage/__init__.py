"""Storage interfaces and adapters."""

from storage.base import ChannelStore, RecordStore, RunLogStore, StoredRecord
from storage.memory import InMemoryChannelStore, InMemoryRecordStore, InMemoryRunLogStore
from storage.sqlite import SqliteChannelStore, SqliteRecordStore, SqliteRunLogStore, init_db

__all__ = [
    "ChannelStore",
    "RecordStore",
    "RunLogStore",
    "StoredRecord",
    "InMemoryChannelStore",
    "InMemoryRecordStore",
    "InMemoryRunLogStore",
    "SqliteChannelStore",
    "SqliteRecordStore",
    "SqliteRunLogStore",
    "init_db",
]
