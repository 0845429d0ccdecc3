"""In-memory storage adapters for development and tests.

WARNING: Everything is lost on restart.
"""

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type

from normalization.records import CanonicalRecord
from storage.base import ChannelStore, RecordStore, RunLogStore, StoredRecord
from sync.models import RunStatus, SyncRun
from watch_channels.models import WatchChannel, WatchedResource


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRecordStore(RecordStore):
    """Records keyed by (record_type, natural key)."""

    def __init__(self):
        self._records: Dict[Tuple[str, Tuple[Any, ...]], StoredRecord] = {}
        self._by_id: Dict[str, Tuple[str, Tuple[Any, ...]]] = {}
        self._lock = threading.Lock()
        self.writes = 0

    def find(self, record_type: Type[CanonicalRecord], key: Tuple[Any, ...]) -> Optional[StoredRecord]:
        with self._lock:
            return self._records.get((record_type.record_type, tuple(key)))

    def create(self, record: CanonicalRecord) -> StoredRecord:
        with self._lock:
            now = _utc_now()
            stored = StoredRecord(
                id=str(uuid.uuid4()),
                record_type=record.record_type,
                fields=record.to_fields(),
                created_at=now,
                updated_at=now,
            )
            index = (record.record_type, record.natural_key())
            self._records[index] = stored
            self._by_id[stored.id] = index
            self.writes += 1
            return stored

    def update(self, record_id: str, record: CanonicalRecord) -> StoredRecord:
        with self._lock:
            index = self._by_id.get(record_id)
            if index is None:
                raise KeyError(f"Unknown record id: {record_id}")
            existing = self._records.pop(index)
            stored = StoredRecord(
                id=existing.id,
                record_type=existing.record_type,
                fields=record.to_fields(),
                created_at=existing.created_at,
                updated_at=_utc_now(),
            )
            new_index = (record.record_type, record.natural_key())
            self._records[new_index] = stored
            self._by_id[record_id] = new_index
            self.writes += 1
            return stored

    def list_records(self, record_type: Type[CanonicalRecord]) -> List[StoredRecord]:
        with self._lock:
            return [
                stored for (kind, _), stored in self._records.items()
                if kind == record_type.record_type
            ]


class InMemoryRunLogStore(RunLogStore):

    def __init__(self):
        self._runs: Dict[str, SyncRun] = {}
        self._lock = threading.Lock()

    def create(self, run: SyncRun) -> None:
        with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)

    def update(self, run: SyncRun) -> None:
        with self._lock:
            if run.id not in self._runs:
                raise KeyError(f"Unknown run id: {run.id}")
            self._runs[run.id] = run.model_copy(deep=True)

    def get(self, run_id: str) -> Optional[SyncRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run else None

    def list(self, limit: int, offset: int) -> Tuple[List[SyncRun], int]:
        with self._lock:
            ordered = sorted(self._runs.values(), key=lambda r: r.started_at, reverse=True)
            page = ordered[offset:offset + limit]
            return [run.model_copy(deep=True) for run in page], len(ordered)

    def list_by_status(self, status: RunStatus) -> List[SyncRun]:
        with self._lock:
            return [run.model_copy(deep=True) for run in self._runs.values() if run.status is status]


class InMemoryChannelStore(ChannelStore):

    def __init__(self, resources: Optional[List[WatchedResource]] = None):
        self._channels: Dict[str, WatchChannel] = {}
        self._resources: Dict[str, WatchedResource] = {r.id: r for r in resources or []}
        self._lock = threading.Lock()

    def list_channels(self) -> List[WatchChannel]:
        with self._lock:
            return list(self._channels.values())

    def get_channel(self, channel_id: str) -> Optional[WatchChannel]:
        with self._lock:
            return self._channels.get(channel_id)

    def save_channel(self, channel: WatchChannel) -> None:
        with self._lock:
            self._channels[channel.channel_id] = channel

    def delete_channel(self, channel_id: str) -> None:
        with self._lock:
            self._channels.pop(channel_id, None)

    def list_resources(self) -> List[WatchedResource]:
        with self._lock:
            return list(self._resources.values())

    def save_resource(self, resource: WatchedResource) -> None:
        with self._lock:
            self._resources[resource.id] = resource
