"""Storage interfaces consumed by the sync core.

- RecordStore: canonical records, looked up by natural key
- RunLogStore: sync run audit records
- ChannelStore: watch channels and the resources they cover

Adapters: storage.memory (tests, development), storage.sqlite (single server).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Type

from normalization.records import CanonicalRecord
from sync.models import RunStatus, SyncRun
from watch_channels.models import WatchChannel, WatchedResource


@dataclass
class StoredRecord:
    """A committed record with its system fields."""
    id: str
    record_type: str
    fields: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


class RecordStore(ABC):

    @abstractmethod
    def find(self, record_type: Type[CanonicalRecord], key: Tuple[Any, ...]) -> Optional[StoredRecord]:
        """Exact natural-key lookup."""

    @abstractmethod
    def create(self, record: CanonicalRecord) -> StoredRecord:
        pass

    @abstractmethod
    def update(self, record_id: str, record: CanonicalRecord) -> StoredRecord:
        """Replace every field of an existing record."""

    @abstractmethod
    def list_records(self, record_type: Type[CanonicalRecord]) -> List[StoredRecord]:
        pass


class RunLogStore(ABC):

    @abstractmethod
    def create(self, run: SyncRun) -> None:
        pass

    @abstractmethod
    def update(self, run: SyncRun) -> None:
        pass

    @abstractmethod
    def get(self, run_id: str) -> Optional[SyncRun]:
        pass

    @abstractmethod
    def list(self, limit: int, offset: int) -> Tuple[List[SyncRun], int]:
        """Runs newest first, with the total count."""

    @abstractmethod
    def list_by_status(self, status: RunStatus) -> List[SyncRun]:
        pass


class ChannelStore(ABC):

    @abstractmethod
    def list_channels(self) -> List[WatchChannel]:
        pass

    @abstractmethod
    def get_channel(self, channel_id: str) -> Optional[WatchChannel]:
        pass

    @abstractmethod
    def save_channel(self, channel: WatchChannel) -> None:
        pass

    @abstractmethod
    def delete_channel(self, channel_id: str) -> None:
        """Delete a channel; deleting an unknown id is a no-op."""

    @abstractmethod
    def list_resources(self) -> List[WatchedResource]:
        pass

    @abstractmethod
    def save_resource(self, resource: WatchedResource) -> None:
        pass

    def soonest_expiry(self) -> Optional[datetime]:
        """Earliest expiration among stored channels."""
        expiries = [channel.expires_at for channel in self.list_channels()]
        return min(expiries) if expiries else None
