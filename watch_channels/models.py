"""Watch channel models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class WatchedResource(BaseModel):
    """A calendar that should have an active push channel."""
    id: str
    external_id: str
    name: Optional[str] = None


class WatchChannel(BaseModel):
    """A push subscription registered with the provider."""
    channel_id: str
    external_resource_id: str
    owner_resource_id: str
    expires_at: datetime
    callback_address: str
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class ChannelOperation(str, Enum):
    REGISTERED = "registered"
    SKIPPED = "skipped"
    FAILED = "failed"


class SetupResult(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class RenewalSummary(BaseModel):
    """Outcome of one renewal pass."""
    renewed: List[str] = Field(default_factory=list)
    deferred: List[str] = Field(default_factory=list)
    dropped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)

    @property
    def considered(self) -> int:
        return len(self.renewed) + len(self.deferred) + len(self.dropped) + len(self.failed)
