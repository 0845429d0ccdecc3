"""Sync run models.

A SyncRun is created RUNNING when a pass starts and finalized exactly once
with one UnitOutcome per (period, document type) unit.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from connectors.haulmer.models import DocumentType


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.PARTIAL, RunStatus.FAILED)


class UnitStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"  # 404 from the registry: nothing to sync
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self is not UnitStatus.FAILED


class TriggerSource(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    USER = "user"
    WEBHOOK = "webhook"


class SyncScope(BaseModel):
    """Periods × document types covered by one run."""
    model_config = ConfigDict(frozen=True)

    periods: Tuple[str, ...]
    doc_types: Tuple[DocumentType, ...] = (DocumentType.SALES, DocumentType.PURCHASES)

    @property
    def key(self) -> str:
        """Order-insensitive identity used for the in-flight check."""
        doc_types = ",".join(sorted(d.value for d in set(self.doc_types)))
        periods = ",".join(sorted(set(self.periods)))
        return f"{doc_types}|{periods}"

    def units(self) -> List[Tuple[DocumentType, str]]:
        """Units in processing order: each period, then each document type."""
        return [(doc_type, period) for period in self.periods for doc_type in self.doc_types]


class UnitCounters(BaseModel):
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0


class SkippedRow(BaseModel):
    """Audit entry for a row skipped because of an error."""
    natural_key: List[str] = Field(default_factory=list)
    reason: str


class UnitOutcome(BaseModel):
    """Result of syncing one document type for one period."""
    doc_type: DocumentType
    period: str
    status: UnitStatus
    counters: UnitCounters = Field(default_factory=UnitCounters)
    error: Optional[str] = None
    csv_size: int = 0
    skipped_rows: List[SkippedRow] = Field(default_factory=list)


class SyncRun(BaseModel):
    """Audit record of one sync pass."""
    id: str
    scope: SyncScope
    trigger_source: TriggerSource
    trigger_user_id: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    units: List[UnitOutcome] = Field(default_factory=list)
    error_message: Optional[str] = None
    abandoned: bool = False

    @property
    def totals(self) -> UnitCounters:
        """Counters summed over every unit."""
        totals = UnitCounters()
        for unit in self.units:
            totals.processed += unit.counters.processed
            totals.inserted += unit.counters.inserted
            totals.updated += unit.counters.updated
            totals.skipped += unit.counters.skipped
        return totals


class RunPage(BaseModel):
    """One page of run history, newest first."""
    runs: List[SyncRun]
    total: int
    limit: int
    offset: int
