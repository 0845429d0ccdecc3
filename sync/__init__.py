"""Sync runs: models, run tracking and orchestration.

Import SyncService from sync.service; this package only re-exports models so
storage adapters can depend on them.
"""

from sync.models import (
    RunPage,
    RunStatus,
    SkippedRow,
    SyncRun,
    SyncScope,
    TriggerSource,
    UnitCounters,
    UnitOutcome,
    UnitStatus,
)

__all__ = [
    "RunPage",
    "RunStatus",
    "SkippedRow",
    "SyncRun",
    "SyncScope",
    "TriggerSource",
    "UnitCounters",
    "UnitOutcome",
    "UnitStatus",
]
