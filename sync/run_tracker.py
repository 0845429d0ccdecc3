"""Run Tracker.

Records the lifecycle of every sync pass in the run log:

    tracker = RunTracker(run_store)
    run_id = tracker.start(scope, TriggerSource.SCHEDULED)
    ...
    run = tracker.finish(run_id, units)

A run is created RUNNING and finalized exactly once. Runs still RUNNING
after the staleness window are considered abandoned (the process died
mid-pass) and can be closed with cleanup_stale_runs().
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from connectors.errors import RunAlreadyFinishedError
from core.observability.logging import get_logger, log_sync_event
from storage.base import RunLogStore
from sync.models import RunStatus, SyncRun, SyncScope, TriggerSource, UnitOutcome

logger = get_logger(__name__)


STALE_RUN_WINDOW = timedelta(minutes=15)
STALE_RUN_MESSAGE = "Sync timeout - automatically marked as stale"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_status(units: Sequence[UnitOutcome]) -> RunStatus:
    """Final status from unit outcomes.

    All succeeded → SUCCESS; some → PARTIAL; none (or no units) → FAILED.
    An empty unit (404) counts as succeeded.
    """
    if not units:
        return RunStatus.FAILED
    succeeded = sum(1 for unit in units if unit.status.succeeded)
    if succeeded == len(units):
        return RunStatus.SUCCESS
    if succeeded == 0:
        return RunStatus.FAILED
    return RunStatus.PARTIAL


def is_abandoned(run: SyncRun, now: datetime, window: timedelta = STALE_RUN_WINDOW) -> bool:
    """True for a RUNNING run started longer ago than the staleness window."""
    return run.status is RunStatus.RUNNING and now - run.started_at > window


class RunTracker:
    """Creates and finalizes SyncRun records."""

    def __init__(
        self,
        store: RunLogStore,
        clock: Callable[[], datetime] = utc_now,
        stale_window: timedelta = STALE_RUN_WINDOW,
    ):
        self.store = store
        self.clock = clock
        self.stale_window = stale_window

    def start(
        self,
        scope: SyncScope,
        trigger: TriggerSource,
        trigger_user_id: Optional[str] = None,
    ) -> str:
        """Create a RUNNING run and return its id."""
        run = SyncRun(
            id=str(uuid.uuid4()),
            scope=scope,
            trigger_source=trigger,
            trigger_user_id=trigger_user_id,
            started_at=self.clock(),
            status=RunStatus.RUNNING,
        )
        self.store.create(run)
        log_sync_event(
            "sync_run_started",
            run_id=run.id,
            trigger=trigger.value,
            periods=list(scope.periods),
            doc_types=[d.value for d in scope.doc_types],
        )
        return run.id

    def finish(
        self,
        run_id: str,
        units: List[UnitOutcome],
        error_message: Optional[str] = None,
    ) -> SyncRun:
        """Finalize a run with its unit outcomes.

        Raises:
            KeyError: Unknown run id
            RunAlreadyFinishedError: The run already reached a terminal status
        """
        run = self.store.get(run_id)
        if run is None:
            raise KeyError(f"Unknown run id: {run_id}")
        if run.status.is_terminal:
            raise RunAlreadyFinishedError(run_id)

        status = resolve_status(units)
        if error_message is None and status is RunStatus.FAILED:
            errors = [unit.error for unit in units if unit.error]
            error_message = "; ".join(errors) if errors else "No unit completed"

        finished = run.model_copy(update={
            "units": list(units),
            "status": status,
            "completed_at": self.clock(),
            "error_message": error_message,
        })
        self.store.update(finished)

        totals = finished.totals
        log_sync_event(
            "sync_run_finished",
            run_id=run_id,
            status=status.value,
            inserted=totals.inserted,
            updated=totals.updated,
            skipped=totals.skipped,
        )
        return finished

    def is_abandoned(self, run: SyncRun) -> bool:
        return is_abandoned(run, self.clock(), self.stale_window)

    def cleanup_stale_runs(self) -> List[str]:
        """Mark abandoned RUNNING runs FAILED.

        Returns:
            Ids of the runs that were closed
        """
        now = self.clock()
        closed: List[str] = []
        for run in self.store.list_by_status(RunStatus.RUNNING):
            if not is_abandoned(run, now, self.stale_window):
                continue
            self.store.update(run.model_copy(update={
                "status": RunStatus.FAILED,
                "completed_at": now,
                "error_message": STALE_RUN_MESSAGE,
            }))
            closed.append(run.id)

        if closed:
            logger.warning("sync_stale_runs_cleaned", extra_fields={"count": len(closed), "run_ids": closed})
        return closed
