"""Sync service.

Orchestrates pull-sync runs over the DTE registry:

    service = SyncService(client, record_store, tracker)
    run = await service.run_sync(["202401"], ["sales"])

Each run covers a scope of periods × document types. Units are processed
strictly one after another; rows inside a unit are reconciled one by one,
so no two reconciliations touch the same natural key concurrently. A
second run over a scope that is still in flight is rejected.
"""

import re
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set, Union
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from connectors.errors import AuthError, NotFoundError, ParseError, SyncAlreadyRunningError, TransportError
from connectors.haulmer.client import HaulmerClient
from connectors.haulmer.models import DocumentType
from core.config import DEFAULT_TIMEZONE
from core.observability.logging import get_logger, with_correlation
from normalization.delimited import parse_delimited
from normalization.records import normalize_row
from reconciliation.engine import ReconcileCounters, ReconcileMode, reconcile
from storage.base import RecordStore
from sync.models import (
    RunPage,
    SkippedRow,
    SyncRun,
    SyncScope,
    TriggerSource,
    UnitCounters,
    UnitOutcome,
    UnitStatus,
)
from sync.run_tracker import RunTracker, utc_now

logger = get_logger(__name__)


HAULMER_ORIGIN = "HAULMER"
PERIOD_PATTERN = re.compile(r"^\d{4}(0[1-9]|1[0-2])$")
MAX_SKIPPED_ROWS = 50
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def format_period(year: int, month: int) -> str:
    return f"{year:04d}{month:02d}"


def previous_periods(now: datetime, count: int) -> List[str]:
    """The current period preceded by `count` earlier ones, oldest first."""
    periods = []
    year, month = now.year, now.month
    for _ in range(count + 1):
        periods.append(format_period(year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(periods))


def parse_doc_types(doc_types: Optional[Iterable[Union[str, DocumentType]]]) -> List[DocumentType]:
    """Parse document types, defaulting to both families.

    Raises:
        ValueError: Unknown document type or an empty selection
    """
    if doc_types is None:
        return [DocumentType.SALES, DocumentType.PURCHASES]
    parsed: List[DocumentType] = []
    for value in doc_types:
        doc_type = value if isinstance(value, DocumentType) else DocumentType.parse(value)
        if doc_type not in parsed:
            parsed.append(doc_type)
    if not parsed:
        raise ValueError("At least one document type is required")
    return parsed


def validate_periods(periods: Iterable[str]) -> List[str]:
    """Validate YYYYMM periods, keeping order and dropping duplicates.

    Raises:
        ValueError: Empty selection or a malformed period
    """
    validated: List[str] = []
    for period in periods or []:
        period = str(period).strip()
        if not PERIOD_PATTERN.match(period):
            raise ValueError(f"Invalid period {period!r}: expected YYYYMM")
        if period not in validated:
            validated.append(period)
    if not validated:
        raise ValueError("At least one period is required")
    return validated


class SyncService:
    """Runs pull-syncs and exposes run history."""

    def __init__(
        self,
        client: HaulmerClient,
        records: RecordStore,
        tracker: RunTracker,
        timezone: str = DEFAULT_TIMEZONE,
        lookback_months: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.records = records
        self.tracker = tracker
        self.timezone = ZoneInfo(timezone)
        self.lookback_months = lookback_months
        self.clock = clock
        self._in_flight: Set[str] = set()

    async def run_sync(
        self,
        periods: Iterable[str],
        doc_types: Optional[Iterable[Union[str, DocumentType]]] = None,
        trigger: TriggerSource = TriggerSource.MANUAL,
        trigger_user_id: Optional[str] = None,
        mode: ReconcileMode = ReconcileMode.INSERT_OR_UPDATE,
    ) -> SyncRun:
        """Run one sync pass and record it.

        Args:
            periods: YYYYMM periods to sync
            doc_types: Document types (default: sales and purchases)
            trigger: What started the run
            trigger_user_id: User that requested a manual run
            mode: Reconciliation mode

        Returns:
            The finalized SyncRun

        Raises:
            ValueError: Empty or malformed periods, unknown document type
            SyncAlreadyRunningError: A run over the same scope is in flight
        """
        scope = SyncScope(
            periods=tuple(validate_periods(periods)),
            doc_types=tuple(parse_doc_types(doc_types)),
        )
        if scope.key in self._in_flight:
            raise SyncAlreadyRunningError(scope.key)

        self._in_flight.add(scope.key)
        try:
            run_id = self.tracker.start(scope, trigger, trigger_user_id)
            with with_correlation(run_id=run_id, trigger=trigger.value):
                try:
                    await self.client.credentials.get_credential()
                except (AuthError, TransportError) as e:
                    logger.error("sync_credentials_unavailable", extra_fields={"error": str(e)})
                    return self.tracker.finish(run_id, [], error_message=f"Authentication failed: {e}")

                units: List[UnitOutcome] = []
                for doc_type, period in scope.units():
                    units.append(await self.sync_unit(doc_type, period, mode))
                return self.tracker.finish(run_id, units)
        finally:
            self._in_flight.discard(scope.key)

    async def sync_unit(
        self,
        doc_type: DocumentType,
        period: str,
        mode: ReconcileMode = ReconcileMode.INSERT_OR_UPDATE,
    ) -> UnitOutcome:
        """Download, normalize and reconcile one document type for one period.

        A 404 is an empty success. Auth, transport and parse failures fail
        the unit. Row failures only skip the row.
        """
        with with_correlation(doc_type=doc_type.value, period=period):
            try:
                text = await self.client.download_export(doc_type, period)
            except NotFoundError:
                logger.info("sync_unit_no_data")
                return UnitOutcome(doc_type=doc_type, period=period, status=UnitStatus.EMPTY)
            except (AuthError, TransportError) as e:
                logger.error("sync_unit_download_failed", extra_fields={"error": str(e)})
                return UnitOutcome(doc_type=doc_type, period=period, status=UnitStatus.FAILED, error=str(e))

            try:
                rows = parse_delimited(text)
            except ParseError as e:
                logger.error("sync_unit_parse_failed", extra_fields={"error": str(e)})
                return UnitOutcome(
                    doc_type=doc_type,
                    period=period,
                    status=UnitStatus.FAILED,
                    error=str(e),
                    csv_size=len(text),
                )

            counters = ReconcileCounters()
            skipped_rows: List[SkippedRow] = []

            for index, raw_row in enumerate(rows, start=1):
                try:
                    record = normalize_row(raw_row, doc_type, period, origin=HAULMER_ORIGIN)
                except ValidationError as e:
                    counters.skipped += 1
                    logger.warning("sync_row_invalid", extra_fields={"row": index, "error": str(e)})
                    if len(skipped_rows) < MAX_SKIPPED_ROWS:
                        skipped_rows.append(SkippedRow(reason=f"row {index}: {e}"))
                    continue

                result = reconcile(record, self.records, mode)
                counters.add(result)
                if result.error and len(skipped_rows) < MAX_SKIPPED_ROWS:
                    skipped_rows.append(SkippedRow(
                        natural_key=[str(part) for part in result.natural_key],
                        reason=result.error,
                    ))

            logger.info(
                "sync_unit_completed",
                extra_fields={
                    "rows": len(rows),
                    "inserted": counters.inserted,
                    "updated": counters.updated,
                    "skipped": counters.skipped,
                },
            )
            return UnitOutcome(
                doc_type=doc_type,
                period=period,
                status=UnitStatus.SUCCESS,
                counters=UnitCounters(
                    processed=len(rows),
                    inserted=counters.inserted,
                    updated=counters.updated,
                    skipped=counters.skipped,
                ),
                csv_size=len(text),
                skipped_rows=skipped_rows,
            )

    def default_periods(self) -> List[str]:
        """Current period and the lookback periods, in the configured zone."""
        local_now = self.clock().astimezone(self.timezone)
        return previous_periods(local_now, self.lookback_months)

    async def run_scheduled_sync(self, trigger: TriggerSource = TriggerSource.SCHEDULED) -> Optional[SyncRun]:
        """Sync the default scope. Never raises.

        Returns:
            The finalized run, or None when skipped or failed before starting
        """
        try:
            self.tracker.cleanup_stale_runs()
            return await self.run_sync(self.default_periods(), trigger=trigger)
        except SyncAlreadyRunningError as e:
            logger.info("scheduled_sync_skipped_in_flight", extra_fields={"scope": e.scope_key})
            return None
        except Exception:
            logger.exception("scheduled_sync_failed")
            return None

    def list_runs(self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> RunPage:
        """Run history, newest first. Limit is clamped to [1, 200]."""
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))
        runs, total = self.tracker.store.list(limit, offset)
        flagged = [
            run.model_copy(update={"abandoned": self.tracker.is_abandoned(run)})
            for run in runs
        ]
        return RunPage(runs=flagged, total=total, limit=limit, offset=offset)

    def get_run(self, run_id: str) -> Optional[SyncRun]:
        run = self.tracker.store.get(run_id)
        if run is None:
            return None
        return run.model_copy(update={"abandoned": self.tracker.is_abandoned(run)})

    async def available_periods(self, doc_type: Union[str, DocumentType]) -> List[str]:
        """Periods with documents for a document type.

        Raises:
            ValueError: Unknown document type
        """
        if not isinstance(doc_type, DocumentType):
            doc_type = DocumentType.parse(doc_type)
        return await self.client.list_periods(doc_type)
