"""Reconciliation engine.

Applies canonical records to a RecordStore idempotently:

- No stored record with the natural key: insert
- Stored record with identical content: skip (no write)
- Stored record with different content: full-record update

Exposes:
- reconcile(record, store, mode) -> ReconcileResult
- reconcile_batch(records, store, mode) -> ReconcileCounters
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Tuple

from core.observability.logging import get_logger
from normalization.records import CanonicalRecord
from storage.base import RecordStore

logger = get_logger(__name__)


SYSTEM_FIELDS = frozenset({"id", "created_at", "updated_at"})


class ReconcileMode(str, Enum):
    INSERT_OR_UPDATE = "insert-or-update"
    INSERT_ONLY = "insert-only"  # historical backfills: never overwrite


class ReconcileAction(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class ReconcileResult:
    """Outcome of reconciling one record."""
    action: ReconcileAction
    natural_key: Tuple[Any, ...]
    error: Optional[str] = None


@dataclass
class ReconcileCounters:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def add(self, result: ReconcileResult) -> None:
        if result.action is ReconcileAction.INSERTED:
            self.inserted += 1
        elif result.action is ReconcileAction.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    @property
    def processed(self) -> int:
        return self.inserted + self.updated + self.skipped


# =============================================================================
# Comparison
# =============================================================================

def values_differ(existing: Any, new: Any) -> bool:
    """Compare one field.

    Decimals compare by string form, so Decimal("100000") and
    Decimal("100000.00") differ. A stored decimal against a missing new
    value always differs.
    """
    if isinstance(existing, Decimal):
        if new is None:
            return True
        return str(existing) != str(new)
    if isinstance(existing, datetime) and isinstance(new, datetime):
        return existing.timestamp() != new.timestamp()
    return existing != new


def are_data_different(existing: Mapping[str, Any], new: Mapping[str, Any]) -> bool:
    """True when any non-system field of `new` differs from `existing`."""
    for name, value in new.items():
        if name in SYSTEM_FIELDS:
            continue
        if values_differ(existing.get(name), value):
            return True
    return False


# =============================================================================
# Apply
# =============================================================================

def reconcile(
    record: CanonicalRecord,
    store: RecordStore,
    mode: ReconcileMode = ReconcileMode.INSERT_OR_UPDATE,
) -> ReconcileResult:
    """Apply one record to the store.

    Never raises: a missing natural-key field or any store failure degrades
    to SKIPPED, logged with the natural key and carried in `error`.
    """
    natural_key = record.natural_key()

    missing = record.missing_key_fields()
    if missing:
        message = f"missing natural key field(s): {', '.join(missing)}"
        logger.warning(
            "reconcile_row_skipped_missing_key",
            extra_fields={"record_type": record.record_type, "missing": list(missing)},
        )
        return ReconcileResult(ReconcileAction.SKIPPED, natural_key, message)

    try:
        existing = store.find(type(record), natural_key)
        if existing is None:
            store.create(record)
            return ReconcileResult(ReconcileAction.INSERTED, natural_key)

        if mode is ReconcileMode.INSERT_ONLY:
            return ReconcileResult(ReconcileAction.SKIPPED, natural_key)

        if are_data_different(existing.fields, record.to_fields()):
            store.update(existing.id, record)
            return ReconcileResult(ReconcileAction.UPDATED, natural_key)

        return ReconcileResult(ReconcileAction.SKIPPED, natural_key)

    except Exception as e:
        logger.error(
            "reconcile_row_failed",
            extra_fields={
                "record_type": record.record_type,
                "natural_key": [str(part) for part in natural_key],
                "period": getattr(record, "period", None),
                "error": str(e),
            },
        )
        return ReconcileResult(ReconcileAction.SKIPPED, natural_key, str(e))


def reconcile_batch(
    records: Iterable[CanonicalRecord],
    store: RecordStore,
    mode: ReconcileMode = ReconcileMode.INSERT_OR_UPDATE,
) -> ReconcileCounters:
    """Apply records one at a time, in order."""
    counters = ReconcileCounters()
    for record in records:
        counters.add(reconcile(record, store, mode))
    return counters
