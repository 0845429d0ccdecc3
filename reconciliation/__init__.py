"""Insert / update / skip reconciliation of canonical records."""

from reconciliation.engine import (
    SYSTEM_FIELDS,
    ReconcileAction,
    ReconcileCounters,
    ReconcileMode,
    ReconcileResult,
    are_data_different,
    reconcile,
    reconcile_batch,
    values_differ,
)

__all__ = [
    "SYSTEM_FIELDS",
    "ReconcileAction",
    "ReconcileCounters",
    "ReconcileMode",
    "ReconcileResult",
    "are_data_different",
    "reconcile",
    "reconcile_batch",
    "values_differ",
]
