"""
Observability Module for the Sync Engine

Provides:
- Structured logging with correlation IDs (run, unit, channel)
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
    log_sync_event,
    log_sync_warning,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
    "log_sync_event",
    "log_sync_warning",
]
