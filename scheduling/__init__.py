"""Maintenance and pull-sync scheduling."""

from scheduling.delay import RenewalPolicy, compute_next_delay, draw_jitter
from scheduling.scheduler import ChannelMaintenanceScheduler, CronSyncScheduler, valid_cron_expressions

__all__ = [
    "RenewalPolicy",
    "compute_next_delay",
    "draw_jitter",
    "ChannelMaintenanceScheduler",
    "CronSyncScheduler",
    "valid_cron_expressions",
]
