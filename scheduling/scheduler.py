"""Timer-driven schedulers.

Both schedulers keep exactly one pending `loop.call_later` timer and re-arm
it after every pass. They never overlap passes: a trigger arriving while a
pass is in flight is deferred (maintenance) or skipped (cron sync).

- ChannelMaintenanceScheduler: adaptive delay from the soonest channel expiry
- CronSyncScheduler: pull-sync on cron expressions in a configured zone
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional, Set
from zoneinfo import ZoneInfo

from croniter import croniter

from connectors.auth import utc_now
from core.config import DEFAULT_TIMEZONE
from core.observability.logging import get_logger
from scheduling.delay import RenewalPolicy, compute_next_delay, draw_jitter
from storage.base import ChannelStore
from watch_channels.manager import ChannelLifecycleManager

logger = get_logger(__name__)


class _TimerMixin:
    """One re-armable single-shot timer plus tracked background tasks."""

    def _init_timer(self) -> None:
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def _arm(self, delay: timedelta, callback: Callable[[], None]) -> None:
        if self._closed:
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(max(0.0, delay.total_seconds()), callback)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._timer.cancelled()

    def close(self) -> None:
        """Cancel the pending timer. Used on process shutdown only."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait_idle(self) -> None:
        """Wait for passes already started."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# =============================================================================
# Channel maintenance
# =============================================================================

class ChannelMaintenanceScheduler(_TimerMixin):
    """Runs channel maintenance just before the soonest channel needs renewal."""

    def __init__(
        self,
        manager: ChannelLifecycleManager,
        store: Optional[ChannelStore] = None,
        policy: Optional[RenewalPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self.manager = manager
        self.store = store or manager.store
        self.policy = policy or RenewalPolicy()
        self.clock = clock
        self.rng = rng
        self.in_flight = False
        self.last_delay: Optional[timedelta] = None
        self.pass_count = 0
        self._init_timer()

    def start(self) -> None:
        """Arm the first pass. Must be called inside the event loop."""
        self.schedule(self.policy.initial_delay)

    def schedule(self, delay: timedelta) -> None:
        """Replace the pending timer with one firing after `delay`."""
        self.last_delay = delay
        self._arm(delay, self._on_timer)
        logger.debug("channel_maintenance_scheduled", extra_fields={"delay_seconds": delay.total_seconds()})

    def _on_timer(self) -> None:
        self._timer = None
        self._spawn(self.run_pass())

    def next_delay(self) -> timedelta:
        """Adaptive delay from the soonest stored expiry."""
        return compute_next_delay(
            self.store.soonest_expiry(),
            self.clock(),
            self.policy,
            draw_jitter(self.policy, self.rng),
        )

    async def run_pass(self) -> None:
        """One maintenance pass, then re-arm. Never raises."""
        if self.in_flight:
            logger.info("channel_maintenance_deferred_in_flight")
            self.schedule(self.policy.initial_delay)
            return

        self.in_flight = True
        try:
            result = await self.manager.maintain()
            logger.info("channel_maintenance_complete", extra_fields={"result": result.value})
        except Exception:
            logger.exception("channel_maintenance_error")
        finally:
            self.in_flight = False
            self.pass_count += 1

        try:
            delay = self.next_delay()
        except Exception:
            logger.exception("channel_maintenance_delay_error")
            delay = self.policy.min_delay
        self.schedule(delay)


# =============================================================================
# Cron pull-sync
# =============================================================================

def valid_cron_expressions(expressions: List[str]) -> List[str]:
    """Keep the expressions croniter accepts, warning about the rest."""
    valid = []
    for expression in expressions:
        if croniter.is_valid(expression):
            valid.append(expression)
        else:
            logger.warning("cron_expression_invalid", extra_fields={"expression": expression})
    return valid


class CronSyncScheduler(_TimerMixin):
    """Fires a sync job on cron expressions evaluated in a local zone.

    Usage:
        scheduler = CronSyncScheduler(service.run_scheduled_sync, ["0 6 * * *"])
        scheduler.start()
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[Any]],
        cron_expressions: List[str],
        timezone_name: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.job = job
        self.cron_expressions = valid_cron_expressions(cron_expressions)
        self.zone = ZoneInfo(timezone_name)
        self.clock = clock
        self.in_flight = False
        self.next_fire_at: Optional[datetime] = None
        self.skipped_count = 0
        self._init_timer()
        if not self.cron_expressions:
            logger.warning("cron_scheduler_disabled", extra_fields={"reason": "no valid expressions"})

    @property
    def enabled(self) -> bool:
        return bool(self.cron_expressions)

    def next_fire_time(self, after: datetime) -> Optional[datetime]:
        """Earliest fire time strictly after `after`, as an aware UTC datetime."""
        if not self.cron_expressions:
            return None
        local_after = after.astimezone(self.zone)
        candidates = [
            croniter(expression, local_after).get_next(datetime)
            for expression in self.cron_expressions
        ]
        return min(candidates).astimezone(timezone.utc)

    def start(self) -> None:
        """Arm the first fire. Must be called inside the event loop."""
        self._arm_next(self.clock())

    def _arm_next(self, after: datetime) -> None:
        fire_at = self.next_fire_time(after)
        self.next_fire_at = fire_at
        if fire_at is None:
            return
        self._arm(fire_at - self.clock(), self._on_timer)
        logger.info("cron_sync_scheduled", extra_fields={"next_fire_at": fire_at.isoformat()})

    def _on_timer(self) -> None:
        self._timer = None
        fired_at = self.next_fire_at or self.clock()
        self.trigger()
        self._arm_next(max(fired_at, self.clock()))

    def trigger(self) -> bool:
        """Start the job unless a previous run is still in flight."""
        if self.in_flight:
            self.skipped_count += 1
            logger.warning("cron_sync_skipped_in_flight")
            return False
        self.in_flight = True
        self._spawn(self._run())
        return True

    async def _run(self) -> None:
        try:
            await self.job()
        except Exception:
            logger.exception("cron_sync_error")
        finally:
            self.in_flight = False
