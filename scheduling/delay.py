"""Adaptive delay for channel maintenance.

The next maintenance pass is aimed at the moment the soonest channel enters
its renewal buffer, clamped to [min_delay, max_delay]. With no channels the
scheduler falls back to a long fixed delay.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class RenewalPolicy:
    """Timing parameters for channel maintenance.

    Attributes:
        initial_delay: First pass after start, and the retry delay when a pass is in flight
        min_delay: Lower clamp for computed delays
        max_delay: Upper clamp for computed delays
        jitter_max: Upper bound (exclusive) of the random jitter
        fallback_delay: Delay when no channel exists
        renewal_buffer: How long before expiry a channel is renewed
    """
    initial_delay: timedelta = timedelta(seconds=5)
    min_delay: timedelta = timedelta(seconds=30)
    max_delay: timedelta = timedelta(hours=1)
    jitter_max: timedelta = timedelta(seconds=1)
    fallback_delay: timedelta = timedelta(hours=6)
    renewal_buffer: timedelta = timedelta(days=1)

    def __post_init__(self):
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must not exceed max_delay")
        if self.jitter_max < timedelta(0):
            raise ValueError("jitter_max must not be negative")


def draw_jitter(policy: RenewalPolicy, rng: Optional[random.Random] = None) -> timedelta:
    """Uniform jitter in [0, policy.jitter_max)."""
    rng = rng or random
    return policy.jitter_max * rng.random()


def compute_next_delay(
    soonest_expiry: Optional[datetime],
    now: datetime,
    policy: RenewalPolicy,
    jitter: timedelta = timedelta(0),
) -> timedelta:
    """Delay until the next maintenance pass.

    Args:
        soonest_expiry: Earliest channel expiration, None when there are no channels
        now: Current time
        policy: Timing parameters
        jitter: Random offset, usually from draw_jitter

    Returns:
        fallback_delay when there are no channels, otherwise
        clamp(soonest_expiry - renewal_buffer - now + jitter, min_delay, max_delay)
    """
    if soonest_expiry is None:
        return policy.fallback_delay
    raw = soonest_expiry - policy.renewal_buffer - now + jitter
    return min(policy.max_delay, max(policy.min_delay, raw))
