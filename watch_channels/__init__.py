"""Calendar push-channel lifecycle and inbound notifications.

Import ChannelLifecycleManager from watch_channels.manager and
WebhookDispatcher from watch_channels.webhook.
"""

from watch_channels.models import (
    ChannelOperation,
    RenewalSummary,
    SetupResult,
    WatchChannel,
    WatchedResource,
)

__all__ = [
    "ChannelOperation",
    "RenewalSummary",
    "SetupResult",
    "WatchChannel",
    "WatchedResource",
]
