"""Inbound calendar push notifications.

The provider calls the webhook with headers only:

- X-Goog-Channel-Id / X-Goog-Resource-Id: which channel fired (required)
- X-Goog-Resource-State: "sync" on channel creation, "exists" on change
- X-Goog-Message-Number: increasing sequence number

Bursts of "exists" notifications are debounced into a single sync call.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Set

from core.observability.logging import get_logger, with_correlation
from storage.base import ChannelStore

logger = get_logger(__name__)


DEBOUNCE_SECONDS = 5.0

CHANNEL_ID_HEADER = "x-goog-channel-id"
RESOURCE_ID_HEADER = "x-goog-resource-id"
RESOURCE_STATE_HEADER = "x-goog-resource-state"
MESSAGE_NUMBER_HEADER = "x-goog-message-number"


class WebhookRejected(ValueError):
    """Notification without the identifying headers."""
    pass


class WebhookAck(str, Enum):
    VERIFIED = "verified"
    SCHEDULED = "scheduled"
    IGNORED = "ignored"


class WebhookDispatcher:
    """Turns change notifications into debounced sync triggers.

    Usage:
        dispatcher = WebhookDispatcher(on_change=trigger_sync, channels=channel_store)
        ack = dispatcher.handle(request.headers)
    """

    def __init__(
        self,
        on_change: Callable[[str], Awaitable[Any]],
        channels: Optional[ChannelStore] = None,
        debounce_seconds: float = DEBOUNCE_SECONDS,
    ):
        """Initialize the dispatcher.

        Args:
            on_change: Coroutine function called with the channel id that fired
            channels: When given, notifications for unknown channels are ignored
            debounce_seconds: Quiet period before the sync call
        """
        self.on_change = on_change
        self.channels = channels
        self.debounce_seconds = debounce_seconds
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending_channel_id: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def handle(self, headers: Mapping[str, str]) -> WebhookAck:
        """Handle one notification. Must run inside the event loop.

        Raises:
            WebhookRejected: Channel or resource id header missing
        """
        normalized = {str(key).lower(): value for key, value in headers.items()}
        channel_id = normalized.get(CHANNEL_ID_HEADER)
        resource_id = normalized.get(RESOURCE_ID_HEADER)
        state = normalized.get(RESOURCE_STATE_HEADER)
        message_number = normalized.get(MESSAGE_NUMBER_HEADER)

        if not channel_id or not resource_id:
            logger.warning("calendar_webhook_missing_headers")
            raise WebhookRejected("Missing required headers")

        with with_correlation(channel_id=channel_id):
            if self.channels is not None and self.channels.get_channel(channel_id) is None:
                logger.warning("calendar_webhook_unknown_channel", extra_fields={"resource_id": resource_id})
                return WebhookAck.IGNORED

            if state == "sync":
                logger.info("calendar_webhook_sync_verified")
                return WebhookAck.VERIFIED

            if state == "exists":
                logger.info(
                    "calendar_webhook_change",
                    extra_fields={
                        "message_number": message_number or "?",
                        "debounce_seconds": self.debounce_seconds,
                    },
                )
                self._schedule(channel_id)
                return WebhookAck.SCHEDULED

            logger.info("calendar_webhook_unknown_state", extra_fields={"state": state})
            return WebhookAck.IGNORED

    def _schedule(self, channel_id: str) -> None:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._pending_channel_id = channel_id
        self._timer = loop.call_later(self.debounce_seconds, self._fire)

    def _fire(self) -> None:
        self._timer = None
        channel_id, self._pending_channel_id = self._pending_channel_id, None
        if channel_id is None:
            return
        task = asyncio.get_running_loop().create_task(self._run(channel_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, channel_id: str) -> None:
        with with_correlation(channel_id=channel_id, trigger="webhook"):
            logger.info("calendar_webhook_sync_start")
            try:
                await self.on_change(channel_id)
            except Exception:
                logger.exception("calendar_webhook_sync_failed")

    async def flush(self) -> None:
        """Fire a pending trigger now and wait for in-progress triggers."""
        if self._timer is not None:
            self._timer.cancel()
            self._fire()
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    def close(self) -> None:
        """Drop a pending trigger (process shutdown)."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending_channel_id = None
