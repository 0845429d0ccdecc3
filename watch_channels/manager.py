"""Channel Lifecycle Manager.

Keeps one push channel per watched calendar:

- register: create a provider channel and persist it
- stop: cancel a channel at the provider and forget it locally
- renew_expiring: replace channels inside the renewal buffer
- setup_all: register channels for calendars that have none
- maintain: setup_all, renew_expiring, then purge_expired

Provider channels live at most 7 days. After a maintenance pass, every
stored channel expires in the future.
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from connectors.auth import utc_now
from connectors.errors import AuthError, SyncError, TransportError, is_not_found
from connectors.google_calendar.client import GoogleCalendarClient
from core.observability.logging import get_logger, log_sync_event, log_sync_warning, with_correlation
from storage.base import ChannelStore
from watch_channels.models import (
    ChannelOperation,
    RenewalSummary,
    SetupResult,
    WatchChannel,
    WatchedResource,
)

logger = get_logger(__name__)


CHANNEL_TTL = timedelta(days=7)
RENEWAL_BUFFER = timedelta(days=1)
SKIP_LOG_THROTTLE = timedelta(hours=1)


class ChannelLifecycleManager:
    """Registers, renews and stops calendar push channels."""

    def __init__(
        self,
        client: GoogleCalendarClient,
        store: ChannelStore,
        callback_address: str,
        clock: Callable[[], datetime] = utc_now,
        channel_ttl: timedelta = CHANNEL_TTL,
        renewal_buffer: timedelta = RENEWAL_BUFFER,
    ):
        self.client = client
        self.store = store
        self.callback_address = callback_address
        self.clock = clock
        self.channel_ttl = channel_ttl
        self.renewal_buffer = renewal_buffer
        self._last_skip_log_at: Optional[datetime] = None

    @property
    def credentials_configured(self) -> bool:
        return self.client.credentials.is_configured

    async def _credentials_available(self) -> bool:
        if not self.credentials_configured:
            return False
        try:
            await self.client.credentials.get_credential()
        except (AuthError, TransportError) as e:
            logger.warning("google_calendar_credentials_unavailable", extra_fields={"error": str(e)})
            return False
        return True

    # =========================================================================
    # Register / stop
    # =========================================================================

    async def register(self, resource: WatchedResource) -> ChannelOperation:
        """Register a channel for a calendar.

        Returns:
            REGISTERED, SKIPPED when credentials are unavailable, or FAILED
        """
        operation, _ = await self._register(resource)
        return operation

    async def _register(self, resource: WatchedResource) -> Tuple[ChannelOperation, Optional[WatchChannel]]:
        if not await self._credentials_available():
            return ChannelOperation.SKIPPED, None

        channel_id = str(uuid.uuid4())
        now = self.clock()

        with with_correlation(channel_id=channel_id):
            log_sync_event(
                "register_watch_channel_start",
                calendar_id=resource.external_id,
                resource_id=resource.id,
                webhook_url=self.callback_address,
            )
            try:
                response = await self.client.watch(
                    resource.external_id,
                    channel_id,
                    self.callback_address,
                    int(self.channel_ttl.total_seconds()),
                )
            except SyncError as e:
                log_sync_warning(
                    "register_watch_channel_error",
                    calendar_id=resource.external_id,
                    error=str(e),
                )
                return ChannelOperation.FAILED, None

            if not response.resource_id:
                log_sync_warning(
                    "register_watch_channel_failed",
                    calendar_id=resource.external_id,
                    error="No resourceId in response",
                )
                return ChannelOperation.FAILED, None

            channel = WatchChannel(
                channel_id=channel_id,
                external_resource_id=response.resource_id,
                owner_resource_id=resource.id,
                expires_at=response.expiration or now + self.channel_ttl,
                callback_address=self.callback_address,
                created_at=now,
            )
            self.store.save_channel(channel)

            log_sync_event(
                "register_watch_channel_success",
                calendar_id=resource.external_id,
                external_resource_id=channel.external_resource_id,
                expiration=channel.expires_at.isoformat(),
            )
            return ChannelOperation.REGISTERED, channel

    async def stop(self, channel: WatchChannel) -> bool:
        """Stop a channel at the provider and delete it locally.

        A channel the provider no longer knows counts as stopped. Any other
        failure keeps the local record and returns False.
        """
        with with_correlation(channel_id=channel.channel_id):
            if not self.credentials_configured:
                self.store.delete_channel(channel.channel_id)
                return True

            log_sync_event("stop_watch_channel_start", external_resource_id=channel.external_resource_id)
            try:
                await self.client.stop_channel(channel.channel_id, channel.external_resource_id)
            except SyncError as e:
                if is_not_found(e):
                    log_sync_warning(
                        "stop_watch_channel_404",
                        message="Channel not found on provider, removing locally",
                    )
                    self.store.delete_channel(channel.channel_id)
                    return True
                log_sync_warning("stop_watch_channel_error", error=str(e))
                return False

            self.store.delete_channel(channel.channel_id)
            log_sync_event("stop_watch_channel_success")
            return True

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def renew_expiring(self) -> RenewalSummary:
        """Replace channels expiring within the renewal buffer.

        Each channel is handled independently. If stopping fails, a channel
        that is still valid is left for the next pass; an expired one is
        dropped locally and replaced.
        """
        now = self.clock()
        threshold = now + self.renewal_buffer
        channels = self.store.list_channels()
        resources = {resource.id: resource for resource in self.store.list_resources()}
        expiring = [channel for channel in channels if channel.expires_at <= threshold]
        summary = RenewalSummary()

        log_sync_event(
            "renew_watch_channels_start",
            expiring_count=len(expiring),
            expiration_threshold=threshold.isoformat(),
        )

        for channel in expiring:
            try:
                stopped = await self.stop(channel)
                if not stopped:
                    if not channel.is_expired(now):
                        summary.deferred.append(channel.channel_id)
                        continue
                    self.store.delete_channel(channel.channel_id)
                    summary.dropped.append(channel.channel_id)

                resource = resources.get(channel.owner_resource_id)
                if resource is None or self._has_other_channel(channel, threshold):
                    if channel.channel_id not in summary.dropped:
                        summary.dropped.append(channel.channel_id)
                    continue

                operation, new_channel = await self._register(resource)
                if operation is ChannelOperation.REGISTERED and new_channel is not None:
                    summary.renewed.append(new_channel.channel_id)
                    log_sync_event(
                        "renew_watch_channel_success",
                        calendar_id=resource.external_id,
                        old_channel_id=channel.channel_id,
                        new_channel_id=new_channel.channel_id,
                    )
                else:
                    summary.failed.append(channel.channel_id)
                    log_sync_warning(
                        "renew_watch_channel_failed",
                        calendar_id=resource.external_id,
                        old_channel_id=channel.channel_id,
                        operation=operation.value,
                    )
            except Exception:
                logger.exception(
                    "renew_watch_channel_error",
                    extra_fields={"old_channel_id": channel.channel_id},
                )
                summary.failed.append(channel.channel_id)

        log_sync_event("renew_watch_channels_complete", processed_count=len(expiring))
        return summary

    def _has_other_channel(self, channel: WatchChannel, threshold: datetime) -> bool:
        """Another channel of the same calendar outlives the renewal window."""
        return any(
            other.owner_resource_id == channel.owner_resource_id
            and other.channel_id != channel.channel_id
            and other.expires_at > threshold
            for other in self.store.list_channels()
        )

    async def setup_all(self) -> SetupResult:
        """Register channels for calendars without an active one."""
        try:
            now = self.clock()
            resources = self.store.list_resources()
            active = [channel for channel in self.store.list_channels() if channel.expires_at > now]
            covered = {channel.owner_resource_id for channel in active}
            needing = [resource for resource in resources if resource.id not in covered]

            log_sync_event(
                "setup_watch_channels_start",
                total_calendars=len(resources),
                existing_channels=len(active),
                needing_channels=len(needing),
            )

            if not needing:
                if self._last_skip_log_at is None or now - self._last_skip_log_at >= SKIP_LOG_THROTTLE:
                    log_sync_event(
                        "setup_watch_channels_skip",
                        message="All calendars already have active watch channels",
                    )
                    self._last_skip_log_at = now
                return SetupResult.SKIPPED

            success_count = 0
            fail_count = 0
            for resource in needing:
                operation = await self.register(resource)
                if operation is ChannelOperation.REGISTERED:
                    success_count += 1
                else:
                    fail_count += 1
                    log_sync_warning(
                        "setup_watch_channel_failed",
                        calendar_id=resource.external_id,
                        operation=operation.value,
                    )

            log_sync_event("setup_watch_channels_complete", success_count=success_count, fail_count=fail_count)
            return SetupResult.UPDATED
        except Exception:
            logger.exception("setup_watch_channels_error")
            return SetupResult.FAILED

    def purge_expired(self) -> List[str]:
        """Delete stored channels that have already expired."""
        now = self.clock()
        purged = []
        for channel in self.store.list_channels():
            if channel.is_expired(now):
                self.store.delete_channel(channel.channel_id)
                purged.append(channel.channel_id)
        if purged:
            log_sync_warning("watch_channels_purged", channel_ids=purged)
        return purged

    async def maintain(self) -> SetupResult:
        """Full maintenance pass: setup, renew, purge."""
        result = await self.setup_all()
        await self.renew_expiring()
        self.purge_expired()
        return result
