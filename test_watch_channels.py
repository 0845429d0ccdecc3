"""
Watch Channel Tests

Channel registration, stop, renewal and setup against a mocked calendar
client, plus webhook debouncing.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from connectors.errors import AuthError, NotFoundError, TransportError
from connectors.google_calendar.client import WatchResponse
from storage.memory import InMemoryChannelStore
from watch_channels.manager import CHANNEL_TTL, ChannelLifecycleManager
from watch_channels.models import ChannelOperation, SetupResult, WatchChannel, WatchedResource
from watch_channels.webhook import WebhookAck, WebhookDispatcher, WebhookRejected


CALLBACK = "https://hooks.test/api/calendar/webhook"
TEAM = WatchedResource(id="cal-1", external_id="team@example.cl", name="Team")
SALES = WatchedResource(id="cal-2", external_id="sales@example.cl", name="Sales")


def calendar_client(configured=True):
    client = MagicMock()
    client.credentials.is_configured = configured
    client.credentials.get_credential = AsyncMock()
    client.watch = AsyncMock(return_value=WatchResponse(resource_id="res-new", expiration=None))
    client.stop_channel = AsyncMock(return_value=None)
    return client


def channel(channel_id, expires_at, owner="cal-1", created_at=None):
    return WatchChannel(
        channel_id=channel_id,
        external_resource_id=f"res-{channel_id}",
        owner_resource_id=owner,
        expires_at=expires_at,
        callback_address=CALLBACK,
        created_at=created_at or expires_at - CHANNEL_TTL,
    )


@pytest.fixture
def store():
    return InMemoryChannelStore(resources=[TEAM, SALES])


def manager_for(client, store, clock):
    return ChannelLifecycleManager(client, store, CALLBACK, clock=clock)


class TestRegister:
    """Channel registration."""

    def test_register_persists_channel(self, store, clock):
        client = calendar_client()
        expiration = clock.now + timedelta(days=6)
        client.watch.return_value = WatchResponse(resource_id="res-1", expiration=expiration)
        manager = manager_for(client, store, clock)

        operation = asyncio.run(manager.register(TEAM))

        assert operation is ChannelOperation.REGISTERED
        [stored] = store.list_channels()
        assert stored.external_resource_id == "res-1"
        assert stored.owner_resource_id == "cal-1"
        assert stored.expires_at == expiration
        assert stored.callback_address == CALLBACK
        calendar_id, channel_id, address, ttl = client.watch.call_args.args
        assert calendar_id == "team@example.cl"
        assert channel_id == stored.channel_id
        assert address == CALLBACK
        assert ttl == int(CHANNEL_TTL.total_seconds())

    def test_missing_expiration_defaults_to_ttl(self, store, clock):
        manager = manager_for(calendar_client(), store, clock)

        asyncio.run(manager.register(TEAM))

        assert store.list_channels()[0].expires_at == clock.now + CHANNEL_TTL

    def test_missing_resource_id_fails(self, store, clock):
        client = calendar_client()
        client.watch.return_value = WatchResponse(resource_id=None, expiration=None)
        manager = manager_for(client, store, clock)

        assert asyncio.run(manager.register(TEAM)) is ChannelOperation.FAILED
        assert store.list_channels() == []

    def test_provider_error_fails(self, store, clock):
        client = calendar_client()
        client.watch.side_effect = TransportError("HTTP 500")
        manager = manager_for(client, store, clock)

        assert asyncio.run(manager.register(TEAM)) is ChannelOperation.FAILED

    def test_unconfigured_credentials_skip(self, store, clock):
        client = calendar_client(configured=False)
        manager = manager_for(client, store, clock)

        assert asyncio.run(manager.register(TEAM)) is ChannelOperation.SKIPPED
        client.watch.assert_not_called()

    def test_unobtainable_credentials_skip(self, store, clock):
        client = calendar_client()
        client.credentials.get_credential.side_effect = AuthError("invalid_grant")
        manager = manager_for(client, store, clock)

        assert asyncio.run(manager.register(TEAM)) is ChannelOperation.SKIPPED


class TestStop:
    """Channel stop."""

    def test_stop_deletes_locally(self, store, clock):
        existing = channel("c1", clock.now + timedelta(days=3))
        store.save_channel(existing)
        client = calendar_client()

        assert asyncio.run(manager_for(client, store, clock).stop(existing)) is True
        client.stop_channel.assert_awaited_once_with("c1", "res-c1")
        assert store.get_channel("c1") is None

    def test_provider_not_found_counts_as_stopped(self, store, clock):
        existing = channel("c1", clock.now + timedelta(days=3))
        store.save_channel(existing)
        client = calendar_client()
        client.stop_channel.side_effect = NotFoundError("Channel not found", 404)

        assert asyncio.run(manager_for(client, store, clock).stop(existing)) is True
        assert store.get_channel("c1") is None

    def test_other_failure_keeps_record(self, store, clock):
        existing = channel("c1", clock.now + timedelta(days=3))
        store.save_channel(existing)
        client = calendar_client()
        client.stop_channel.side_effect = TransportError("HTTP 503", 503)

        assert asyncio.run(manager_for(client, store, clock).stop(existing)) is False
        assert store.get_channel("c1") is not None

    def test_unconfigured_deletes_without_calling(self, store, clock):
        existing = channel("c1", clock.now + timedelta(days=3))
        store.save_channel(existing)
        client = calendar_client(configured=False)

        assert asyncio.run(manager_for(client, store, clock).stop(existing)) is True
        client.stop_channel.assert_not_called()
        assert store.list_channels() == []


class TestRenewal:
    """Renewal of expiring channels."""

    def test_expiring_channel_replaced(self, store, clock):
        store.save_channel(channel("old", clock.now + timedelta(hours=12)))
        manager = manager_for(calendar_client(), store, clock)

        summary = asyncio.run(manager.renew_expiring())

        assert len(summary.renewed) == 1
        assert store.get_channel("old") is None
        [fresh] = store.list_channels()
        assert fresh.channel_id == summary.renewed[0]
        assert fresh.owner_resource_id == "cal-1"

    def test_channels_outside_buffer_untouched(self, store, clock):
        store.save_channel(channel("healthy", clock.now + timedelta(days=3)))
        client = calendar_client()

        summary = asyncio.run(manager_for(client, store, clock).renew_expiring())

        assert summary.considered == 0
        client.stop_channel.assert_not_called()

    def test_failed_stop_of_valid_channel_deferred(self, store, clock):
        store.save_channel(channel("old", clock.now + timedelta(hours=12)))
        client = calendar_client()
        client.stop_channel.side_effect = TransportError("HTTP 503", 503)

        summary = asyncio.run(manager_for(client, store, clock).renew_expiring())

        assert summary.deferred == ["old"]
        assert store.get_channel("old") is not None
        client.watch.assert_not_called()

    def test_failed_stop_of_expired_channel_dropped_and_replaced(self, store, clock):
        store.save_channel(channel("old", clock.now - timedelta(hours=1)))
        client = calendar_client()
        client.stop_channel.side_effect = TransportError("HTTP 503", 503)

        summary = asyncio.run(manager_for(client, store, clock).renew_expiring())

        assert summary.dropped == ["old"]
        assert len(summary.renewed) == 1
        assert store.get_channel("old") is None

    def test_not_reregistered_when_another_channel_covers(self, store, clock):
        store.save_channel(channel("old", clock.now + timedelta(hours=12)))
        store.save_channel(channel("newer", clock.now + timedelta(days=5)))
        client = calendar_client()

        summary = asyncio.run(manager_for(client, store, clock).renew_expiring())

        assert summary.dropped == ["old"]
        client.watch.assert_not_called()
        assert [c.channel_id for c in store.list_channels()] == ["newer"]

    def test_unknown_resource_dropped(self, store, clock):
        store.save_channel(channel("orphan", clock.now + timedelta(hours=2), owner="gone"))
        client = calendar_client()

        summary = asyncio.run(manager_for(client, store, clock).renew_expiring())

        assert summary.dropped == ["orphan"]
        client.watch.assert_not_called()

    def test_failed_reregistration_reported(self, store, clock):
        store.save_channel(channel("old", clock.now + timedelta(hours=12)))
        client = calendar_client()
        client.watch.side_effect = TransportError("HTTP 500", 500)

        summary = asyncio.run(manager_for(client, store, clock).renew_expiring())

        assert summary.failed == ["old"]


class TestSetup:
    """Initial registration and maintenance passes."""

    def test_registers_only_uncovered_calendars(self, store, clock):
        store.save_channel(channel("team", clock.now + timedelta(days=4), owner="cal-1"))
        client = calendar_client()

        result = asyncio.run(manager_for(client, store, clock).setup_all())

        assert result is SetupResult.UPDATED
        assert client.watch.await_count == 1
        assert client.watch.call_args.args[0] == "sales@example.cl"

    def test_expired_channel_does_not_cover(self, store, clock):
        store.save_channel(channel("stale", clock.now - timedelta(minutes=1), owner="cal-1"))
        store.save_channel(channel("sales", clock.now + timedelta(days=4), owner="cal-2"))
        client = calendar_client()

        asyncio.run(manager_for(client, store, clock).setup_all())

        assert client.watch.call_args.args[0] == "team@example.cl"

    def test_skip_log_throttled(self, store, clock):
        store.save_channel(channel("team", clock.now + timedelta(days=4), owner="cal-1"))
        store.save_channel(channel("sales", clock.now + timedelta(days=4), owner="cal-2"))
        manager = manager_for(calendar_client(), store, clock)

        with patch("watch_channels.manager.log_sync_event") as log_event:
            results = [asyncio.run(manager.setup_all())]
            clock.advance(minutes=30)
            results.append(asyncio.run(manager.setup_all()))
            clock.advance(minutes=31)
            results.append(asyncio.run(manager.setup_all()))

        assert results == [SetupResult.SKIPPED] * 3
        skip_logs = [c for c in log_event.call_args_list if c.args[0] == "setup_watch_channels_skip"]
        assert len(skip_logs) == 2

    def test_setup_failure_reported(self, clock):
        failing_store = MagicMock()
        failing_store.list_resources.side_effect = RuntimeError("database is locked")

        result = asyncio.run(manager_for(calendar_client(), failing_store, clock).setup_all())

        assert result is SetupResult.FAILED

    def test_purge_expired(self, store, clock):
        store.save_channel(channel("expired", clock.now - timedelta(seconds=1)))
        store.save_channel(channel("valid", clock.now + timedelta(days=1)))

        purged = manager_for(calendar_client(), store, clock).purge_expired()

        assert purged == ["expired"]
        assert [c.channel_id for c in store.list_channels()] == ["valid"]

    def test_maintain_leaves_only_future_channels(self, store, clock):
        store.save_channel(channel("expired", clock.now - timedelta(hours=3), owner="cal-1"))
        store.save_channel(channel("expiring", clock.now + timedelta(hours=3), owner="cal-2"))
        client = calendar_client()
        client.stop_channel.side_effect = TransportError("HTTP 503", 503)

        asyncio.run(manager_for(client, store, clock).maintain())

        channels = store.list_channels()
        assert all(c.expires_at > clock.now for c in channels)
        assert {c.owner_resource_id for c in channels} == {"cal-1", "cal-2"}


# =============================================================================
# Webhook
# =============================================================================

def notification(state="exists", channel_id="c1", **extra):
    headers = {
        "X-Goog-Channel-Id": channel_id,
        "X-Goog-Resource-Id": "res-c1",
        "X-Goog-Resource-State": state,
        "X-Goog-Message-Number": "7",
    }
    headers.update(extra)
    return headers


class TestWebhookDispatcher:
    """Notification handling and debouncing."""

    def test_burst_collapses_into_one_call(self):
        on_change = AsyncMock()

        async def scenario():
            dispatcher = WebhookDispatcher(on_change, debounce_seconds=0.02)
            acks = [dispatcher.handle(notification()) for _ in range(3)]
            assert dispatcher.pending
            await asyncio.sleep(0.1)
            await dispatcher.flush()
            return acks

        acks = asyncio.run(scenario())

        assert acks == [WebhookAck.SCHEDULED] * 3
        on_change.assert_awaited_once_with("c1")

    def test_sync_state_only_verifies(self):
        on_change = AsyncMock()

        async def scenario():
            dispatcher = WebhookDispatcher(on_change, debounce_seconds=0.01)
            ack = dispatcher.handle(notification(state="sync"))
            await asyncio.sleep(0.05)
            return ack

        assert asyncio.run(scenario()) is WebhookAck.VERIFIED
        on_change.assert_not_awaited()

    def test_headers_are_case_insensitive(self):
        async def scenario():
            dispatcher = WebhookDispatcher(AsyncMock())
            ack = dispatcher.handle({
                "x-goog-channel-id": "c1",
                "X-GOOG-RESOURCE-ID": "res-c1",
                "x-goog-resource-state": "sync",
            })
            dispatcher.close()
            return ack

        assert asyncio.run(scenario()) is WebhookAck.VERIFIED

    @pytest.mark.parametrize("headers", [
        {"X-Goog-Resource-Id": "res-c1", "X-Goog-Resource-State": "exists"},
        {"X-Goog-Channel-Id": "c1", "X-Goog-Resource-State": "exists"},
        {},
    ])
    def test_missing_headers_rejected(self, headers):
        dispatcher = WebhookDispatcher(AsyncMock())

        with pytest.raises(WebhookRejected):
            dispatcher.handle(headers)

    def test_unknown_channel_ignored(self, store, clock):
        store.save_channel(channel("c1", clock.now + timedelta(days=2)))

        async def scenario():
            dispatcher = WebhookDispatcher(AsyncMock(), channels=store)
            ack = dispatcher.handle(notification(channel_id="someone-else"))
            return ack, dispatcher.pending

        assert asyncio.run(scenario()) == (WebhookAck.IGNORED, False)

    def test_other_states_ignored(self):
        async def scenario():
            dispatcher = WebhookDispatcher(AsyncMock())
            return dispatcher.handle(notification(state="not_exists"))

        assert asyncio.run(scenario()) is WebhookAck.IGNORED

    def test_flush_fires_pending_immediately(self):
        on_change = AsyncMock()

        async def scenario():
            dispatcher = WebhookDispatcher(on_change, debounce_seconds=60)
            dispatcher.handle(notification())
            await dispatcher.flush()
            return dispatcher.pending

        assert asyncio.run(scenario()) is False
        on_change.assert_awaited_once_with("c1")

    def test_close_drops_pending(self):
        on_change = AsyncMock()

        async def scenario():
            dispatcher = WebhookDispatcher(on_change, debounce_seconds=0.01)
            dispatcher.handle(notification())
            dispatcher.close()
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        on_change.assert_not_awaited()

    def test_sync_failure_is_contained(self):
        on_change = AsyncMock(side_effect=RuntimeError("registry down"))

        async def scenario():
            dispatcher = WebhookDispatcher(on_change, debounce_seconds=60)
            dispatcher.handle(notification())
            await dispatcher.flush()

        asyncio.run(scenario())
        on_change.assert_awaited_once()
