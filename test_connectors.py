"""
Connector Tests

Credential caching and refresh, the DTE registry client and the calendar
push-channel client, all against the fake aiohttp session.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import TOKEN_URL, FakeResponse, make_credentials, token_response
from connectors.auth import AuthConfig, CredentialStore
from connectors.errors import AuthError, NotFoundError, TransportError
from connectors.google_calendar.client import GoogleCalendarClient, parse_expiration
from connectors.haulmer.client import HaulmerApiConfig, HaulmerClient
from connectors.haulmer.models import DocumentType, ResourceDescriptor, ResourceKind


API_ROOT = "https://registry.test/registro"
SALES_URL = f"{API_ROOT}/ventas/detalle/76000000-0/periodo/202401/csv"
PURCHASE_PERIODS_URL = f"{API_ROOT}/compras/periodos/76000000-0"
CALENDAR_ROOT = "https://calendar.test/v3"


def haulmer_client(session, clock, workspace_id="ws-1"):
    return HaulmerClient(
        HaulmerApiConfig(tenant_id="76000000-0", workspace_id=workspace_id, api_root=API_ROOT),
        make_credentials(session, clock),
        session=session,
    )


# =============================================================================
# Credentials
# =============================================================================

class TestCredentialStore:
    """Credential cache and refresh behavior."""

    def test_caches_until_safety_buffer(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), token_response("tok-2"))
        store = make_credentials(fake_session, clock)

        first = asyncio.run(store.get_credential())
        clock.advance(minutes=50)
        second = asyncio.run(store.get_credential())

        assert first.token == second.token == "tok-1"
        assert store.refresh_count == 1

    def test_refreshes_inside_safety_buffer(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), token_response("tok-2"))
        store = make_credentials(fake_session, clock)

        asyncio.run(store.get_credential())
        clock.advance(minutes=56)
        refreshed = asyncio.run(store.get_credential())

        assert refreshed.token == "tok-2"
        assert store.refresh_count == 2

    def test_exchange_is_form_encoded(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response())
        store = make_credentials(fake_session, clock)

        asyncio.run(store.get_credential())

        call = fake_session.calls_to(TOKEN_URL)[0]
        assert call.kwargs["data"]["grant_type"] == "password"
        assert call.headers["Content-Type"] == "application/x-www-form-urlencoded"

    def test_concurrent_callers_share_one_refresh(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"))
        store = make_credentials(fake_session, clock)

        async def run():
            return await asyncio.gather(*(store.get_credential() for _ in range(5)))

        credentials = asyncio.run(run())

        assert {c.token for c in credentials} == {"tok-1"}
        assert len(fake_session.calls_to(TOKEN_URL)) == 1

    def test_failed_refresh_returns_unexpired_credential(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), FakeResponse(500, "down"))
        store = make_credentials(fake_session, clock)

        asyncio.run(store.get_credential())
        clock.advance(minutes=57)
        credential = asyncio.run(store.get_credential())

        assert credential.token == "tok-1"

    def test_failed_forced_refresh_raises(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), FakeResponse(500, "down"))
        store = make_credentials(fake_session, clock)

        asyncio.run(store.get_credential())
        with pytest.raises(AuthError):
            asyncio.run(store.get_credential(force_refresh=True))

    def test_failed_refresh_after_expiry_raises(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), FakeResponse(401, "bad secret"))
        store = make_credentials(fake_session, clock)

        asyncio.run(store.get_credential())
        clock.advance(hours=2)
        with pytest.raises(AuthError) as exc_info:
            asyncio.run(store.get_credential())
        assert exc_info.value.status_code == 401

    def test_missing_access_token(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, FakeResponse(200, {"token_type": "Bearer"}))
        store = make_credentials(fake_session, clock)

        with pytest.raises(AuthError, match="access_token"):
            asyncio.run(store.get_credential())

    def test_identity_endpoint_timeout(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, asyncio.TimeoutError())
        store = make_credentials(fake_session, clock)

        with pytest.raises(TransportError):
            asyncio.run(store.get_credential())

    def test_unconfigured_store_never_calls_out(self, fake_session, clock):
        config = AuthConfig(token_endpoint=TOKEN_URL, form_fields={"refresh_token": ""})
        store = CredentialStore(config, session=fake_session, clock=clock)

        assert store.is_configured is False
        with pytest.raises(AuthError, match="not configured"):
            asyncio.run(store.get_credential())
        assert fake_session.calls == []

    def test_invalidate_forces_reissue(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), token_response("tok-2"))
        store = make_credentials(fake_session, clock)

        asyncio.run(store.get_credential())
        store.invalidate()

        assert store.cached is None
        assert asyncio.run(store.get_credential()).token == "tok-2"


# =============================================================================
# Registry client
# =============================================================================

class TestHaulmerClient:
    """Registry fetches."""

    def test_resource_urls(self):
        config = HaulmerApiConfig(tenant_id="76000000-0", api_root=API_ROOT + "/")
        export = ResourceDescriptor(DocumentType.SALES, "202401")
        periods = ResourceDescriptor(DocumentType.PURCHASES, kind=ResourceKind.PERIODS)

        assert config.resource_url(export) == SALES_URL
        assert config.resource_url(periods) == PURCHASE_PERIODS_URL
        with pytest.raises(ValueError):
            config.resource_url(ResourceDescriptor(DocumentType.SALES))

    def test_download_sends_identity_headers(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"))
        fake_session.add("GET", SALES_URL, FakeResponse(200, "Folio;Monto Neto\n1;100\n"))
        client = haulmer_client(fake_session, clock)

        text = asyncio.run(client.download_export(DocumentType.SALES, "202401"))

        assert text.startswith("Folio")
        headers = fake_session.calls_to(SALES_URL)[0].headers
        assert headers["Authorization"] == "Bearer tok-1"
        assert headers["workspace"] == "ws-1"
        assert headers["resource"] == "ws-1"
        assert headers["Origin"] == "https://espacio.haulmer.com"

    def test_workspace_headers_omitted_when_unset(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response())
        fake_session.add("GET", SALES_URL, FakeResponse(200, "Folio\n1\n"))
        client = haulmer_client(fake_session, clock, workspace_id=None)

        asyncio.run(client.download_export(DocumentType.SALES, "202401"))

        assert "workspace" not in fake_session.calls_to(SALES_URL)[0].headers

    def test_unauthorized_retries_once_with_fresh_credential(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), token_response("tok-2"))
        fake_session.add("GET", SALES_URL, FakeResponse(401, "expired"), FakeResponse(200, "Folio\n1\n"))
        client = haulmer_client(fake_session, clock)

        asyncio.run(client.download_export(DocumentType.SALES, "202401"))

        calls = fake_session.calls_to(SALES_URL)
        assert [c.headers["Authorization"] for c in calls] == ["Bearer tok-1", "Bearer tok-2"]

    def test_second_unauthorized_propagates(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response("tok-1"), token_response("tok-2"))
        fake_session.add("GET", SALES_URL, FakeResponse(401, "nope"))
        client = haulmer_client(fake_session, clock)

        with pytest.raises(AuthError):
            asyncio.run(client.download_export(DocumentType.SALES, "202401"))
        assert len(fake_session.calls_to(SALES_URL)) == 2

    @pytest.mark.parametrize("response, error", [
        (FakeResponse(404, "missing"), NotFoundError),
        (FakeResponse(500, "boom"), TransportError),
        (FakeResponse(200, "   "), TransportError),
        (asyncio.TimeoutError(), TransportError),
    ])
    def test_failure_classification(self, fake_session, clock, response, error):
        fake_session.add("POST", TOKEN_URL, token_response())
        fake_session.add("GET", SALES_URL, response)
        client = haulmer_client(fake_session, clock)

        with pytest.raises(error):
            asyncio.run(client.download_export(DocumentType.SALES, "202401"))

    def test_list_periods(self, fake_session, clock):
        envelope = {
            "code": "OF-OK",
            "message": None,
            "details": [
                {"periodo": 202402, "recibidos": 3},
                {"periodo": 202401, "recibidos": 1},
                {"periodo": 202312, "recibidos": 0},
            ],
        }
        fake_session.add("POST", TOKEN_URL, token_response())
        fake_session.add("GET", PURCHASE_PERIODS_URL, FakeResponse(200, envelope))
        client = haulmer_client(fake_session, clock)

        assert asyncio.run(client.list_periods(DocumentType.PURCHASES)) == ["202401", "202402"]

    @pytest.mark.parametrize("response", [
        FakeResponse(404, "none"),
        FakeResponse(200, "not json"),
        FakeResponse(200, {"details": "oops"}),
        FakeResponse(503, "down"),
        FakeResponse(401, "expired"),
    ])
    def test_list_periods_degrades_to_empty(self, fake_session, clock, response):
        fake_session.add("POST", TOKEN_URL, token_response())
        fake_session.add("GET", PURCHASE_PERIODS_URL, response)
        client = haulmer_client(fake_session, clock)

        assert asyncio.run(client.list_periods(DocumentType.PURCHASES)) == []

    def test_document_type_parse(self):
        assert DocumentType.parse("ventas") is DocumentType.SALES
        assert DocumentType.parse(" Purchases ") is DocumentType.PURCHASES
        with pytest.raises(ValueError):
            DocumentType.parse("boletas")


# =============================================================================
# Calendar client
# =============================================================================

class TestGoogleCalendarClient:
    """Push-channel calls."""

    def test_watch_body_and_response(self, fake_session, clock):
        url = f"{CALENDAR_ROOT}/calendars/team%40example.cl/events/watch"
        fake_session.add("POST", TOKEN_URL, token_response("g-1"))
        fake_session.add("POST", url, FakeResponse(200, {"resourceId": "res-1", "expiration": "1710590400000"}))
        client = GoogleCalendarClient(make_credentials(fake_session, clock, "google"), CALENDAR_ROOT, fake_session)

        response = asyncio.run(client.watch("team@example.cl", "chan-1", "https://hooks.test/cb", 604800))

        assert response.resource_id == "res-1"
        assert response.expiration == datetime(2024, 3, 16, 12, 0, tzinfo=timezone.utc)
        body = fake_session.calls_to(url)[0].kwargs["json"]
        assert body == {
            "id": "chan-1",
            "type": "web_hook",
            "address": "https://hooks.test/cb",
            "params": {"ttl": "604800"},
        }

    def test_watch_without_resource_id(self, fake_session, clock):
        url = f"{CALENDAR_ROOT}/calendars/primary/events/watch"
        fake_session.add("POST", TOKEN_URL, token_response())
        fake_session.add("POST", url, FakeResponse(200, {"kind": "api#channel"}))
        client = GoogleCalendarClient(make_credentials(fake_session, clock), CALENDAR_ROOT, fake_session)

        response = asyncio.run(client.watch("primary", "chan-1", "https://hooks.test/cb", 60))

        assert response.resource_id is None
        assert response.expiration is None

    def test_stop_channel_not_found(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, token_response())
        fake_session.add("POST", f"{CALENDAR_ROOT}/channels/stop", FakeResponse(404, "Channel not found"))
        client = GoogleCalendarClient(make_credentials(fake_session, clock), CALENDAR_ROOT, fake_session)

        with pytest.raises(NotFoundError):
            asyncio.run(client.stop_channel("chan-1", "res-1"))

    @pytest.mark.parametrize("raw, expected", [
        (1710590400000, datetime(2024, 3, 16, 12, 0, tzinfo=timezone.utc)),
        ("1710590400000", datetime(2024, 3, 16, 12, 0, tzinfo=timezone.utc)),
        (None, None),
        ("", None),
        ("soon", None),
        (0, None),
    ])
    def test_parse_expiration(self, raw, expected):
        assert parse_expiration(raw) == expected
