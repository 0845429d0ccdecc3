"""Google Calendar push-channel client.

Only the two calls the channel lifecycle needs:
- watch: create a push subscription for a calendar's events
- stop_channel: cancel a subscription
"""

import json
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from connectors.auth import Credential, CredentialStore
from connectors.errors import AuthError, TransportError
from connectors.http import DEFAULT_TIMEOUT_SECONDS, HttpResponse, raise_for_status, send_request, session_scope
from core.config import DEFAULT_CALENDAR_API_ROOT
from core.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WatchResponse:
    """Provider acknowledgement of a watch request."""
    resource_id: Optional[str]
    expiration: Optional[datetime]


def parse_expiration(value: Any) -> Optional[datetime]:
    """Parse a millisecond epoch (number or numeric string) into an aware datetime."""
    if value is None or value == "":
        return None
    try:
        millis = float(value)
    except (TypeError, ValueError):
        return None
    if millis != millis or millis <= 0:
        return None
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class GoogleCalendarClient:
    """Authenticated client for calendar push channels."""

    def __init__(
        self,
        credentials: CredentialStore,
        api_root: str = DEFAULT_CALENDAR_API_ROOT,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.credentials = credentials
        self.api_root = api_root.rstrip("/")
        self.session = session
        self.timeout_seconds = timeout_seconds

    async def _post(self, url: str, body: Dict[str, Any]) -> HttpResponse:
        """POST with one forced credential refresh after a 401."""

        async def attempt(credential: Credential) -> HttpResponse:
            async with session_scope(self.session) as session:
                response = await send_request(
                    session,
                    "POST",
                    url,
                    headers={
                        "Authorization": credential.authorization_header,
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                    },
                    json_body=body,
                    timeout_seconds=self.timeout_seconds,
                )
            raise_for_status(response, url)
            return response

        return await self._with_refresh(attempt)

    async def _with_refresh(
        self,
        call: Callable[[Credential], Awaitable[HttpResponse]],
    ) -> HttpResponse:
        credential = await self.credentials.get_credential()
        try:
            return await call(credential)
        except AuthError:
            logger.warning("google_calendar_unauthorized_refreshing")
            self.credentials.invalidate()
            credential = await self.credentials.get_credential(force_refresh=True)
            return await call(credential)

    async def watch(
        self,
        calendar_id: str,
        channel_id: str,
        address: str,
        ttl_seconds: int,
    ) -> WatchResponse:
        """Register a web_hook channel for a calendar's events.

        Args:
            calendar_id: Provider calendar id (e.g., "primary" or an email)
            channel_id: Locally generated unique channel id
            address: Callback address for notifications
            ttl_seconds: Requested channel lifetime

        Returns:
            WatchResponse with resourceId and expiration (either may be missing)
        """
        encoded = urllib.parse.quote(calendar_id, safe="")
        url = f"{self.api_root}/calendars/{encoded}/events/watch"
        response = await self._post(
            url,
            {
                "id": channel_id,
                "type": "web_hook",
                "address": address,
                "params": {"ttl": str(ttl_seconds)},
            },
        )
        try:
            data = json.loads(response.text) if response.text else {}
        except json.JSONDecodeError:
            raise TransportError(f"Watch response is not JSON: {url}", response.status, response.text) from None
        if not isinstance(data, dict):
            data = {}

        return WatchResponse(
            resource_id=data.get("resourceId") or None,
            expiration=parse_expiration(data.get("expiration")),
        )

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        """Cancel a push channel.

        Raises:
            NotFoundError: The provider no longer knows the channel
        """
        await self._post(
            f"{self.api_root}/channels/stop",
            {"id": channel_id, "resourceId": resource_id},
        )
