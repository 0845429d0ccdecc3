"""Shared HTTP plumbing for connectors.

Every outbound call goes through `send_request`, which applies a finite
timeout and turns transport failures into `TransportError`.
`raise_for_status` maps response codes onto the error taxonomy.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from connectors.errors import AuthError, NotFoundError, TransportError


DEFAULT_TIMEOUT_SECONDS = 30


@dataclass
class HttpResponse:
    """Buffered response body with its status."""
    status: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@asynccontextmanager
async def session_scope(session: Optional[aiohttp.ClientSession] = None) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield the injected session, or a short-lived one closed on exit."""
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession() as owned:
        yield owned


async def send_request(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, str]] = None,
    data: Optional[Dict[str, str]] = None,
    json_body: Optional[Dict[str, Any]] = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> HttpResponse:
    """Send a request and buffer the body.

    Args:
        session: aiohttp session
        method: HTTP method
        url: Absolute URL
        headers: Request headers
        params: Query parameters
        data: Form fields (sent form-encoded)
        json_body: JSON body
        timeout_seconds: Total timeout for the call

    Returns:
        HttpResponse with status and body text

    Raises:
        TransportError: On timeout or connection failure
    """
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with session.request(
            method,
            url,
            headers=headers,
            params=params,
            data=data,
            json=json_body,
            timeout=timeout,
        ) as response:
            text = await response.text()
            return HttpResponse(
                status=response.status,
                text=text,
                headers=dict(getattr(response, "headers", None) or {}),
            )
    except asyncio.TimeoutError:
        raise TransportError(f"Request timed out after {timeout_seconds}s: {method} {url}") from None
    except aiohttp.ClientError as e:
        raise TransportError(f"Request failed: {method} {url}: {type(e).__name__}: {e}") from e


def raise_for_status(response: HttpResponse, url: str) -> None:
    """Classify a non-2xx response.

    Raises:
        AuthError: 401
        NotFoundError: 404
        TransportError: Any other non-2xx status
    """
    if response.ok:
        return
    if response.status == 401:
        raise AuthError(
            f"Authentication failed for {url}",
            response.status,
            response.text,
        )
    if response.status == 404:
        raise NotFoundError(
            f"Resource not found: {url}",
            response.status,
            response.text,
        )
    raise TransportError(
        f"HTTP {response.status} from {url}",
        response.status,
        response.text,
    )
