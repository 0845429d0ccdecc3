"""Shared test fakes: an aiohttp-like session and a controllable clock."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from connectors.auth import CredentialStore, AuthConfig


TOKEN_URL = "https://identity.test/token"


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse used as a context manager."""

    def __init__(self, status: int = 200, body: Any = "", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self._text = body if isinstance(body, str) else json.dumps(body)
        self.headers = headers or {}

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc) -> bool:
        return False


@dataclass
class RecordedCall:
    method: str
    url: str
    kwargs: Dict[str, Any] = field(default_factory=dict)

    @property
    def headers(self) -> Dict[str, str]:
        return self.kwargs.get("headers") or {}


class FakeSession:
    """Routes (method, url) to queued responses.

    The last queued response repeats; an exception instance is raised
    instead of returned.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[RecordedCall] = []

    def add(self, method: str, url: str, *responses: Any) -> "FakeSession":
        self.routes.setdefault((method, url), []).extend(responses)
        return self

    def calls_to(self, url: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.url == url]

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(RecordedCall(method, url, kwargs))
        queue = self.routes.get((method, url))
        if not queue:
            return FakeResponse(404, "no route")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response


class FakeClock:
    """Callable clock returning an aware UTC time that tests advance by hand."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def token_response(token: str = "tok-1", expires_in: int = 3600) -> FakeResponse:
    return FakeResponse(200, {"access_token": token, "expires_in": expires_in, "token_type": "Bearer"})


def make_credentials(session: FakeSession, clock: FakeClock, name: str = "haulmer") -> CredentialStore:
    config = AuthConfig(
        token_endpoint=TOKEN_URL,
        form_fields={"grant_type": "password", "username": "ops@example.cl", "password": "secret"},
        name=name,
    )
    return CredentialStore(config, session=session, clock=clock)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
