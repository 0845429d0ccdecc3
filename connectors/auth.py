"""Credential Manager.

Obtains bearer credentials from an OAuth-style identity endpoint, caches
them, and refreshes them before they expire.

Each upstream gets its own `CredentialStore`, passed into the clients that
need it at construction time:

    config = haulmer_auth_config(email="ops@example.cl", password="secret")
    credentials = CredentialStore(config)
    credential = await credentials.get_credential()
    headers = {"Authorization": credential.authorization_header}
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import aiohttp

from connectors.errors import AuthError, TransportError
from connectors.http import DEFAULT_TIMEOUT_SECONDS, send_request, session_scope
from core.config import DEFAULT_GOOGLE_TOKEN_URL, DEFAULT_HAULMER_TOKEN_URL
from core.observability.logging import get_logger

logger = get_logger(__name__)


DEFAULT_SAFETY_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN_SECONDS = 3600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthConfig:
    """Configuration for an identity exchange.

    Attributes:
        token_endpoint: Identity endpoint URL
        form_fields: Form-encoded body of the exchange (grant type and secrets)
        name: Label used in logs
        timeout_seconds: Total timeout for the exchange
    """
    token_endpoint: str
    form_fields: Dict[str, str] = field(default_factory=dict)
    name: str = "identity"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        """True when every secret field has a value."""
        return bool(self.form_fields) and all(self.form_fields.values())


def haulmer_auth_config(
    email: Optional[str],
    password: Optional[str],
    token_endpoint: str = DEFAULT_HAULMER_TOKEN_URL,
) -> AuthConfig:
    """Password exchange for the document registry."""
    return AuthConfig(
        token_endpoint=token_endpoint,
        form_fields={
            "grant_type": "password",
            "username": email or "",
            "password": password or "",
        },
        name="haulmer",
    )


def google_auth_config(
    client_id: Optional[str],
    client_secret: Optional[str],
    refresh_token: Optional[str],
    token_endpoint: str = DEFAULT_GOOGLE_TOKEN_URL,
) -> AuthConfig:
    """Refresh-token exchange for the calendar provider."""
    return AuthConfig(
        token_endpoint=token_endpoint,
        form_fields={
            "grant_type": "refresh_token",
            "client_id": client_id or "",
            "client_secret": client_secret or "",
            "refresh_token": refresh_token or "",
        },
        name="google_calendar",
    )


@dataclass(frozen=True)
class Credential:
    """Bearer credential with expiration tracking."""
    token: str
    issued_at: datetime
    expires_at: datetime
    token_type: str = "Bearer"

    def is_fresh(self, now: datetime, buffer: timedelta = DEFAULT_SAFETY_BUFFER) -> bool:
        """Usable without refresh: now < expires_at - buffer."""
        return now < self.expires_at - buffer

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def authorization_header(self) -> str:
        """Get the Authorization header value."""
        return f"{self.token_type} {self.token}"


class CredentialStore:
    """Caches one credential for one identity endpoint.

    Handles:
    - Proactive refresh inside a safety buffer before expiry
    - Serialized refresh so concurrent callers share one exchange
    - Forced re-issue after the upstream rejects the credential
    """

    def __init__(
        self,
        config: AuthConfig,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], datetime] = utc_now,
        safety_buffer: timedelta = DEFAULT_SAFETY_BUFFER,
    ):
        """Initialize the store.

        Args:
            config: Identity exchange configuration
            session: Optional shared aiohttp session
            clock: Returns the current aware UTC time
            safety_buffer: Refresh this long before expiry
        """
        self.config = config
        self.session = session
        self.clock = clock
        self.safety_buffer = safety_buffer
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    @property
    def cached(self) -> Optional[Credential]:
        return self._credential

    def invalidate(self) -> None:
        """Discard the cached credential, forcing re-issue on next use."""
        if self._credential is not None:
            logger.info("credential_invalidated", extra_fields={"identity": self.config.name})
        self._credential = None

    async def get_credential(self, force_refresh: bool = False) -> Credential:
        """Return a valid credential, refreshing when needed.

        Args:
            force_refresh: Skip the cache (used after a 401)

        Returns:
            Credential valid for at least the safety buffer

        Raises:
            AuthError: The identity endpoint rejected the secret
            TransportError: The identity endpoint could not be reached
        """
        if not force_refresh:
            cached = self._credential
            if cached is not None and cached.is_fresh(self.clock(), self.safety_buffer):
                return cached

        stale = self._credential
        async with self._lock:
            # Another caller may have refreshed while we waited
            current = self._credential
            if current is not None and current is not stale:
                return current
            if not force_refresh and current is not None and current.is_fresh(self.clock(), self.safety_buffer):
                return current

            try:
                return await self._refresh()
            except (AuthError, TransportError) as e:
                if (
                    not force_refresh
                    and current is not None
                    and not current.is_expired(self.clock())
                ):
                    logger.warning(
                        "credential_refresh_failed_using_cached",
                        extra_fields={
                            "identity": self.config.name,
                            "error": str(e),
                            "expires_at": current.expires_at.isoformat(),
                        },
                    )
                    return current
                raise

    async def _refresh(self) -> Credential:
        """Exchange the configured secret for a new credential."""
        if not self.config.is_configured:
            raise AuthError(f"Credentials for {self.config.name} are not configured")

        logger.info("credential_refresh_start", extra_fields={"identity": self.config.name})

        async with session_scope(self.session) as session:
            response = await send_request(
                session,
                "POST",
                self.config.token_endpoint,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                data=self.config.form_fields,
                timeout_seconds=self.config.timeout_seconds,
            )

        if not response.ok:
            raise AuthError(
                f"Token request failed: {response.status}",
                response.status,
                response.text,
            )

        try:
            payload = json.loads(response.text) if response.text else {}
        except json.JSONDecodeError:
            raise AuthError(
                "Token response is not JSON",
                response.status,
                response.text,
            ) from None

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthError(
                "Token response missing access_token",
                response.status,
                response.text,
            )

        try:
            expires_in = int(payload.get("expires_in", DEFAULT_EXPIRES_IN_SECONDS))
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN_SECONDS

        issued_at = self.clock()
        credential = Credential(
            token=token,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=expires_in),
            token_type=payload.get("token_type") or "Bearer",
        )
        self._credential = credential
        self.refresh_count += 1

        logger.info(
            "credential_refresh_success",
            extra_fields={
                "identity": self.config.name,
                "expires_at": credential.expires_at.isoformat(),
            },
        )
        return credential
