"""Runtime configuration.

Settings are read from the environment. A `.env` file at the repository root
is loaded first if it exists, so local development needs no exported
variables.

Environment variables:
- HAULMER_RUT: Tenant identifier (required)
- HAULMER_EMAIL / HAULMER_PASSWORD: Identity endpoint secret pair
- HAULMER_WORKSPACE_ID: Workspace header forwarded to the registry
- HAULMER_TOKEN_URL: Identity endpoint for the registry
- HAULMER_API_ROOT: Registry resource root
- GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET / GOOGLE_REFRESH_TOKEN: Calendar credentials
- PUBLIC_URL: Base address the calendar provider calls back
- SYNC_CRON: ';'-separated cron expressions for pull-sync
- GOOGLE_CALENDAR_IDS: ';'-separated calendars that get push channels
- SYNC_TIMEZONE: Zone the cron expressions are evaluated in
- SYNC_LOOKBACK_MONTHS: Previous periods included in scheduled runs
- SYNC_DB_PATH: SQLite database for records, runs and channels
- LOG_LEVEL / LOG_JSON: Logging configuration
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from connectors.errors import ConfigurationError


ENV_PATH = Path(__file__).resolve().parents[1] / ".env"

DEFAULT_HAULMER_API_ROOT = "https://api-frontend.haulmer.com/v3/dte/core/registro"
DEFAULT_HAULMER_TOKEN_URL = "https://api-frontend.haulmer.com/v3/auth/token"
DEFAULT_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_CALENDAR_API_ROOT = "https://www.googleapis.com/calendar/v3"
DEFAULT_SYNC_CRON = "0 6 * * *"
DEFAULT_TIMEZONE = "America/Santiago"
DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "sync_engine.db"

WEBHOOK_PATH = "/api/calendar/webhook"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _split_list(value: str) -> List[str]:
    return [expr.strip() for expr in value.split(";") if expr.strip()]


@dataclass
class Settings:
    """Configuration consumed by the sync engine.

    Attributes:
        tenant_id: Tenant RUT used in registry paths
        haulmer_email: Identity endpoint user
        haulmer_password: Identity endpoint secret
        workspace_id: Optional workspace/resource header value
        public_url: Base address for push notification callbacks
        cron_expressions: Pull-sync schedule
        timezone: Zone the schedule is evaluated in
    """
    tenant_id: str
    haulmer_email: Optional[str] = None
    haulmer_password: Optional[str] = None
    workspace_id: Optional[str] = None
    haulmer_token_url: str = DEFAULT_HAULMER_TOKEN_URL
    haulmer_api_root: str = DEFAULT_HAULMER_API_ROOT
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_token_url: str = DEFAULT_GOOGLE_TOKEN_URL
    calendar_api_root: str = DEFAULT_CALENDAR_API_ROOT
    public_url: str = "http://localhost:5000"
    cron_expressions: List[str] = field(default_factory=lambda: [DEFAULT_SYNC_CRON])
    calendar_ids: List[str] = field(default_factory=list)
    timezone: str = DEFAULT_TIMEZONE
    lookback_months: int = 1
    db_path: Path = DEFAULT_DB_PATH
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def callback_address(self) -> str:
        """Webhook address registered with the calendar provider."""
        return f"{self.public_url.rstrip('/')}{WEBHOOK_PATH}"

    @property
    def haulmer_configured(self) -> bool:
        return bool(self.haulmer_email and self.haulmer_password)

    @property
    def google_configured(self) -> bool:
        return bool(
            self.google_client_id and self.google_client_secret and self.google_refresh_token
        )

    @classmethod
    def from_env(cls, env_path: Optional[Path] = ENV_PATH) -> "Settings":
        """Build settings from the environment.

        Raises:
            ConfigurationError: If the tenant identifier is missing or a
                numeric setting is malformed
        """
        if env_path is not None and env_path.exists():
            load_dotenv(env_path)

        tenant_id = os.getenv("HAULMER_RUT")
        if not tenant_id:
            raise ConfigurationError(
                "HAULMER_RUT environment variable not set. "
                "Set to the tenant RUT whose documents are synchronized (e.g., '76123456-7')"
            )

        lookback_raw = os.getenv("SYNC_LOOKBACK_MONTHS", "1")
        try:
            lookback_months = int(lookback_raw)
        except ValueError:
            raise ConfigurationError(
                f"SYNC_LOOKBACK_MONTHS must be an integer, got {lookback_raw!r}"
            ) from None
        if lookback_months < 0:
            raise ConfigurationError("SYNC_LOOKBACK_MONTHS must not be negative")

        return cls(
            tenant_id=tenant_id,
            haulmer_email=os.getenv("HAULMER_EMAIL") or None,
            haulmer_password=os.getenv("HAULMER_PASSWORD") or None,
            workspace_id=os.getenv("HAULMER_WORKSPACE_ID") or None,
            haulmer_token_url=os.getenv("HAULMER_TOKEN_URL", DEFAULT_HAULMER_TOKEN_URL),
            haulmer_api_root=os.getenv("HAULMER_API_ROOT", DEFAULT_HAULMER_API_ROOT),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
            google_refresh_token=os.getenv("GOOGLE_REFRESH_TOKEN") or None,
            google_token_url=os.getenv("GOOGLE_TOKEN_URL", DEFAULT_GOOGLE_TOKEN_URL),
            calendar_api_root=os.getenv("CALENDAR_API_ROOT", DEFAULT_CALENDAR_API_ROOT),
            public_url=os.getenv("PUBLIC_URL", "http://localhost:5000"),
            cron_expressions=_split_list(os.getenv("SYNC_CRON", DEFAULT_SYNC_CRON)),
            calendar_ids=_split_list(os.getenv("GOOGLE_CALENDAR_IDS", "")),
            timezone=os.getenv("SYNC_TIMEZONE", DEFAULT_TIMEZONE),
            lookback_months=lookback_months,
            db_path=Path(os.getenv("SYNC_DB_PATH", str(DEFAULT_DB_PATH))),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_flag("LOG_JSON"),
        )
