"""External system connectors.

This package contains the pieces that talk to third-party systems:
- errors: Error taxonomy shared by every connector
- auth: Credential Manager (bearer credentials with expiry and refresh)
- http: Request helper with finite timeouts and status classification
- haulmer: Tax-document registry (export and period listing)
- google_calendar: Push-notification channels (watch / stop)

Callers depend on the error taxonomy, never on aiohttp exceptions.
"""

from connectors.errors import (
    SyncError,
    AuthError,
    NotFoundError,
    TransportError,
    ParseError,
    PersistenceError,
    ConfigurationError,
    SyncAlreadyRunningError,
    RunAlreadyFinishedError,
)

__all__ = [
    "SyncError",
    "AuthError",
    "NotFoundError",
    "TransportError",
    "ParseError",
    "PersistenceError",
    "ConfigurationError",
    "SyncAlreadyRunningError",
    "RunAlreadyFinishedError",
]
