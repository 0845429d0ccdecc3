"""Error taxonomy for external synchronization.

Every failure raised by a connector, the normalizer or a storage adapter is
one of these. Callers decide policy per class:

- AuthError: credential rejected or expired. Triggers one forced refresh and
  retry, then fails the unit.
- NotFoundError: the upstream has no data for the unit. Treated as an empty
  result, never as a failure.
- TransportError: network failure, timeout or unexpected status. Fails the
  unit; retried only on the next scheduled trigger.
- ParseError: row or payload could not be interpreted. Downgraded to a
  skipped row.
- PersistenceError: record store failure. Downgraded to a skipped row.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for synchronization errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AuthError(SyncError):
    """Credential rejected by the identity endpoint or the upstream (401)."""
    pass


class NotFoundError(SyncError):
    """Resource not found (404)."""
    pass


class TransportError(SyncError):
    """Network failure, timeout or non-2xx response other than 401/404."""
    pass


class ParseError(SyncError):
    """Payload or row could not be parsed."""
    pass


class PersistenceError(SyncError):
    """Record store read or write failed."""
    pass


class ConfigurationError(ValueError):
    """Required configuration is missing or invalid."""
    pass


class SyncAlreadyRunningError(Exception):
    """A run over the same scope is still in flight."""
    def __init__(self, scope_key: str, run_id: Optional[str] = None):
        super().__init__(f"Sync already in progress for scope {scope_key}")
        self.scope_key = scope_key
        self.run_id = run_id


class RunAlreadyFinishedError(Exception):
    """finish() was called on a run that already reached a terminal status."""
    def __init__(self, run_id: str):
        super().__init__(f"Run {run_id} is already finished")
        self.run_id = run_id


def is_not_found(error: BaseException) -> bool:
    """Check whether an error means the remote object no longer exists.

    Providers report absence either with a 404 or only in the message text.
    """
    if isinstance(error, NotFoundError):
        return True
    if isinstance(error, SyncError) and error.status_code == 404:
        return True
    return "not found" in str(error).lower()
