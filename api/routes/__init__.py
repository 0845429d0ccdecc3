"""API Routes Package."""

from api.routes import calendar, health, sync

__all__ = [
    "calendar",
    "health",
    "sync",
]
