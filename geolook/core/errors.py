# geolook/core/errors.py
from datetime import datetime
from typing import Optional


class GeolookError(Exception):
    """Base class for errors raised by the monitoring core."""


class InvalidInputError(GeolookError):
    """Caller supplied something the core cannot work with.

    ``field`` names the offending input so the API layer can point the user
    at it (e.g. ``interval_minutes`` or ``sensor_types``).
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"error": self.message, "field": self.field}


class InsufficientDataError(GeolookError):
    """Not enough points (or no variance) for a statistic."""


class ConcurrencyConflictError(GeolookError):
    """Rule cooldown state changed underneath an evaluation.

    When the store managed to read the row back, ``reloaded`` is True and
    ``current`` holds the lastTriggered another writer left there.
    """

    def __init__(self, message: str, current: Optional[datetime] = None, reloaded: bool = False):
        super().__init__(message)
        self.current = current
        self.reloaded = reloaded


class StoreUnavailableError(GeolookError):
    """A backing store could not answer a query."""
