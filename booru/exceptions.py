"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (missing API credentials, infrastructure misconfiguration, etc.).
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients.  The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.
- ``SyncAlreadyRunningError``: a start request was rejected because another
  sync holds the sync state; mapped to 409.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``booru/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class SyncAlreadyRunningError(Exception):
    """Raised when a sync is started while another one is running."""

    def __init__(self) -> None:
        super().__init__(
            "A sync operation is already in progress. "
            "Please wait for it to complete or cancel it first."
        )


class InvalidLookupValueError(ValueError):
    """Raised when a tag category or group source type is outside its enumeration."""
