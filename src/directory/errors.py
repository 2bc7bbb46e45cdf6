"""
Error taxonomy for the store directory.

Gateways raise these; the DirectoryController catches them at each
operation boundary and turns them into user-facing notifications.
"""

from typing import Optional


class DirectoryError(Exception):
    """Base class for every recoverable store-directory failure."""

    default_message = "Unexpected store directory error"

    def __init__(self, message: Optional[str] = None):
        self.message = (message or "").strip() or self.default_message
        super().__init__(self.message)


class ValidationError(DirectoryError):
    """Bad local input (e.g. a phone number that is not an integer). No remote call is made."""

    default_message = "Invalid store data"


class NotFoundError(ValidationError):
    """The addressed store id is not present in the local directory."""

    default_message = "Store not found"


class FormatError(DirectoryError):
    """Malformed import text. The import is aborted before any gateway call."""

    default_message = "Failed to parse CSV file"


class RemoteError(DirectoryError):
    """The record store reported a structured failure."""

    default_message = "Record store request failed"


class GatewayConnectionError(DirectoryError):
    """Transport-level failure reaching a gateway (network, timeout, unreadable response)."""

    default_message = "Failed to connect to calling service"


class CallError(DirectoryError):
    """The call-dispatch action explicitly reported failure."""

    default_message = "Failed to initiate call"


class LoadError(DirectoryError):
    """Full reload from the record store failed; local state was kept."""

    default_message = "Failed to load stores from database"
