"""
Exceptions raised by the library finder core.

Every error is recoverable by retrying the triggering action; none of them
should take the process down.
"""
from typing import Any, Dict, Optional


class LibraryFinderError(Exception):
    """Base exception for the library finder backend."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidInput(LibraryFinderError):
    """Malformed coordinate, radius, query or unknown place identity. No I/O was attempted."""


class SearchFailed(LibraryFinderError):
    """Place search or geocoding failed (network, provider status, malformed body)."""


class PersistenceReadFailed(LibraryFinderError):
    """The visited-flag store could not be read."""


class PersistenceWriteFailed(LibraryFinderError):
    """The visited-flag store rejected a write. The in-memory flag is already applied."""

    def __init__(self, place_id: str, visited: bool, message: Optional[str] = None):
        self.place_id = place_id
        self.visited = visited
        super().__init__(
            message or f"Failed to persist visited={visited} for {place_id}",
            {"place_id": place_id, "visited": visited},
        )
