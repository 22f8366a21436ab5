"""Domain-specific exceptions for the context resolution engine.

These exceptions let the search boundary and the resolver distinguish between
failure modes.  None of them is user-fatal: the search client turns them into
empty outcomes and the engine into a degraded, low-confidence context.
"""

from __future__ import annotations


class BackendClientError(Exception):
    """Raised when the project backend returns a non-2xx response."""

    def __init__(self, status_code: int, detail: str, url: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        self.url = url
        super().__init__(f"Backend API {status_code}: {detail} ({url})")


class CircuitOpenError(Exception):
    """Raised when the circuit breaker is open (backend deemed unavailable)."""

    def __init__(self) -> None:
        super().__init__("Circuit breaker open — project backend unavailable")


class CollectionSearchError(Exception):
    """A collection query returned a payload that cannot be read.

    Raised inside the search client and converted into a failed
    ``SearchOutcome`` at its boundary; callers never see it.
    """

    def __init__(self, collection: str, message: str, term: str = "") -> None:
        self.collection = collection
        self.term = term
        super().__init__(f"Search '{collection}' failed for {term!r}: {message}")
