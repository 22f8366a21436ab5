"""Collection search client — one query per (collection, term), never raises.

Every call returns a :class:`SearchOutcome`.  Backend, transport and payload
failures are logged here and reported as a failed outcome with empty items,
so a single bad term cannot abort a resolution.  Callers decide whether a
failure matters; the resolver simply merges whatever succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from adapters import collection_adapter
from errors.exceptions import BackendClientError, CircuitOpenError, CollectionSearchError
from models.base import BackendRecord
from models.entity import Customer, EntityClass
from services.backend_client import BackendClient, get_backend_client

logger = logging.getLogger(__name__)


class SearchErrorKind(str, Enum):
    """Why a collection call produced no data."""

    BACKEND_ERROR = "backend_error"  # non-2xx response
    UNAVAILABLE = "unavailable"  # circuit breaker open
    TRANSPORT = "transport"  # network / timeout
    MALFORMED = "malformed"  # unreadable payload
    UNEXPECTED = "unexpected"


@dataclass
class SearchOutcome:
    """Result of one collection call: items, or an explicit error kind."""

    collection: EntityClass
    term: str = ""
    items: list[BackendRecord] = field(default_factory=list)
    error: SearchErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _classify_error(exc: Exception) -> SearchErrorKind:
    if isinstance(exc, CircuitOpenError):
        return SearchErrorKind.UNAVAILABLE
    if isinstance(exc, BackendClientError):
        return SearchErrorKind.BACKEND_ERROR
    if isinstance(exc, httpx.TransportError):
        return SearchErrorKind.TRANSPORT
    if isinstance(exc, CollectionSearchError):
        return SearchErrorKind.MALFORMED
    return SearchErrorKind.UNEXPECTED


class CollectionSearchClient:
    """Thin query interface over the five backend collections."""

    def __init__(self, backend: BackendClient | None = None) -> None:
        self._backend = backend

    @property
    def backend(self) -> BackendClient:
        if self._backend is None:
            self._backend = get_backend_client()
        return self._backend

    async def search(self, collection: EntityClass, term: str, limit: int) -> SearchOutcome:
        """Free-text search; backend ordering (relevance) is preserved."""
        try:
            items = await collection_adapter.search_collection(
                self.backend, collection, term, limit
            )
        except Exception as exc:
            kind = _classify_error(exc)
            logger.warning(
                "Search %s for term %r failed (%s): %s",
                collection.value, term, kind.value, exc,
            )
            return SearchOutcome(collection=collection, term=term, error=kind)
        return SearchOutcome(collection=collection, term=term, items=items)

    async def list_related(
        self,
        collection: EntityClass,
        *,
        page: int = 1,
        size: int | None = None,
        **filters: Any,
    ) -> SearchOutcome:
        """List records related by a filter such as ``customer_id`` or ``project_id``."""
        label = ",".join(f"{k}={v}" for k, v in filters.items() if v is not None)
        try:
            items = await collection_adapter.list_collection(
                self.backend, collection, page=page, size=size, **filters
            )
        except Exception as exc:
            kind = _classify_error(exc)
            logger.warning(
                "Listing %s (%s) failed (%s): %s",
                collection.value, label, kind.value, exc,
            )
            return SearchOutcome(collection=collection, term=label, error=kind)
        return SearchOutcome(collection=collection, term=label, items=items)

    async def get_customer(self, customer_id: str) -> Customer | None:
        """Fetch one customer; ``None`` when missing or on failure."""
        try:
            return await collection_adapter.get_customer(self.backend, customer_id)
        except Exception as exc:
            logger.warning(
                "Fetching customer %s failed (%s): %s",
                customer_id, _classify_error(exc).value, exc,
            )
            return None
