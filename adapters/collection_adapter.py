"""Adapter for the backend collection APIs → internal entity records.

Backend endpoints handled (all paginated, read-only):
- GET /customers/        → {customers: [...]}        → list[Customer]
- GET /customers/{id}    → Customer
- GET /projects/         → [...]                     → list[Project]
- GET /tasks/            → [...]                     → list[Task]
- GET /invoices/         → {invoices: [...]}         → list[Invoice]
- GET /teams/members     → [...]                     → list[TeamMember]

Each collection names its own free-text parameter (``search`` or ``q``) and
its own response envelope; this module hides both.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from errors.exceptions import CollectionSearchError
from models.base import BackendRecord
from models.entity import Customer, EntityClass, Invoice, Project, Task, TeamMember
from services.backend_client import BackendClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSpec:
    """Where and how one collection is queried."""

    path: str
    search_param: str
    envelope_key: str | None
    model: type[BackendRecord]


COLLECTIONS: dict[EntityClass, CollectionSpec] = {
    EntityClass.CUSTOMER: CollectionSpec("/customers/", "search", "customers", Customer),
    EntityClass.PROJECT: CollectionSpec("/projects/", "q", None, Project),
    EntityClass.TASK: CollectionSpec("/tasks/", "search", None, Task),
    EntityClass.INVOICE: CollectionSpec("/invoices/", "search", "invoices", Invoice),
    EntityClass.TEAM: CollectionSpec("/teams/members", "search", None, TeamMember),
}


# ---------------------------------------------------------------------------
# Response → Internal Model conversions
# ---------------------------------------------------------------------------

def _unwrap_data(response: Any) -> Any:
    """Extract the ``data`` field from a ``{data: ...}`` wrapper.

    If the response is already raw data (no wrapper), return as-is.
    """
    if isinstance(response, dict) and "data" in response:
        return response["data"]
    return response


def _extract_items(collection: EntityClass, response: Any) -> list[dict[str, Any]]:
    spec = COLLECTIONS[collection]
    raw = _unwrap_data(response)
    if spec.envelope_key and isinstance(raw, dict):
        raw = raw.get(spec.envelope_key)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise CollectionSearchError(
            collection.value, f"expected a list, got {type(raw).__name__}"
        )
    return [item for item in raw if isinstance(item, dict)]


def parse_records(collection: EntityClass, response: Any) -> list[BackendRecord]:
    """Convert a raw collection response to typed records.

    Records without an ``id`` or that fail validation are skipped with a
    warning rather than failing the whole page.
    """
    model = COLLECTIONS[collection].model
    records: list[BackendRecord] = []
    for raw in _extract_items(collection, response):
        if raw.get("id") in (None, ""):
            logger.warning("Skipping %s record without id", collection.value)
            continue
        try:
            records.append(model.model_validate(raw))
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed %s record %s: %s",
                collection.value, raw.get("id"), exc.error_count(),
            )
    return records


# ---------------------------------------------------------------------------
# High-level API calls (through BackendClient)
# ---------------------------------------------------------------------------

async def search_collection(
    client: BackendClient,
    collection: EntityClass,
    term: str,
    limit: int,
) -> list[BackendRecord]:
    """Free-text search of one collection, first page only."""
    spec = COLLECTIONS[collection]
    resp = await client.get(
        spec.path,
        params={"page": 1, "size": limit, spec.search_param: term},
    )
    return parse_records(collection, resp)


async def list_collection(
    client: BackendClient,
    collection: EntityClass,
    *,
    page: int = 1,
    size: int | None = None,
    **filters: Any,
) -> list[BackendRecord]:
    """List one page of a collection filtered by fields such as ``customer_id``."""
    params: dict[str, Any] = {"page": page}
    if size is not None:
        params["size"] = size
    for key, value in filters.items():
        if value is None:
            continue
        # Boolean filters travel as lowercase strings ("invoiced=false")
        params[key] = str(value).lower() if isinstance(value, bool) else value
    resp = await client.get(COLLECTIONS[collection].path, params=params)
    return parse_records(collection, resp)


async def get_customer(client: BackendClient, customer_id: str) -> Customer | None:
    """Fetch one customer by id.

    GET /customers/{id}
    """
    resp = await client.get(f"/customers/{customer_id}")
    raw = _unwrap_data(resp)
    if not isinstance(raw, dict) or raw.get("id") in (None, ""):
        return None
    return Customer.model_validate(raw)
