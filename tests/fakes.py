"""In-memory stand-in for the project backend used across the test-suite.

Implements the single method the collection adapter calls,
``async get(path, params)``, over plain dict records: free-text search
(``search`` / ``q``), equality filters, pagination and the per-collection
response envelopes.  Every call is recorded for assertions.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from config.settings import Settings
from errors.exceptions import BackendClientError
from services.collection_search import CollectionSearchClient
from services.context_engine import ContextEngine
from services.context_resolver import ContextResolver
from services.result_cache import ResultCache
from services.smart_defaults import SmartDefaultsEngine

_TEXT_FIELDS = (
    "name", "title", "display_name", "company_name", "full_name", "username", "invoice_number",
)

_ENVELOPES = {
    "/customers/": "customers",
    "/invoices/": "invoices",
}


def _matches_term(record: dict, term: str | None) -> bool:
    if not term:
        return True
    needle = term.lower()
    return any(needle in str(record.get(f) or "").lower() for f in _TEXT_FIELDS)


def _matches_filters(record: dict, filters: dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key == "invoiced":
            invoiced = bool((record.get("metadata") or {}).get("invoiced"))
            if invoiced != (str(value).lower() == "true"):
                return False
        elif str(record.get(key, "")).lower() != str(value).lower():
            return False
    return True


class FakeBackend:
    def __init__(
        self,
        *,
        customers: list[dict] | None = None,
        projects: list[dict] | None = None,
        tasks: list[dict] | None = None,
        invoices: list[dict] | None = None,
        team: list[dict] | None = None,
    ) -> None:
        self.collections: dict[str, list[dict]] = {
            "/customers/": list(customers or []),
            "/projects/": list(projects or []),
            "/tasks/": list(tasks or []),
            "/invoices/": list(invoices or []),
            "/teams/members": list(team or []),
        }
        self.calls: list[tuple[str, dict[str, Any]]] = []
        # path -> exception raised for every call on that path
        self.failures: dict[str, Exception] = {}
        # search term -> exception raised for that term only
        self.term_failures: dict[str, Exception] = {}

    def calls_to(self, path: str) -> list[dict[str, Any]]:
        return [params for p, params in self.calls if p == path]

    def search_calls(self) -> list[tuple[str, str]]:
        """(path, term) for every free-text search issued."""
        return [
            (p, params.get("search") or params.get("q"))
            for p, params in self.calls
            if "search" in params or "q" in params
        ]

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        params = dict(params or {})
        self.calls.append((path, dict(params)))

        if path in self.failures:
            raise self.failures[path]

        if path.startswith("/customers/") and path != "/customers/":
            customer_id = path.rstrip("/").rsplit("/", 1)[-1]
            for customer in self.collections["/customers/"]:
                if str(customer["id"]) == customer_id:
                    return {"data": customer}
            raise BackendClientError(404, "Not Found", path)

        page = int(params.pop("page", 1))
        size = params.pop("size", None)
        term = params.pop("search", None) or params.pop("q", None)
        if term in self.term_failures:
            raise self.term_failures[term]

        matched = [
            r for r in self.collections[path]
            if _matches_term(r, term) and _matches_filters(r, params)
        ]
        if size:
            matched = matched[(page - 1) * size: page * size]
        elif page > 1:
            matched = []

        envelope = _ENVELOPES.get(path)
        return {envelope: matched} if envelope else matched


# ── Canned data and wiring ───────────────────────────────────

TODAY = date(2026, 3, 18)  # a Wednesday


def acme_records() -> dict[str, list[dict]]:
    """One customer with one completed, uninvoiced 5h task on a completed $40/h project."""
    return {
        "customers": [
            {
                "id": "c-1",
                "display_name": "Acme Corp",
                "company_name": "Acme Corp",
                "email": "billing@acme.test",
                "payment_terms": "NET 30",
                "currency": "usd",
            },
        ],
        "projects": [
            {
                "id": "p-1",
                "name": "Website Redesign",
                "status": "completed",
                "priority": "medium",
                "hourly_rate": 40,
                "customer_id": "c-1",
            },
        ],
        "tasks": [
            {
                "id": "t-1",
                "title": "Build landing page",
                "status": "completed",
                "actual_hours": 5,
                "project_id": "p-1",
                "customer_id": "c-1",
                "task_type": "development",
                "metadata": {},
            },
        ],
        "invoices": [],
        "team": [
            {"id": "u-1", "username": "john", "full_name": "John Smith", "role": "Developer"},
        ],
    }


def sparse_acme_records() -> dict[str, list[dict]]:
    """:func:`acme_records` with the optional fields a real backend leaves ``null``."""
    records = acme_records()
    records["customers"][0].update(company_name=None, full_name=None, email=None, due_amount=None)
    records["projects"][0].update(priority=None, budget=None, owner_id=None)
    records["tasks"][0].update(priority=None, estimated_hours=None, metadata=None)
    records["team"][0].update(email=None, current_workload_hours=None)
    records["invoices"] = [
        {
            "id": "i-1",
            "invoice_number": "INV-2026-0004",
            "status": "paid",
            "customer_id": "c-1",
            "total_amount": 120000,
            "balance_due": None,
            "days_overdue": None,
        },
    ]
    return records


def build_engine(backend: FakeBackend, settings: Settings | None = None) -> ContextEngine:
    settings = settings or Settings()
    client = CollectionSearchClient(backend)
    resolver = ContextResolver(client, ResultCache())
    defaults = SmartDefaultsEngine(client, today=lambda: TODAY, settings=settings)
    return ContextEngine(resolver, defaults, settings=settings)
