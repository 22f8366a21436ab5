"""Tests for the context resolver — search order, caps, enrichment, caching, degrade."""

import asyncio
from unittest.mock import MagicMock

import httpx
import pytest

from models.entity import ContextQuery, EntityClass, EntityTypeFilter, Intent
from services.collection_search import CollectionSearchClient
from services.context_resolver import (
    DEGRADED_SUGGESTION,
    MAX_TERMS_PER_CLASS,
    ContextResolver,
    search_order,
)
from services.result_cache import ResultCache
from tests.fakes import FakeBackend, acme_records


def _resolver(backend: FakeBackend) -> ContextResolver:
    return ContextResolver(CollectionSearchClient(backend), ResultCache())


def _searched_paths(backend: FakeBackend) -> set[str]:
    return {path for path, _ in backend.search_calls()}


# ── Search order ───────────────────────────────────────────────


def test_search_order_by_intent():
    assert search_order(Intent.CREATE_INVOICE, EntityTypeFilter.ALL) == (
        EntityClass.CUSTOMER, EntityClass.PROJECT, EntityClass.TASK,
    )
    assert search_order(Intent.UPDATE_STATUS, EntityTypeFilter.ALL) == (
        EntityClass.PROJECT, EntityClass.TASK,
    )
    assert len(search_order(Intent.GENERAL, EntityTypeFilter.ALL)) == len(EntityClass)


def test_filter_restricts_to_one_class():
    assert search_order(Intent.CREATE_INVOICE, EntityTypeFilter.TEAM) == (EntityClass.TEAM,)


@pytest.mark.asyncio
async def test_update_status_never_searches_customers():
    backend = FakeBackend(**acme_records())
    await _resolver(backend).resolve(ContextQuery(text="update status of project Website"))
    assert _searched_paths(backend) <= {"/projects/", "/tasks/"}


@pytest.mark.asyncio
async def test_entity_filter_limits_searches():
    backend = FakeBackend(**acme_records())
    query = ContextQuery(text="invoice for Acme", entity_type_filter=EntityTypeFilter.CUSTOMER)
    context = await _resolver(backend).resolve(query)
    assert _searched_paths(backend) == {"/customers/"}
    assert [c.id for c in context.customers] == ["c-1"]


# ── Caps and de-duplication ────────────────────────────────────


@pytest.mark.asyncio
async def test_at_most_three_terms_per_class():
    backend = FakeBackend()
    await _resolver(backend).resolve(
        ContextQuery(text="client a1, client b2, client c3, client d4")
    )
    customer_terms = [term for path, term in backend.search_calls() if path == "/customers/"]
    assert customer_terms == ["a1", "b2", "c3"][:MAX_TERMS_PER_CLASS]


@pytest.mark.asyncio
async def test_results_capped_at_limit():
    customers = [{"id": f"c-{i}", "display_name": f"Acme {i}"} for i in range(8)]
    backend = FakeBackend(customers=customers)
    query = ContextQuery(text="Acme", entity_type_filter=EntityTypeFilter.CUSTOMER, limit=3)
    context = await _resolver(backend).resolve(query)
    assert [c.id for c in context.customers] == ["c-0", "c-1", "c-2"]


@pytest.mark.asyncio
async def test_duplicate_hits_across_terms_merged():
    backend = FakeBackend(**acme_records())
    # "Acme" is extracted twice for customers; the record must appear once
    context = await _resolver(backend).resolve(ContextQuery(text="create invoice for Acme"))
    assert [c.id for c in context.customers] == ["c-1"]
    for records in (context.customers, context.projects, context.tasks):
        ids = [r.id for r in records]
        assert len(ids) == len(set(ids))


# ── Enrichment ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_customer_enrichment_pulls_projects_and_unbilled_tasks():
    backend = FakeBackend(**acme_records())
    context = await _resolver(backend).resolve(ContextQuery(text="create invoice for Acme"))
    assert [p.id for p in context.projects] == ["p-1"]
    assert [t.id for t in context.tasks] == ["t-1"]

    task_filters = backend.calls_to("/tasks/")
    assert {"page": 1, "size": 20, "customer_id": "c-1", "status": "completed",
            "invoiced": "false"} in task_filters
    assert {"page": 1, "size": 20, "project_id": "p-1"} in task_filters


@pytest.mark.asyncio
async def test_enrichment_capped_to_first_customers():
    customers = [{"id": f"c-{i}", "display_name": f"Acme {i}"} for i in range(4)]
    backend = FakeBackend(customers=customers)
    await _resolver(backend).resolve(
        ContextQuery(text="Acme", entity_type_filter=EntityTypeFilter.CUSTOMER)
    )
    enriched = {p["customer_id"] for p in backend.calls_to("/projects/") if "customer_id" in p}
    assert enriched == {"c-0", "c-1"}


# ── Confidence and failures ────────────────────────────────────


@pytest.mark.asyncio
async def test_confidence_and_suggestions_attached():
    backend = FakeBackend(**acme_records())
    context = await _resolver(backend).resolve(ContextQuery(text="create invoice for Acme"))
    assert context.confidence >= 0.8
    assert context.suggestions == []


@pytest.mark.asyncio
async def test_no_match_gets_suggestions():
    backend = FakeBackend()
    context = await _resolver(backend).resolve(ContextQuery(text="mark as done"))
    assert context.confidence == 0.5
    assert context.total_results() == 0
    assert any("project or task" in s for s in context.suggestions)


@pytest.mark.asyncio
async def test_failed_term_does_not_abort_resolution():
    backend = FakeBackend(**acme_records())
    backend.term_failures["create invoice for Acme"] = httpx.ReadTimeout("slow")
    context = await _resolver(backend).resolve(ContextQuery(text="create invoice for Acme"))
    assert [c.id for c in context.customers] == ["c-1"]


@pytest.mark.asyncio
async def test_pipeline_failure_degrades_and_is_not_cached():
    backend = FakeBackend(**acme_records())
    resolver = _resolver(backend)
    resolver.scorer = MagicMock()
    resolver.scorer.score.side_effect = RuntimeError("scorer exploded")

    context = await resolver.resolve(ContextQuery(text="create invoice for Acme"))
    assert context.confidence == 0.0
    assert context.suggestions == [DEGRADED_SUGGESTION]
    assert context.total_results() == 0
    assert resolver.cache.size == 0


# ── Caching ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_second_resolution_served_from_cache():
    backend = FakeBackend(**acme_records())
    resolver = _resolver(backend)
    query = ContextQuery(text="create invoice for Acme")

    first = await resolver.resolve(query)
    calls_after_first = len(backend.calls)
    second = await resolver.resolve(ContextQuery(text="create invoice for Acme"))

    assert len(backend.calls) == calls_after_first
    assert second == first


@pytest.mark.asyncio
async def test_cached_result_not_shared_with_callers():
    backend = FakeBackend(**acme_records())
    resolver = _resolver(backend)
    query = ContextQuery(text="create invoice for Acme")

    first = await resolver.resolve(query)
    first.customers.clear()
    second = await resolver.resolve(query)
    assert [c.id for c in second.customers] == ["c-1"]


@pytest.mark.asyncio
async def test_clear_cache_forces_new_lookup():
    backend = FakeBackend(**acme_records())
    resolver = _resolver(backend)
    query = ContextQuery(text="create invoice for Acme")
    await resolver.resolve(query)
    resolver.clear_cache()
    calls_before = len(backend.calls)
    await resolver.resolve(query)
    assert len(backend.calls) > calls_before


@pytest.mark.asyncio
async def test_cancelled_resolution_not_cached():
    class BlockingBackend:
        def __init__(self):
            self.started = asyncio.Event()

        async def get(self, path, params=None):
            self.started.set()
            await asyncio.Event().wait()

    backend = BlockingBackend()
    resolver = ContextResolver(CollectionSearchClient(backend), ResultCache())
    task = asyncio.create_task(resolver.resolve(ContextQuery(text="create invoice for Acme")))
    await backend.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert resolver.cache.size == 0
