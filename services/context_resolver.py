"""Context resolver — from raw text to a ranked, de-duplicated entity context.

Pipeline for one :class:`ContextQuery`:

1. Extract candidate strings per entity class and classify the intent.
2. Pick the search order from ``(intent, entity type filter)``.
3. Search each class with its first few candidate terms (concurrently),
   merge results by id in first-seen order and cap to ``limit``.
4. Enrichment pass: pull the projects and unbilled tasks of the first
   customers found, then the tasks of the first projects found.  A user who
   names only a customer implicitly means that customer's work, and invoice
   defaults need task-level detail.
5. Score confidence and attach rephrasing suggestions when it is low.

Whole resolutions are memoised in a :class:`ResultCache`.  Any unexpected
failure inside the pipeline is converted here, and only here, into a
degraded empty context with zero confidence.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import Any

from models.base import BackendRecord
from models.entity import (
    ContextQuery,
    EntityClass,
    EntityTypeFilter,
    ExtractedEntities,
    Intent,
    ResolvedContext,
    dedupe_by_id,
)
from services.collection_search import CollectionSearchClient, SearchOutcome
from services.confidence import ConfidenceScorer
from services.entity_extractor import EntityPatternExtractor
from services.intent_classifier import IntentClassifier
from services.result_cache import ResultCache

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Fan-out caps
# ---------------------------------------------------------------------------

MAX_TERMS_PER_CLASS = 3
MAX_ENRICHED_CUSTOMERS = 2
MAX_ENRICHED_PROJECTS = 3
CUSTOMER_PROJECTS_PAGE_SIZE = 10
ENRICHMENT_TASKS_PAGE_SIZE = 20
MAX_CONCURRENT_SEARCHES = MAX_TERMS_PER_CLASS * len(EntityClass)

DEFAULT_SUGGESTION_THRESHOLD = 0.7
DEGRADED_SUGGESTION = "Unable to resolve context. Please try being more specific."

# ---------------------------------------------------------------------------
# Search order
# ---------------------------------------------------------------------------

ALL_CLASSES: tuple[EntityClass, ...] = (
    EntityClass.CUSTOMER,
    EntityClass.PROJECT,
    EntityClass.TASK,
    EntityClass.INVOICE,
    EntityClass.TEAM,
)

SEARCH_ORDER: dict[Intent, tuple[EntityClass, ...]] = {
    Intent.CREATE_INVOICE: (EntityClass.CUSTOMER, EntityClass.PROJECT, EntityClass.TASK),
    Intent.UPDATE_STATUS: (EntityClass.PROJECT, EntityClass.TASK),
    Intent.ASSIGN_TASK: (EntityClass.TASK, EntityClass.TEAM, EntityClass.PROJECT),
    Intent.SHOW_OVERDUE: (EntityClass.TASK, EntityClass.PROJECT, EntityClass.INVOICE),
}


def search_order(intent: Intent, entity_type_filter: EntityTypeFilter) -> tuple[EntityClass, ...]:
    """Entity classes to query, in priority order."""
    restricted = entity_type_filter.as_entity_class()
    if restricted is not None:
        return (restricted,)
    return SEARCH_ORDER.get(intent, ALL_CLASSES)


def degraded_context() -> ResolvedContext:
    """Well-formed empty context returned when resolution fails outright."""
    return ResolvedContext(confidence=0.0, suggestions=[DEGRADED_SUGGESTION])


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------

_CONTEXT_FIELD: dict[EntityClass, str] = {
    EntityClass.CUSTOMER: "customers",
    EntityClass.PROJECT: "projects",
    EntityClass.TASK: "tasks",
    EntityClass.INVOICE: "invoices",
    EntityClass.TEAM: "team_members",
}


class _ContextAccumulator:
    """Per-class record lists that only ever grow by unseen ids."""

    def __init__(self) -> None:
        self._records: dict[EntityClass, list[BackendRecord]] = {c: [] for c in EntityClass}
        self._ids: dict[EntityClass, set[str]] = {c: set() for c in EntityClass}

    def get(self, entity_class: EntityClass) -> list[BackendRecord]:
        return self._records[entity_class]

    def merge(self, entity_class: EntityClass, records: Sequence[BackendRecord]) -> int:
        added = 0
        seen = self._ids[entity_class]
        for record in records:
            if record.id in seen:
                continue
            seen.add(record.id)
            self._records[entity_class].append(record)
            added += 1
        return added

    def to_context(self) -> ResolvedContext:
        return ResolvedContext(
            **{_CONTEXT_FIELD[c]: list(records) for c, records in self._records.items()}
        )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ContextResolver:
    """Orchestrates extraction, classification, search, enrichment and scoring."""

    def __init__(
        self,
        search_client: CollectionSearchClient | None = None,
        cache: ResultCache | None = None,
        *,
        extractor: EntityPatternExtractor | None = None,
        classifier: IntentClassifier | None = None,
        scorer: ConfidenceScorer | None = None,
        max_concurrent_searches: int = MAX_CONCURRENT_SEARCHES,
        suggestion_threshold: float = DEFAULT_SUGGESTION_THRESHOLD,
    ) -> None:
        self.search_client = search_client or CollectionSearchClient()
        self.cache = cache if cache is not None else ResultCache()
        self.extractor = extractor or EntityPatternExtractor()
        self.classifier = classifier or IntentClassifier()
        self.scorer = scorer or ConfidenceScorer()
        self._max_concurrent = max_concurrent_searches
        self._suggestion_threshold = suggestion_threshold

    # -- public API ----------------------------------------------------------

    def analyze(self, text: str) -> tuple[ExtractedEntities, Intent]:
        """Extraction and classification only; no data access."""
        return self.extractor.extract(text), self.classifier.classify(text)

    async def resolve(self, query: ContextQuery) -> ResolvedContext:
        """Resolve *query*, serving from cache when a fresh entry exists.

        Never raises for data problems: a pipeline failure yields
        :func:`degraded_context`, which is not cached.  Cancellation
        propagates and leaves the cache untouched.
        """
        key = query.cache_key
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Context cache hit: %s", key)
            return cached.model_copy(deep=True)

        try:
            context = await self._perform_resolution(query)
        except Exception:
            logger.exception("Context resolution failed for %r", query.text)
            return degraded_context()

        self.cache.set(key, context)
        return context.model_copy(deep=True)

    def clear_cache(self) -> None:
        self.cache.clear()

    # -- pipeline ------------------------------------------------------------

    async def _perform_resolution(self, query: ContextQuery) -> ResolvedContext:
        entities, intent = self.analyze(query.text)
        order = search_order(intent, query.entity_type_filter)
        logger.info(
            "Resolving %r — intent=%s order=%s",
            query.text, intent.value, [c.value for c in order],
        )

        acc = _ContextAccumulator()
        semaphore = asyncio.Semaphore(self._max_concurrent)
        await self._search_stage(order, entities, query.limit, acc, semaphore)
        await self._enrich_stage(acc, semaphore)

        context = acc.to_context()
        confidence = self.scorer.score(entities, context, intent)
        suggestions = (
            self.scorer.suggestions(entities, intent)
            if confidence < self._suggestion_threshold
            else []
        )
        context.confidence = confidence
        context.suggestions = suggestions
        return context

    async def _bounded(
        self,
        semaphore: asyncio.Semaphore,
        func: Callable[..., Awaitable[SearchOutcome]],
        *args: Any,
        **kwargs: Any,
    ) -> SearchOutcome:
        async with semaphore:
            return await func(*args, **kwargs)

    async def _search_stage(
        self,
        order: tuple[EntityClass, ...],
        entities: ExtractedEntities,
        limit: int,
        acc: _ContextAccumulator,
        semaphore: asyncio.Semaphore,
    ) -> None:
        jobs: list[tuple[EntityClass, str]] = [
            (entity_class, term)
            for entity_class in order
            for term in entities.get(entity_class, [])[:MAX_TERMS_PER_CLASS]
        ]
        if not jobs:
            return

        outcomes = await asyncio.gather(*(
            self._bounded(semaphore, self.search_client.search, c, term, limit)
            for c, term in jobs
        ))

        for entity_class in order:
            found: list[BackendRecord] = []
            for outcome in outcomes:
                if outcome.collection is entity_class:
                    found.extend(outcome.items)
            acc.merge(entity_class, dedupe_by_id(found)[:limit])

    async def _enrich_stage(self, acc: _ContextAccumulator, semaphore: asyncio.Semaphore) -> None:
        customers = acc.get(EntityClass.CUSTOMER)[:MAX_ENRICHED_CUSTOMERS]
        if customers:
            calls = []
            for customer in customers:
                calls.append(partial(
                    self.search_client.list_related,
                    EntityClass.PROJECT,
                    size=CUSTOMER_PROJECTS_PAGE_SIZE,
                    customer_id=customer.id,
                ))
                calls.append(partial(
                    self.search_client.list_related,
                    EntityClass.TASK,
                    size=ENRICHMENT_TASKS_PAGE_SIZE,
                    customer_id=customer.id,
                    status="completed",
                    invoiced=False,
                ))
            for outcome in await asyncio.gather(*(self._bounded(semaphore, call) for call in calls)):
                acc.merge(outcome.collection, outcome.items)

        # Includes projects pulled in for the customers above
        projects = acc.get(EntityClass.PROJECT)[:MAX_ENRICHED_PROJECTS]
        if projects:
            outcomes = await asyncio.gather(*(
                self._bounded(
                    semaphore,
                    self.search_client.list_related,
                    EntityClass.TASK,
                    size=ENRICHMENT_TASKS_PAGE_SIZE,
                    project_id=project.id,
                )
                for project in projects
            ))
            for outcome in outcomes:
                acc.merge(EntityClass.TASK, outcome.items)
