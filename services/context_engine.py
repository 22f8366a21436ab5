"""Context engine — raw text in, :class:`ResolvedCommand` out.

Runs the resolver, then either opens a choice prompt (low confidence, or an
invoice request that needs the user's input first) or fills in the command's
suggested parameters from the smart defaults.  The engine never writes to the
backend; turning a command into a mutation is the caller's job.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from config.settings import Settings, get_settings
from models.disambiguation import DisambiguationPrompt
from models.entity import (
    ContextQuery,
    EntityTypeFilter,
    Intent,
    ResolvedCommand,
    ResolvedContext,
    StructuredEntities,
    round_half_up,
)
from services.collection_search import CollectionSearchClient
from services.context_resolver import ContextResolver
from services.context_summary import (
    build_enriched_prompt,
    extract_structured_entities,
    suggest_actions,
    summarize_context,
)
from services.disambiguation import DisambiguationRouter
from services.result_cache import ResultCache
from services.smart_defaults import DEFAULT_PAYMENT_TERMS, SmartDefaultsEngine

logger = logging.getLogger(__name__)

DEFAULT_ITEM_RATE_CENTS = 10000

_TARGET_STATUS_RE = re.compile(
    r"\b(completed|done|finished|cancelled|on.hold|in.progress|todo)\b", re.IGNORECASE
)
_PROJECT_NAME_RE = re.compile(
    r"(?:create\s+(?:a\s+)?|new\s+|start\s+)project\s+(?:called\s+|named\s+)?(.+)",
    re.IGNORECASE,
)
_TASK_TITLE_RE = re.compile(
    r"(?:create\s+(?:a\s+)?|new\s+|add\s+)task\s+(?:called\s+|named\s+|to\s+)?(.+)",
    re.IGNORECASE,
)


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json") if model is not None else None


class ContextEngine:
    """Resolve free-form requests into commands the caller can act on."""

    def __init__(
        self,
        resolver: ContextResolver | None = None,
        defaults: SmartDefaultsEngine | None = None,
        router: DisambiguationRouter | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.resolver = resolver or ContextResolver(
            CollectionSearchClient(),
            ResultCache(ttl_seconds=self._settings.context_cache_ttl),
            max_concurrent_searches=self._settings.max_concurrent_searches,
            suggestion_threshold=self._settings.suggestion_threshold,
        )
        self.defaults = defaults or SmartDefaultsEngine(
            self.resolver.search_client, settings=self._settings
        )
        self.router = router or DisambiguationRouter(self.defaults, settings=self._settings)

    async def resolve(
        self,
        text: str,
        entity_type_filter: EntityTypeFilter | str = EntityTypeFilter.ALL,
        limit: int = 10,
    ) -> ResolvedCommand:
        """Resolve *text* into intent, entities, defaults and any pending choice.

        Only the entity lookup is cached; calling again with the same query
        skips the searches but recomputes the invoice and task defaults, so
        every call still reads billing data from the backend.
        """
        query = ContextQuery(
            text=text,
            entity_type_filter=EntityTypeFilter(entity_type_filter),
            limit=limit,
        )
        context = await self.resolver.resolve(query)
        entities, intent = self.resolver.analyze(text)
        structured = extract_structured_entities(text, context)

        threshold = self._settings.confidence_action_threshold
        prompt: DisambiguationPrompt | None = None
        params: dict[str, Any] = {}
        blocked = False

        if context.confidence < threshold:
            prompt = self.router.low_confidence(context)
            blocked = True
        elif intent is Intent.CREATE_INVOICE:
            prompt = await self.router.route_invoice(context, text)
            if prompt is not None:
                blocked = True
                params[prompt.pending_choice.kind.value] = prompt.pending_choice.payload
            else:
                prompt = await self._invoice_parameters(context, structured, params)
        else:
            params = await self._suggest_parameters(intent, text, structured)

        logger.info(
            "Resolved %r: intent=%s confidence=%.2f prompt=%s",
            text, intent.value, context.confidence,
            prompt.pending_choice.kind.value if prompt else None,
        )
        return ResolvedCommand(
            original_text=text,
            intent=intent,
            entities=entities,
            context=context,
            suggested_parameters=params,
            structured_entities=structured,
            pending_choice=prompt.pending_choice if prompt else None,
            presentation=prompt.presentation if prompt else "",
            summary=summarize_context(context),
            suggested_actions=suggest_actions(intent, context),
            enriched_prompt=build_enriched_prompt(text, context, intent),
            is_actionable=not blocked and context.confidence >= threshold,
        )

    def clear_cache(self) -> None:
        self.resolver.clear_cache()

    # -- parameters ----------------------------------------------------------

    async def _invoice_parameters(
        self,
        context: ResolvedContext,
        structured: StructuredEntities,
        params: dict[str, Any],
    ) -> DisambiguationPrompt | None:
        """Fill invoice parameters; returns the A/B/C prompt when a bundle exists."""
        customer = structured.customer
        project = structured.project
        if project is not None:
            params["project_id"] = project.id
            params["project_name"] = project.name
        if customer is None:
            return None

        params["customer_id"] = customer.id
        params["customer_name"] = customer.label
        params["payment_terms"] = customer.payment_terms or DEFAULT_PAYMENT_TERMS

        bundle = await self.defaults.build_invoice_options_for_customer(customer.id)
        defaults = bundle.defaults if bundle else await self.defaults.compute_invoice_defaults(customer)
        params["invoice_defaults"] = _dump(defaults)
        params["invoice_date"] = defaults.invoice_date.isoformat()
        params["due_date"] = defaults.due_date.isoformat()

        rate = (project.hourly_rate_cents if project else 0) or DEFAULT_ITEM_RATE_CENTS
        unbilled = [t for t in context.tasks if t.is_completed and not t.is_invoiced]
        if unbilled:
            items = [
                {
                    "description": t.title,
                    "quantity": t.billable_hours,
                    "unit_price": rate,
                    "task_id": t.id,
                }
                for t in unbilled
            ]
            params["suggested_items"] = items
            params["suggested_total"] = round_half_up(
                sum(i["quantity"] * i["unit_price"] for i in items)
            )

        if bundle is None:
            return None
        params["invoice_options_bundle"] = _dump(bundle)
        return self.router.invoice_options(bundle)

    async def _suggest_parameters(
        self,
        intent: Intent,
        text: str,
        structured: StructuredEntities,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}

        if intent is Intent.UPDATE_STATUS:
            if structured.project is not None:
                params["project_id"] = structured.project.id
                params["current_status"] = structured.project.status
            if structured.tasks:
                params["task_ids"] = [t.id for t in structured.tasks]
                params["current_task_statuses"] = [
                    {"id": t.id, "status": t.status} for t in structured.tasks
                ]
            m = _TARGET_STATUS_RE.search(text)
            if m:
                params["target_status"] = re.sub(r"[^a-z]", "_", m.group(1).lower())

        elif intent is Intent.ASSIGN_TASK:
            if structured.tasks:
                params["task_ids"] = [t.id for t in structured.tasks]
            if structured.assignee is not None:
                params["assignee_id"] = structured.assignee.id
                params["assignee_name"] = structured.assignee.full_name

        elif intent is Intent.SHOW_OVERDUE:
            params["filters"] = {
                "overdue": True,
                "status_not_in": ["completed", "cancelled"],
            }

        elif intent is Intent.CREATE_PROJECT:
            m = _PROJECT_NAME_RE.search(text)
            name = m.group(1).strip() if m else text.strip()
            params["name"] = name
            params["project_defaults"] = _dump(
                await self.defaults.compute_project_defaults(name)
            )
            if structured.customer is not None:
                params["customer_id"] = structured.customer.id

        elif intent is Intent.CREATE_TASK:
            m = _TASK_TITLE_RE.search(text)
            title = m.group(1).strip() if m else text.strip()
            params["title"] = title
            params["task_defaults"] = _dump(
                await self.defaults.compute_task_defaults(
                    title, project=structured.project, assignee=structured.assignee
                )
            )
            if structured.project is not None:
                params["project_id"] = structured.project.id

        return params


# ── Singleton ────────────────────────────────────────────────

_engine: ContextEngine | None = None


def get_context_engine() -> ContextEngine:
    """Return the process-wide engine (and therefore the shared result cache)."""
    global _engine
    if _engine is None:
        _engine = ContextEngine()
    return _engine


async def resolve(
    text: str,
    entity_type_filter: EntityTypeFilter | str = EntityTypeFilter.ALL,
    limit: int = 10,
) -> ResolvedCommand:
    return await get_context_engine().resolve(text, entity_type_filter, limit)


def clear_cache() -> None:
    """Invalidate cached resolutions, e.g. after a write elsewhere in the system."""
    get_context_engine().clear_cache()
