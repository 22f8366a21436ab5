"""Context resolution API — resolve free-form requests into commands."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from pydantic import Field

from models.base import CamelModel
from models.entity import EntityTypeFilter, ResolvedCommand
from services.context_engine import get_context_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/context", tags=["context"])

MAX_LIMIT = 100


class ResolveRequest(CamelModel):
    text: str
    entity_type_filter: EntityTypeFilter = EntityTypeFilter.ALL
    limit: int = Field(default=10, gt=0, le=MAX_LIMIT)


@router.post("/resolve", response_model=ResolvedCommand)
async def resolve_context(req: ResolveRequest):
    """Resolve one request; never fails for backend problems (confidence drops to 0)."""
    return await get_context_engine().resolve(
        req.text, req.entity_type_filter, req.limit
    )


@router.post("/cache/clear")
async def clear_context_cache():
    """Drop cached resolutions, e.g. after a write elsewhere in the system."""
    get_context_engine().clear_cache()
    return {"status": "cleared"}
