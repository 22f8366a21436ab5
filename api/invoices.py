"""Invoice option endpoints — A/B/C billing scopes for a customer."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from models.invoice import InvoiceOptionsBundle
from services.context_engine import get_context_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.get("/options/{customer_id}", response_model=InvoiceOptionsBundle)
async def get_invoice_options(customer_id: str):
    bundle = await get_context_engine().defaults.build_invoice_options_for_customer(customer_id)
    if bundle is None:
        raise HTTPException(status_code=502, detail="Unable to build invoice options")
    if bundle.customer is None:
        raise HTTPException(status_code=404, detail=f"Customer {customer_id} not found")
    return bundle
