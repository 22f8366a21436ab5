"""Tests for the disambiguation router and pending-choice matching."""

import pytest

from config.settings import Settings
from models.disambiguation import ChoiceKind
from models.entity import Customer, ResolvedContext
from services.collection_search import CollectionSearchClient
from services.disambiguation import DisambiguationRouter
from services.smart_defaults import SmartDefaultsEngine
from tests.fakes import TODAY, FakeBackend, acme_records

ACME = Customer(id="c-1", display_name="Acme Corp")


def _router(backend: FakeBackend, **overrides) -> DisambiguationRouter:
    settings = Settings(**overrides)
    defaults = SmartDefaultsEngine(
        CollectionSearchClient(backend), today=lambda: TODAY, settings=settings
    )
    return DisambiguationRouter(defaults, settings=settings)


def _overdue_invoice(days: int) -> dict:
    return {
        "id": "i-1",
        "invoice_number": "INV-2026-0001",
        "status": "overdue" if days else "sent",
        "total_amount": 150000,
        "balance_due": 150000,
        "invoice_date": "2026-01-15",
        "days_overdue": days,
        "customer_id": "c-1",
    }


# ── Routing order ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_no_customers_is_not_routed():
    prompt = await _router(FakeBackend()).route_invoice(ResolvedContext(), "create invoice")
    assert prompt is None


@pytest.mark.asyncio
async def test_several_customers_need_a_choice():
    context = ResolvedContext(customers=[ACME, Customer(id="c-2", display_name="Acme Industries")])
    prompt = await _router(FakeBackend()).route_invoice(context, "create invoice for acme")

    choice = prompt.pending_choice
    assert choice.kind == ChoiceKind.CUSTOMER_DISAMBIGUATION
    assert [o.key for o in choice.options] == ["1", "2"]
    assert prompt.presentation.startswith("Found 2 customers matching 'acme':")
    assert "@Acme Industries (#c-2)" in prompt.presentation
    assert "No unbilled work" in prompt.presentation
    assert "Which customer?" in prompt.presentation
    assert choice.match_reply("2").value == "c-2"
    assert choice.wants_requery("@acme industries")
    assert [c["id"] for c in choice.payload["candidates"]] == ["c-1", "c-2"]


@pytest.mark.asyncio
async def test_customer_list_is_capped_at_five():
    customers = [Customer(id=f"c-{i}", display_name=f"Acme {i}") for i in range(7)]
    prompt = await _router(FakeBackend()).route_invoice(
        ResolvedContext(customers=customers), "invoice for acme"
    )
    assert len(prompt.pending_choice.options) == 5


@pytest.mark.asyncio
async def test_customer_list_shows_unbilled_and_last_invoice():
    records = acme_records()
    records["invoices"] = [{
        "id": "i-9", "invoice_number": "INV-2026-0009", "status": "paid",
        "total_amount": 120000, "invoice_date": "2026-02-10", "customer_id": "c-1",
    }]
    context = ResolvedContext(customers=[ACME, Customer(id="c-2", display_name="Acme Labs")])
    prompt = await _router(FakeBackend(**records)).route_invoice(context, "invoice for Acme")
    assert "Last invoice: Feb 10, $1,200.00 (PAID)" in prompt.presentation
    assert "Unbilled work: $200.00 ready" in prompt.presentation


@pytest.mark.asyncio
async def test_no_billable_work():
    records = acme_records()
    records["tasks"][0]["status"] = "in_progress"
    context = ResolvedContext(customers=[ACME])
    prompt = await _router(FakeBackend(**records)).route_invoice(context, "invoice acme")

    choice = prompt.pending_choice
    assert choice.kind == ChoiceKind.NO_BILLABLE_WORK
    assert "NO UNBILLED WORK FOUND" in prompt.presentation
    assert "3. View invoice history for Acme Corp" in prompt.presentation
    assert len(choice.options) == 4
    assert choice.match_reply("1").action == "create_manual_invoice"
    assert choice.match_reply("4.").action == "wait"
    assert choice.payload == {"customer_id": "c-1"}
    assert not choice.wants_requery("@acme")


@pytest.mark.asyncio
async def test_credit_risk_for_long_overdue_invoice():
    records = acme_records()
    records["invoices"] = [_overdue_invoice(45)]
    prompt = await _router(FakeBackend(**records)).route_invoice(
        ResolvedContext(customers=[ACME]), "invoice acme"
    )

    choice = prompt.pending_choice
    assert choice.kind == ChoiceKind.CREDIT_RISK
    assert prompt.presentation.startswith("CREDIT HOLD WARNING")
    assert "(45 days overdue)" in prompt.presentation
    assert "Total Outstanding: $1,500.00" in prompt.presentation
    assert [o.action for o in choice.options] == [
        "proceed", "send_payment_reminder", "view_payment_history", "cancel",
    ]
    assert choice.payload["total_outstanding_cents"] == 150000
    assert choice.payload["overdue"][0]["days_overdue"] == 45


@pytest.mark.asyncio
async def test_recently_overdue_invoice_is_not_a_credit_risk():
    records = acme_records()
    records["invoices"] = [_overdue_invoice(10)]
    prompt = await _router(FakeBackend(**records)).route_invoice(
        ResolvedContext(customers=[ACME]), "invoice acme"
    )
    assert prompt is None


@pytest.mark.asyncio
async def test_credit_risk_threshold_is_configurable():
    records = acme_records()
    records["invoices"] = [_overdue_invoice(10)]
    router = _router(FakeBackend(**records), credit_risk_overdue_days=7)
    prompt = await router.route_invoice(ResolvedContext(customers=[ACME]), "invoice acme")
    assert prompt.pending_choice.kind == ChoiceKind.CREDIT_RISK


@pytest.mark.asyncio
async def test_billable_customer_in_good_standing_is_not_routed():
    prompt = await _router(FakeBackend(**acme_records())).route_invoice(
        ResolvedContext(customers=[ACME]), "invoice acme"
    )
    assert prompt is None


# ── Other prompts ──────────────────────────────────────────────


def test_low_confidence_prompt():
    context = ResolvedContext(confidence=0.3, suggestions=["Use @ to mention specific entities"])
    prompt = _router(FakeBackend()).low_confidence(context)

    choice = prompt.pending_choice
    assert choice.kind == ChoiceKind.LOW_CONFIDENCE
    assert "30% confidence" in prompt.presentation
    assert "- Use @ to mention specific entities" in prompt.presentation
    assert choice.match_reply("2").action == "proceed"
    assert choice.wants_requery("@acme")


@pytest.mark.asyncio
async def test_invoice_options_prompt():
    router = _router(FakeBackend(**acme_records()))
    bundle = await router.defaults.build_invoice_options_for_customer("c-1")
    prompt = router.invoice_options(bundle)

    choice = prompt.pending_choice
    assert choice.kind == ChoiceKind.INVOICE_OPTIONS
    assert prompt.presentation == bundle.summary
    assert choice.match_reply("b)").key == "B"
    assert choice.match_reply(" a ").value == "A"
    assert choice.match_reply("D") is None
    assert choice.match_reply("") is None
    assert choice.payload["recommended"] == "A"
    assert choice.payload["totals"] == {"A": 20000, "B": 20000, "C": 20000}
    assert not choice.wants_requery("@acme")
