"""Disambiguation router — structured choice prompts instead of silent action.

For a CREATE_INVOICE resolution with at least one customer, the branches are
checked in a fixed order and the first match wins:

1. several customers matched   → numbered customer list
2. nothing billable            → manual invoice / review tasks / history / wait
3. invoices ≥ N days overdue   → credit hold warning with proceed / remind / ...

When none fires the caller continues to the smart defaults.  Each prompt is a
numbered plain-text presentation plus a :class:`PendingChoice` the caller
stores and matches against the user's next reply.
"""

from __future__ import annotations

import asyncio
import logging
import re

from config.settings import Settings, get_settings
from models.disambiguation import ChoiceKind, ChoiceOption, DisambiguationPrompt, PendingChoice
from models.entity import Customer, ResolvedContext
from models.invoice import (
    CustomerFinancialSummary,
    InvoiceOptionsBundle,
    LastInvoice,
    OverdueInvoice,
    UnbilledSummary,
)
from services.smart_defaults import SmartDefaultsEngine, format_cents, parse_day

logger = logging.getLogger(__name__)

MAX_CUSTOMER_CHOICES = 5

_MATCH_TERM_RE = re.compile(r"for\s+([^\n]+)", re.IGNORECASE)

_NO_BILLABLE_OPTIONS = (
    ("create_manual_invoice", "Create custom/manual invoice (enter amounts manually)"),
    ("review_billable_tasks", "Check projects to mark tasks as billable"),
    ("view_invoice_history", "View invoice history for {name}"),
    ("wait", "Wait until current work is completed"),
)

_CREDIT_RISK_OPTIONS = (
    ("proceed", "Proceed anyway (create invoice despite overdue amount)"),
    ("send_payment_reminder", "Send payment reminder for overdue invoices first"),
    ("view_payment_history", "View full payment history and notes"),
    ("cancel", "Cancel and contact customer"),
)

_LOW_CONFIDENCE_OPTIONS = (
    ("rephrase", "Rephrase the request"),
    ("proceed", "Continue with what was found"),
)


def _numbered(options: tuple[tuple[str, str], ...], **fmt: str) -> list[ChoiceOption]:
    return [
        ChoiceOption(key=str(i), label=label.format(**fmt), action=action)
        for i, (action, label) in enumerate(options, start=1)
    ]


def _option_lines(options: list[ChoiceOption]) -> list[str]:
    return [f"{o.key}. {o.label}" for o in options]


def _short_date(value: str | None, with_year: bool = False) -> str:
    day = parse_day(value)
    if day is None:
        return "unknown date"
    text = f"{day:%b} {day.day}"
    return f"{text}, {day.year}" if with_year else text


def _last_invoice_text(last: LastInvoice | None) -> str:
    if last is None:
        return "No invoices"
    text = f"{_short_date(last.invoice_date)}, ${format_cents(last.amount_cents)}"
    if last.status:
        text += f" ({last.status.upper()})"
    return text


class DisambiguationRouter:
    """Decides whether an invoice request needs the user's input first."""

    def __init__(
        self,
        defaults: SmartDefaultsEngine | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.defaults = defaults or SmartDefaultsEngine()
        self._settings = settings or get_settings()

    async def route_invoice(
        self, context: ResolvedContext, query_text: str
    ) -> DisambiguationPrompt | None:
        """First matching branch for an invoice request, or ``None``."""
        customers = context.customers
        if not customers:
            return None

        if len(customers) > 1:
            return await self.customer_disambiguation(customers, query_text)

        customer = customers[0]
        unbilled, financials = await asyncio.gather(
            self.defaults.compute_unbilled_for_customer(customer.id),
            self.defaults.fetch_customer_financial_summary(customer.id),
        )

        if unbilled.amount_cents == 0:
            logger.info("No unbilled work for customer %s", customer.id)
            return self.no_billable_work(customer, context, financials)

        risky = self.overdue_beyond_limit(financials)
        if risky:
            logger.info(
                "Credit risk for customer %s: %d invoice(s) overdue", customer.id, len(risky)
            )
            return self.credit_risk(customer, risky)

        return None

    def overdue_beyond_limit(self, financials: CustomerFinancialSummary) -> list[OverdueInvoice]:
        limit = self._settings.credit_risk_overdue_days
        return [inv for inv in financials.overdue_invoices if inv.days_overdue >= limit]

    # -- branches ------------------------------------------------------------

    async def customer_disambiguation(
        self, customers: list[Customer], query_text: str
    ) -> DisambiguationPrompt:
        top = customers[:MAX_CUSTOMER_CHOICES]
        details = await asyncio.gather(*(
            asyncio.gather(
                self.defaults.fetch_customer_financial_summary(c.id),
                self.defaults.compute_unbilled_for_customer(c.id),
            )
            for c in top
        ))

        m = _MATCH_TERM_RE.search(query_text)
        term = m.group(1).strip() if m else query_text.strip()
        lines = [f"Found {len(top)} customers matching '{term}':"]
        options: list[ChoiceOption] = []
        candidates = []
        for i, (customer, (financials, unbilled)) in enumerate(zip(top, details), start=1):
            unbilled_text = (
                f"${format_cents(unbilled.amount_cents)} ready"
                if unbilled.amount_cents
                else "No unbilled work"
            )
            lines.append(
                f"\n{i}. @{customer.label} (#{customer.id})\n"
                f"   Last invoice: {_last_invoice_text(financials.last_invoice)}\n"
                f"   Unbilled work: {unbilled_text}"
            )
            options.append(ChoiceOption(
                key=str(i), label=customer.label, action="select_customer", value=customer.id,
            ))
            candidates.append(_candidate(customer, financials, unbilled))
        lines.append("\nWhich customer? Say 1, 2, 3 or type @ to search again.")

        return DisambiguationPrompt(
            presentation="\n".join(lines),
            pending_choice=PendingChoice(
                kind=ChoiceKind.CUSTOMER_DISAMBIGUATION,
                options=options,
                payload={"candidates": candidates},
                allow_requery=True,
            ),
        )

    def no_billable_work(
        self,
        customer: Customer,
        context: ResolvedContext,
        financials: CustomerFinancialSummary,
    ) -> DisambiguationPrompt:
        options = _numbered(_NO_BILLABLE_OPTIONS, name=customer.label)
        last = financials.last_invoice
        last_line = (
            f"- Last invoice: {_short_date(last.invoice_date, with_year=True)}, "
            f"${format_cents(last.amount_cents)} - {last.status.upper()}"
            if last
            else "- Last invoice: none"
        )
        lines = [
            f"Found {customer.label} (Customer #{customer.id})",
            "",
            "NO UNBILLED WORK FOUND",
            "",
            "Checked:",
            f"- All projects: {len(context.projects)} active/completed",
            f"- All tasks: {len(context.tasks)} total",
            last_line,
            "",
            "Options:",
            *_option_lines(options),
            "",
            "What would you like to do? Say 1, 2, 3, or 4.",
        ]
        return DisambiguationPrompt(
            presentation="\n".join(lines),
            pending_choice=PendingChoice(
                kind=ChoiceKind.NO_BILLABLE_WORK,
                options=options,
                payload={"customer_id": customer.id},
            ),
        )

    def credit_risk(
        self, customer: Customer, overdue: list[OverdueInvoice]
    ) -> DisambiguationPrompt:
        options = _numbered(_CREDIT_RISK_OPTIONS)
        total = sum(inv.amount_cents for inv in overdue)
        lines = [
            "CREDIT HOLD WARNING",
            "",
            f"{customer.label} (Customer #{customer.id}) has overdue invoices:",
            *(
                f"- Invoice #{inv.invoice_number}: ${format_cents(inv.amount_cents)} "
                f"({inv.days_overdue} days overdue)"
                for inv in overdue
            ),
            "",
            f"Total Outstanding: ${format_cents(total)}",
            "",
            "RECOMMENDATION:",
            "Contact customer for payment before issuing new invoice.",
            "",
            "Options:",
            *_option_lines(options),
            "",
            "If you proceed, new work may also go unpaid.",
            "",
            "What should I do? Say 1, 2, 3, or 4.",
        ]
        return DisambiguationPrompt(
            presentation="\n".join(lines),
            pending_choice=PendingChoice(
                kind=ChoiceKind.CREDIT_RISK,
                options=options,
                payload={
                    "customer_id": customer.id,
                    "overdue": [inv.model_dump() for inv in overdue],
                    "total_outstanding_cents": total,
                },
            ),
        )

    # -- other prompts -------------------------------------------------------

    def low_confidence(self, context: ResolvedContext) -> DisambiguationPrompt:
        """Ask for a rephrase when the resolution is too uncertain to act on."""
        options = _numbered(_LOW_CONFIDENCE_OPTIONS)
        lines = [f"I'm not sure what you meant ({context.confidence * 100:.0f}% confidence)."]
        if context.suggestions:
            lines += ["", "Suggestions:", *(f"- {s}" for s in context.suggestions)]
        lines += ["", "Options:", *_option_lines(options), "", "Say 1 or 2, or type @ to search again."]
        return DisambiguationPrompt(
            presentation="\n".join(lines),
            pending_choice=PendingChoice(
                kind=ChoiceKind.LOW_CONFIDENCE,
                options=options,
                payload={"confidence": context.confidence},
                allow_requery=True,
            ),
        )

    def invoice_options(self, bundle: InvoiceOptionsBundle) -> DisambiguationPrompt:
        """A/B/C choice over an invoice option bundle."""
        options = [
            ChoiceOption(key=key, label=option.label, action="select_invoice_option", value=key)
            for key, option in bundle.options.items()
        ]
        return DisambiguationPrompt(
            presentation=bundle.summary,
            pending_choice=PendingChoice(
                kind=ChoiceKind.INVOICE_OPTIONS,
                options=options,
                payload={
                    "customer_id": bundle.customer.id if bundle.customer else None,
                    "recommended": bundle.recommended,
                    "totals": {k: o.total_cents for k, o in bundle.options.items()},
                },
            ),
        )


def _candidate(
    customer: Customer,
    financials: CustomerFinancialSummary,
    unbilled: UnbilledSummary,
) -> dict:
    last = financials.last_invoice
    return {
        "id": customer.id,
        "display_name": customer.label,
        "last_invoice": last.model_dump() if last else None,
        "unbilled_cents": unbilled.amount_cents,
    }
