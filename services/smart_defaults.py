"""Smart defaults engine — business-rule defaults derived from resolved entities.

Computes, from a customer / project / task context:

- invoice defaults (dates, payment terms, currency, tax, next invoice number),
- the A/B/C invoice option bundle for a customer's completed work,
- project and task creation defaults (start/due dates, priority, owner, budget),
- the customer's billing picture (unbilled work, overdue invoices).

Every public coroutine treats backend lookups as best-effort: a failed lookup
is logged and the affected field falls back to its default, so callers always
receive a well-formed result (``None`` only where documented).
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import Callable, Iterable
from datetime import date, timedelta
from statistics import median_high

from config.settings import Settings, get_settings
from models.entity import (
    Customer,
    EntityClass,
    Invoice,
    Project,
    Task,
    TeamMember,
    round_half_up,
)
from models.invoice import (
    CustomerFinancialSummary,
    InvoiceDefaults,
    InvoiceLineItem,
    InvoiceOption,
    InvoiceOptionsBundle,
    LastInvoice,
    OptionKey,
    OverdueInvoice,
    Priority,
    ProjectDefaults,
    TaskDefaults,
    UnbilledSummary,
)
from services.collection_search import CollectionSearchClient

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_TERMS = "NET 30"
DEFAULT_TERMS_DAYS = 30
DEFAULT_CURRENCY = "USD"
DEFAULT_TASK_TYPE = "service"

PRODUCTIVE_HOURS_PER_DAY = 6
ASSUMED_TASK_HOURS = 8
SIMILAR_RECORDS_LIMIT = 50
FINANCIAL_SUMMARY_PAGE_SIZE = 200

_NET_TERMS_RE = re.compile(r"net\s*(\d{1,3})", re.IGNORECASE)
_NET_DAYS_RE = re.compile(r"net_(\d{1,3})")
_HIGH_PRIORITY_RE = re.compile(r"\b(urgent|asap|critical|high\s+priority)\b")
_LOW_PRIORITY_RE = re.compile(r"\b(low\s+priority)\b")
_OWNER_ROLES = ("ADMIN", "MANAGER", "PM")
_PM_ROLE_RE = re.compile(r"PM|MANAGER", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def normalize_payment_terms(raw: str | None) -> str:
    """``"NET 45"`` → ``net_45``; "due on receipt" → ``due_on_receipt``."""
    if not raw:
        return "net_30"
    text = str(raw).strip().lower()
    if "due" in text and "receipt" in text:
        return "due_on_receipt"
    m = _NET_TERMS_RE.search(text)
    if m:
        return f"net_{m.group(1)}"
    return re.sub(r"\s+", "_", text)


def days_from_terms(terms: str) -> int:
    """Days until due for normalised terms; anything unrecognised is 30."""
    m = _NET_DAYS_RE.search(terms)
    if m:
        return int(m.group(1))
    if terms == "due_on_receipt":
        return 0
    return DEFAULT_TERMS_DAYS


def next_monday(from_date: date) -> date:
    """The Monday strictly after *from_date* (a Monday maps to a week later)."""
    return from_date + timedelta(days=(-from_date.weekday()) % 7 or 7)


def detect_priority_from_text(text: str) -> Priority:
    lowered = text.lower()
    if _HIGH_PRIORITY_RE.search(lowered):
        return "High"
    if _LOW_PRIORITY_RE.search(lowered):
        return "Low"
    return "Medium"


def format_cents(cents: int) -> str:
    """``123456`` → ``"1,234.56"``."""
    return f"{cents / 100:,.2f}"


def parse_day(value: str | date | None) -> date | None:
    """Leading ``YYYY-MM-DD`` of an ISO date/datetime string, or ``None``."""
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.debug("Unparseable date %r", value)
        return None


def billable_quantity(hours: float) -> int:
    return max(1, round_half_up(hours))


def project_rates(projects: Iterable[Project]) -> dict[str, int]:
    """Project id → hourly rate in cents."""
    return {p.id: p.hourly_rate_cents for p in projects}


def build_line_items(
    tasks: list[Task],
    rates: dict[str, int],
    project_ids: list[str] | None = None,
) -> tuple[list[InvoiceLineItem], int]:
    """Group *tasks* by task type into line items and return ``(items, total)``.

    The unit rate is the project's rate when exactly one project is in scope,
    otherwise the rounded mean of the rates of the projects the group's tasks
    belong to.
    """
    groups: dict[str, list[Task]] = {}
    for task in tasks:
        groups.setdefault(task.task_type or DEFAULT_TASK_TYPE, []).append(task)

    items: list[InvoiceLineItem] = []
    total = 0
    for task_type, group in groups.items():
        hours = sum(t.billable_hours for t in group)
        if project_ids is not None and len(project_ids) == 1:
            rate = rates.get(project_ids[0], 0)
        else:
            distinct = list(dict.fromkeys(t.project_id for t in group))
            rate = (
                round_half_up(sum(rates.get(pid or "", 0) for pid in distinct) / len(distinct))
                if distinct
                else 0
            )
        item = InvoiceLineItem(
            description=f"Task Type: {task_type}",
            quantity=billable_quantity(hours),
            unit_price=rate,
            task_ids=[t.id for t in group],
        )
        items.append(item)
        total += item.amount_cents
    return items, total


def unbilled_amount(tasks: Iterable[Task], rates: dict[str, int]) -> UnbilledSummary:
    """Completed, not yet invoiced work priced per task at its project's rate."""
    billable = [t for t in tasks if t.is_completed and not t.is_invoiced]
    amount = sum(
        billable_quantity(t.billable_hours) * rates.get(t.project_id or "", 0)
        for t in billable
    )
    return UnbilledSummary(amount_cents=amount, completed_tasks=len(billable))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SmartDefaultsEngine:
    """Fills in the fields a user did not state, from the data already on file."""

    def __init__(
        self,
        search_client: CollectionSearchClient | None = None,
        *,
        today: Callable[[], date] = date.today,
        settings: Settings | None = None,
    ) -> None:
        self.search_client = search_client or CollectionSearchClient()
        self._today = today
        self._settings = settings or get_settings()

    # -- invoices ------------------------------------------------------------

    async def next_invoice_number(self) -> str | None:
        """``INV-<year>-<seq>`` one past the highest sequence seen this year.

        Pages through invoices until a short page or the configured page cap.
        Returns ``None`` if the first page cannot be read.
        """
        year = self._today().year
        pattern = re.compile(rf"^INV-{year}-(\d{{4}})$")
        page_size = self._settings.invoice_scan_page_size
        max_seq = 0

        for page in range(1, self._settings.invoice_scan_max_pages + 1):
            outcome = await self.search_client.list_related(
                EntityClass.INVOICE, page=page, size=page_size
            )
            if not outcome.ok:
                if page == 1:
                    return None
                logger.warning("Invoice number scan stopped at page %d", page)
                break
            for invoice in outcome.items:
                m = pattern.match(getattr(invoice, "invoice_number", "") or "")
                if m:
                    max_seq = max(max_seq, int(m.group(1)))
            if len(outcome.items) < page_size:
                break
        else:
            logger.warning(
                "Invoice number scan hit the %d-page cap on a full page; "
                "INV-%d-%04d may already be taken",
                self._settings.invoice_scan_max_pages, year, max_seq + 1,
            )

        return f"INV-{year}-{max_seq + 1:04d}"

    async def compute_invoice_defaults(self, customer: Customer | None) -> InvoiceDefaults:
        today = self._today()
        terms = normalize_payment_terms(
            (customer.payment_terms if customer else None) or DEFAULT_PAYMENT_TERMS
        )
        currency = DEFAULT_CURRENCY
        tax_rate = 0.0
        if customer is not None:
            extra = customer.model_extra or {}
            currency = customer.currency or extra.get("default_currency") or DEFAULT_CURRENCY
            tax_rate = customer.tax_rate or 0.0

        return InvoiceDefaults(
            invoice_number=await self.next_invoice_number(),
            invoice_date=today,
            due_date=today + timedelta(days=days_from_terms(terms)),
            currency=str(currency).upper(),
            payment_terms=terms,
            tax_rate_percent=tax_rate,
        )

    async def build_invoice_options_for_customer(
        self, customer_id: str
    ) -> InvoiceOptionsBundle | None:
        """Offer three billing scopes for the customer's completed work.

        A: completed tasks of completed projects only.
        B: completed tasks across all projects.
        C: the same items as B, for manual curation.

        Tasks already flagged as invoiced are never offered.  Returns ``None``
        if the bundle cannot be assembled.
        """
        try:
            return await self._build_invoice_options(customer_id)
        except Exception:
            logger.exception("Building invoice options failed for customer %s", customer_id)
            return None

    async def _build_invoice_options(self, customer_id: str) -> InvoiceOptionsBundle:
        customer, projects_outcome = await asyncio.gather(
            self.search_client.get_customer(customer_id),
            self.search_client.list_related(EntityClass.PROJECT, customer_id=customer_id),
        )
        projects: list[Project] = list(projects_outcome.items)
        rates = project_rates(projects)

        task_outcomes = await asyncio.gather(*(
            self.search_client.list_related(EntityClass.TASK, project_id=p.id)
            for p in projects
        ))
        all_tasks: list[Task] = [t for outcome in task_outcomes for t in outcome.items]
        completed = [t for t in all_tasks if t.is_completed and not t.is_invoiced]
        in_progress = [t for t in all_tasks if t.status.lower() == "in_progress"]

        completed_projects = [p for p in projects if p.status.lower() == "completed"]
        completed_project_ids = [p.id for p in completed_projects]
        completed_only = [t for t in completed if t.project_id in completed_project_ids]

        a_items, a_total = build_line_items(completed_only, rates, completed_project_ids)
        b_items, b_total = build_line_items(completed, rates)

        options: dict[OptionKey, InvoiceOption] = {
            "A": InvoiceOption(
                key="A",
                label="Completed project only",
                description="Invoice fully completed projects only",
                total_cents=a_total,
                items=a_items,
                project_ids=completed_project_ids,
            ),
            "B": InvoiceOption(
                key="B",
                label="Include partial work from both",
                description="Invoice completed work across all projects",
                total_cents=b_total,
                items=b_items,
            ),
            "C": InvoiceOption(
                key="C",
                label="Custom selection",
                description="Open item picker to choose tasks",
                total_cents=b_total,
                items=[item.model_copy(deep=True) for item in b_items],
            ),
        }

        if completed_projects and a_total > 0:
            recommended: OptionKey = "A"
        elif b_total > 0:
            recommended = "B"
        else:
            recommended = "C"

        project_amounts = []
        for project in completed_projects:
            _, amount = build_line_items(
                [t for t in completed_only if t.project_id == project.id], rates, [project.id]
            )
            project_amounts.append((project, amount))

        defaults = await self.compute_invoice_defaults(customer)
        summary = _bundle_summary(customer, customer_id, project_amounts, options, recommended)
        logger.info(
            "Invoice options for customer %s: A=%d B=%d recommended=%s",
            customer_id, a_total, b_total, recommended,
        )
        return InvoiceOptionsBundle(
            customer=customer,
            options=options,
            recommended=recommended,
            defaults=defaults,
            summary=summary,
            in_progress_task_count=len(in_progress),
        )

    async def compute_unbilled_for_customer(self, customer_id: str) -> UnbilledSummary:
        tasks_outcome, projects_outcome = await asyncio.gather(
            self.search_client.list_related(EntityClass.TASK, customer_id=customer_id),
            self.search_client.list_related(EntityClass.PROJECT, customer_id=customer_id),
        )
        if not tasks_outcome.ok:
            return UnbilledSummary()
        return unbilled_amount(tasks_outcome.items, project_rates(projects_outcome.items))

    async def fetch_customer_financial_summary(
        self, customer_id: str
    ) -> CustomerFinancialSummary:
        outcome = await self.search_client.list_related(
            EntityClass.INVOICE, size=FINANCIAL_SUMMARY_PAGE_SIZE, customer_id=customer_id
        )
        invoices: list[Invoice] = list(outcome.items)
        if not invoices:
            return CustomerFinancialSummary()

        def issued_on(inv: Invoice) -> str:
            return inv.invoice_date or (inv.model_extra or {}).get("created_at") or ""

        last = max(invoices, key=issued_on)
        overdue = sorted(
            (
                OverdueInvoice(
                    id=inv.id,
                    invoice_number=inv.invoice_number,
                    amount_cents=round_half_up(inv.balance_due or inv.total_amount),
                    days_overdue=inv.days_overdue,
                )
                for inv in invoices
                if inv.status.lower() == "overdue" or inv.days_overdue > 0
            ),
            key=lambda o: o.days_overdue,
            reverse=True,
        )
        return CustomerFinancialSummary(
            last_invoice=LastInvoice(
                id=last.id,
                invoice_number=last.invoice_number,
                amount_cents=round_half_up(last.total_amount),
                status=last.status,
                invoice_date=last.invoice_date,
            ),
            overdue_invoices=overdue,
            total_outstanding_cents=round_half_up(sum(inv.balance_due for inv in invoices)),
        )

    # -- projects & tasks ----------------------------------------------------

    async def compute_project_defaults(
        self,
        name: str,
        description: str = "",
        current_user: TeamMember | None = None,
    ) -> ProjectDefaults:
        owner_id: str | None = None
        suggested_pm: TeamMember | None = None

        role = (current_user.role if current_user else "").upper()
        if current_user is not None and any(r in role for r in _OWNER_ROLES):
            owner_id = current_user.id
        else:
            suggested_pm = await self._least_loaded_pm()
            owner_id = suggested_pm.id if suggested_pm else None

        return ProjectDefaults(
            start_date=next_monday(self._today()),
            priority=detect_priority_from_text(f"{name} {description}"),
            owner_id=owner_id,
            suggested_pm=suggested_pm,
            budget_estimate_cents=await self._estimate_budget(name),
        )

    async def _least_loaded_pm(self) -> TeamMember | None:
        outcome = await self.search_client.list_related(EntityClass.TEAM)
        candidates = [m for m in outcome.items if _PM_ROLE_RE.search(m.role or "")]
        if not candidates:
            return None
        return min(candidates, key=lambda m: m.current_workload_hours or 0)

    async def _estimate_budget(self, name: str) -> int | None:
        tokens = name.lower().split()[:2]
        if not tokens:
            return None
        outcome = await self.search_client.search(
            EntityClass.PROJECT, " ".join(tokens), SIMILAR_RECORDS_LIMIT
        )
        budgets = [
            p.budget
            for p in outcome.items
            if p.name.lower().split()[:2] == tokens and (p.budget or 0) > 0
        ]
        if not budgets:
            return None
        return round_half_up(sum(budgets) / len(budgets))

    async def compute_task_defaults(
        self,
        title: str,
        project: Project | None = None,
        assignee: TeamMember | None = None,
        project_start: str | date | None = None,
    ) -> TaskDefaults:
        priority = detect_priority_from_text(title)
        if project is not None and project.priority.lower() == "high":
            priority = "High"

        estimated_hours = await self._median_similar_hours(title)

        start = (
            parse_day(project_start)
            or (parse_day(project.start_date) if project else None)
            or self._today()
        )
        days = max(1, math.ceil((estimated_hours or ASSUMED_TASK_HOURS) / PRODUCTIVE_HOURS_PER_DAY))

        return TaskDefaults(
            priority=priority,
            status="todo",
            estimated_hours=estimated_hours,
            due_date=start + timedelta(days=days),
            hourly_rate_cents=(project.hourly_rate_cents or None) if project else None,
            assignee_id=assignee.id if assignee else None,
        )

    async def _median_similar_hours(self, title: str) -> float | None:
        if not title.strip():
            return None
        outcome = await self.search_client.search(EntityClass.TASK, title, SIMILAR_RECORDS_LIMIT)
        hours = [
            float(t.estimated_hours or t.actual_hours or 0)
            for t in outcome.items
        ]
        hours = [h for h in hours if h > 0]
        if not hours:
            return None
        return median_high(hours)


def _bundle_summary(
    customer: Customer | None,
    customer_id: str,
    project_amounts: list[tuple[Project, int]],
    options: dict[OptionKey, InvoiceOption],
    recommended: OptionKey,
) -> str:
    name = customer.label if customer else "Customer"
    lines = [f"Found {name} ({customer.id if customer else customer_id})"]
    for project, amount in project_amounts:
        lines.append(
            f"\nProject: {project.name} (#{project.id})\n"
            f"Status: Completed\n"
            f"Amount: ${format_cents(amount)}\n"
            f"Ready to invoice"
        )

    def tag(key: OptionKey) -> str:
        return " [RECOMMENDED]" if key == recommended else ""

    lines += [
        "\nOptions:",
        f"A) {options['A'].label} - ${format_cents(options['A'].total_cents)}{tag('A')}",
        f"B) {options['B'].label} - ${format_cents(options['B'].total_cents)}{tag('B')}",
        f"C) {options['C'].label} (let me choose tasks)"
        f" - ${format_cents(options['C'].total_cents)}{tag('C')}",
        '\nJust say "A", "B", "C" or tell me what you want.',
    ]
    return "\n".join(lines)
