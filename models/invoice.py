"""Smart-default models — invoice defaults, A/B/C option bundles, project and task defaults.

Monetary values are integer cents; line-item tax and discount rates are basis
points.
"""

from __future__ import annotations

from datetime import date
from typing import Literal

from pydantic import Field, model_validator

from models.base import CamelModel
from models.entity import Customer, TeamMember

OptionKey = Literal["A", "B", "C"]
Priority = Literal["Low", "Medium", "High"]


class InvoiceDefaults(CamelModel):
    """Defaults for a new invoice; ``due_date`` follows from ``payment_terms``."""

    invoice_number: str | None = None
    # The number is "max seen + 1" without a lock; it is a preview only and
    # must be re-assigned by whatever commits the invoice.
    invoice_number_provisional: bool = True
    invoice_date: date
    due_date: date
    currency: str = "USD"
    payment_terms: str = "net_30"
    tax_rate_percent: float = 0


class InvoiceLineItem(CamelModel):
    description: str
    quantity: int
    unit_price: int  # cents
    item_type: str = "service"
    tax_rate: int = 0  # basis points
    discount_rate: int = 0  # basis points
    task_ids: list[str] = Field(default_factory=list)

    @property
    def amount_cents(self) -> int:
        return self.quantity * self.unit_price


class InvoiceOption(CamelModel):
    """One billing scope offered before invoice creation."""

    key: OptionKey
    label: str
    description: str
    total_cents: int = 0
    items: list[InvoiceLineItem] = Field(default_factory=list)
    project_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _total_matches_items(self) -> InvoiceOption:
        expected = sum(item.amount_cents for item in self.items)
        if self.total_cents != expected:
            raise ValueError(
                f"option {self.key}: total_cents={self.total_cents} "
                f"but items sum to {expected}"
            )
        return self


class InvoiceOptionsBundle(CamelModel):
    """Three alternative billing scopes for one customer, with a recommendation."""

    customer: Customer | None = None
    options: dict[OptionKey, InvoiceOption]
    recommended: OptionKey
    defaults: InvoiceDefaults
    summary: str
    in_progress_task_count: int = 0

    @model_validator(mode="after")
    def _recommended_is_offered(self) -> InvoiceOptionsBundle:
        if self.recommended not in self.options:
            raise ValueError(f"recommended option {self.recommended!r} is not offered")
        return self


class ProjectDefaults(CamelModel):
    start_date: date
    priority: Priority = "Medium"
    owner_id: str | None = None
    suggested_pm: TeamMember | None = None
    budget_estimate_cents: int | None = None


class TaskDefaults(CamelModel):
    priority: Priority = "Medium"
    status: Literal["todo", "draft"] = "todo"
    estimated_hours: float | None = None
    due_date: date | None = None
    hourly_rate_cents: int | None = None
    assignee_id: str | None = None


class LastInvoice(CamelModel):
    id: str
    invoice_number: str = ""
    amount_cents: int = 0
    status: str = ""
    invoice_date: str | None = None


class OverdueInvoice(CamelModel):
    id: str
    invoice_number: str = ""
    amount_cents: int = 0
    days_overdue: int = 0


class CustomerFinancialSummary(CamelModel):
    last_invoice: LastInvoice | None = None
    overdue_invoices: list[OverdueInvoice] = Field(default_factory=list)
    total_outstanding_cents: int = 0


class UnbilledSummary(CamelModel):
    amount_cents: int = 0
    completed_tasks: int = 0
