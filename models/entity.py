"""Context resolution models — entities, intents, queries and resolved output.

Defines the backend record types the resolver pulls from the five collections
(customers, projects, tasks, invoices, team members) and the containers that
carry a resolution from raw text to a :class:`ResolvedCommand`.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import ConfigDict, Field, field_validator

from models.base import BackendRecord, CamelModel
from models.disambiguation import PendingChoice


class EntityClass(str, Enum):
    """Domain categories the resolver searches."""

    CUSTOMER = "customer"
    PROJECT = "project"
    TASK = "task"
    INVOICE = "invoice"
    TEAM = "team"


class EntityTypeFilter(str, Enum):
    """Restricts a resolution to one entity class, or ``all``."""

    CUSTOMER = "customer"
    PROJECT = "project"
    TASK = "task"
    INVOICE = "invoice"
    TEAM = "team"
    ALL = "all"

    def as_entity_class(self) -> EntityClass | None:
        if self is EntityTypeFilter.ALL:
            return None
        return EntityClass(self.value)


class Intent(str, Enum):
    """Classified purpose of a user utterance."""

    CREATE_INVOICE = "CREATE_INVOICE"
    UPDATE_STATUS = "UPDATE_STATUS"
    ASSIGN_TASK = "ASSIGN_TASK"
    SHOW_OVERDUE = "SHOW_OVERDUE"
    CREATE_PROJECT = "CREATE_PROJECT"
    CREATE_TASK = "CREATE_TASK"
    GENERAL = "GENERAL"


# ── Backend records ──────────────────────────────────────────


def _stringify_id(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class _IdentifiedRecord(BackendRecord):
    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return _stringify_id(value)


class Customer(_IdentifiedRecord):
    display_name: str = ""
    company_name: str = ""
    full_name: str = ""
    email: str = ""
    payment_terms: str | None = None
    due_amount: float = 0
    currency: str | None = None
    tax_rate: float | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.company_name or self.full_name or self.id


class Project(_IdentifiedRecord):
    name: str = ""
    status: str = ""
    priority: str = ""
    budget: float | None = None  # cents
    hourly_rate: float | None = None  # currency units per hour
    start_date: str | None = None
    customer_id: str | None = None
    owner_id: str | None = None

    @field_validator("customer_id", "owner_id", mode="before")
    @classmethod
    def _ref_to_str(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @property
    def hourly_rate_cents(self) -> int:
        return round_half_up((self.hourly_rate or 0) * 100)


class Task(_IdentifiedRecord):
    title: str = ""
    status: str = ""
    priority: str = ""
    assignee_id: str | None = None
    due_date: str | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    project_id: str | None = None
    task_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("assignee_id", "project_id", mode="before")
    @classmethod
    def _ref_to_str(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_or_empty(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @property
    def is_completed(self) -> bool:
        return self.status.lower() == "completed"

    @property
    def is_invoiced(self) -> bool:
        return bool(self.metadata.get("invoiced"))

    @property
    def billable_hours(self) -> float:
        """Actual hours, else estimate, else one hour."""
        return float(self.actual_hours or self.estimated_hours or 1)


class Invoice(_IdentifiedRecord):
    invoice_number: str = ""
    status: str = ""
    total_amount: float = 0  # cents
    balance_due: float = 0  # cents
    due_date: str | None = None
    invoice_date: str | None = None
    days_overdue: int = 0
    customer_id: str | None = None

    @field_validator("customer_id", mode="before")
    @classmethod
    def _ref_to_str(cls, value: Any) -> str | None:
        return None if value is None else str(value)

    @field_validator("days_overdue", mode="before")
    @classmethod
    def _days_or_zero(cls, value: Any) -> int:
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0


class TeamMember(_IdentifiedRecord):
    username: str = ""
    full_name: str = ""
    role: str = ""
    email: str = ""
    current_workload_hours: float = 0


# ── Resolution containers ────────────────────────────────────


ExtractedEntities = dict[EntityClass, list[str]]
"""Entity class → raw candidate substrings, in order of appearance."""


def empty_extraction() -> ExtractedEntities:
    return {cls: [] for cls in EntityClass}


class ContextQuery(CamelModel):
    """One resolution request; immutable once built."""

    model_config = ConfigDict(frozen=True)

    text: str
    entity_type_filter: EntityTypeFilter = EntityTypeFilter.ALL
    limit: int = Field(default=10, gt=0)

    @property
    def cache_key(self) -> tuple[str, str, int]:
        return (self.text, self.entity_type_filter.value, self.limit)


class ResolvedContext(CamelModel):
    """Entities matched for a query, with a confidence in ``[0, 1]``."""

    customers: list[Customer] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    invoices: list[Invoice] = Field(default_factory=list)
    team_members: list[TeamMember] = Field(default_factory=list)
    confidence: float = 0.0
    suggestions: list[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(1.0, max(0.0, value))

    @field_validator("customers", "projects", "tasks", "invoices", "team_members")
    @classmethod
    def _dedupe_by_id(cls, records: list) -> list:
        return dedupe_by_id(records)

    def total_results(self) -> int:
        return (
            len(self.customers)
            + len(self.projects)
            + len(self.tasks)
            + len(self.invoices)
            + len(self.team_members)
        )


class StructuredEntities(CamelModel):
    """Most likely referents plus literal date and amount mentions."""

    customer: Customer | None = None
    project: Project | None = None
    tasks: list[Task] = Field(default_factory=list)
    assignee: TeamMember | None = None
    dates: list[str] = Field(default_factory=list)
    amounts: list[str] = Field(default_factory=list)


class SuggestedAction(CamelModel):
    action: str
    description: str
    confidence: float


class ResolvedCommand(CamelModel):
    """Engine output handed to the caller; the engine keeps no reference."""

    original_text: str
    intent: Intent = Intent.GENERAL
    entities: dict[EntityClass, list[str]] = Field(default_factory=empty_extraction)
    context: ResolvedContext = Field(default_factory=ResolvedContext)
    suggested_parameters: dict[str, Any] = Field(default_factory=dict)
    structured_entities: StructuredEntities = Field(default_factory=StructuredEntities)
    pending_choice: PendingChoice | None = None
    presentation: str = ""
    summary: str = ""
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)
    enriched_prompt: str = ""
    is_actionable: bool = False


# ── Helpers ──────────────────────────────────────────────────


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 → 3)."""
    return int(math.floor(value + 0.5))


def dedupe_by_id(records: list) -> list:
    """Drop records whose ``id`` was already seen, keeping first-seen order."""
    seen: set[str] = set()
    unique = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append(record)
    return unique
