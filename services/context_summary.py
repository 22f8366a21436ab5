"""Context presentation helpers — summary line, enriched prompt, suggested actions.

Pure functions over a :class:`ResolvedContext`; no data access.  The enriched
prompt is the text handed to a downstream LLM or dispatcher so it can act on
the resolved entities instead of re-guessing them from the raw request.
"""

from __future__ import annotations

import re

from models.entity import (
    Intent,
    ResolvedContext,
    StructuredEntities,
    SuggestedAction,
)

_DATE_RE = re.compile(
    r"\b(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}|\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"
    r"|today|tomorrow|next week|next month)\b",
    re.IGNORECASE,
)
_AMOUNT_RE = re.compile(r"\$?\d[\d,]*(?:\.\d+)?")


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count > 1 else ''}"


def _percent(confidence: float) -> str:
    return f"{confidence * 100:.0f}%"


def _dollars(cents: float) -> str:
    return f"${cents / 100:.2f}"


def summarize_context(context: ResolvedContext) -> str:
    """One line such as ``Found 1 customer, 2 projects (90% confidence)``."""
    parts = [
        _plural(len(records), noun)
        for records, noun in (
            (context.customers, "customer"),
            (context.projects, "project"),
            (context.tasks, "task"),
            (context.invoices, "invoice"),
            (context.team_members, "team member"),
        )
        if records
    ]
    if not parts:
        return "No relevant context found"
    return f"Found {', '.join(parts)} ({_percent(context.confidence)} confidence)"


def extract_structured_entities(text: str, context: ResolvedContext) -> StructuredEntities:
    """Pick the most relevant record of each kind and literal date/amount mentions."""
    return StructuredEntities(
        customer=context.customers[0] if context.customers else None,
        project=context.projects[0] if context.projects else None,
        tasks=list(context.tasks),
        assignee=context.team_members[0] if context.team_members else None,
        dates=_DATE_RE.findall(text),
        # Digits inside a date are not amounts
        amounts=[re.sub(r"[$,]", "", m) for m in _AMOUNT_RE.findall(_DATE_RE.sub(" ", text))],
    )


def build_enriched_prompt(text: str, context: ResolvedContext, intent: Intent) -> str:
    lines = [f'User Request: "{text}"', "", "Context Information:"]

    if context.customers:
        lines += ["", f"Customers found ({len(context.customers)}):"]
        for i, c in enumerate(context.customers, start=1):
            lines.append(f"{i}. {c.label} (ID: {c.id})")
            if c.company_name:
                lines.append(f"   Company: {c.company_name}")
            if c.email:
                lines.append(f"   Email: {c.email}")
            if c.payment_terms:
                lines.append(f"   Payment Terms: {c.payment_terms}")
            if c.due_amount:
                lines.append(f"   Outstanding Amount: {_dollars(c.due_amount)}")

    if context.projects:
        lines += ["", f"Projects found ({len(context.projects)}):"]
        for i, p in enumerate(context.projects, start=1):
            lines += [
                f"{i}. {p.name} (ID: {p.id})",
                f"   Status: {p.status}",
                f"   Priority: {p.priority}",
            ]
            if p.budget:
                lines.append(f"   Budget: {_dollars(p.budget)}")
            if p.customer_id:
                lines.append(f"   Customer ID: {p.customer_id}")

    if context.tasks:
        lines += ["", f"Tasks found ({len(context.tasks)}):"]
        for i, t in enumerate(context.tasks, start=1):
            lines += [
                f"{i}. {t.title} (ID: {t.id})",
                f"   Status: {t.status}",
                f"   Priority: {t.priority}",
            ]
            if t.assignee_id:
                lines.append(f"   Assignee ID: {t.assignee_id}")
            if t.due_date:
                lines.append(f"   Due Date: {t.due_date}")
            if t.estimated_hours:
                lines.append(f"   Estimated: {t.estimated_hours:g}h")
            if t.actual_hours:
                lines.append(f"   Actual: {t.actual_hours:g}h")

    if context.invoices:
        lines += ["", f"Invoices found ({len(context.invoices)}):"]
        for i, inv in enumerate(context.invoices, start=1):
            lines += [
                f"{i}. {inv.invoice_number} (ID: {inv.id})",
                f"   Status: {inv.status}",
                f"   Total: {_dollars(inv.total_amount)}",
                f"   Due Date: {inv.due_date or 'n/a'}",
            ]
            if inv.customer_id:
                lines.append(f"   Customer ID: {inv.customer_id}")

    if context.team_members:
        lines += ["", f"Team Members found ({len(context.team_members)}):"]
        for i, m in enumerate(context.team_members, start=1):
            lines += [
                f"{i}. {m.full_name} (@{m.username}) (ID: {m.id})",
                f"   Role: {m.role}",
            ]
            if m.email:
                lines.append(f"   Email: {m.email}")

    lines += ["", f"Context Confidence: {_percent(context.confidence)}"]
    if context.suggestions:
        lines += ["", "Suggestions for improvement:", *(f"- {s}" for s in context.suggestions)]
    lines += [
        "",
        f"Detected Intent: {intent.value}",
        "",
        "Instructions: Use the above context to process the user's request accurately. "
        "If creating invoices, use the customer and project information. "
        "If updating status, reference the specific projects or tasks found. "
        "If assigning tasks, use the team member information.",
    ]
    return "\n".join(lines)


def suggest_actions(intent: Intent, context: ResolvedContext) -> list[SuggestedAction]:
    actions: list[SuggestedAction] = []

    if intent is Intent.CREATE_INVOICE:
        if len(context.customers) == 1 and context.tasks:
            completed = [t for t in context.tasks if t.is_completed]
            if completed:
                hours = sum(t.actual_hours or 0 for t in completed)
                actions.append(SuggestedAction(
                    action="create_invoice",
                    description=(
                        f"Create invoice for {context.customers[0].label} with "
                        f"{len(completed)} completed tasks ({hours:g} hours)"
                    ),
                    confidence=0.9,
                ))

    elif intent is Intent.UPDATE_STATUS:
        if len(context.projects) == 1:
            project = context.projects[0]
            actions.append(SuggestedAction(
                action="update_project_status",
                description=(
                    f'Update status for project "{project.name}" (currently {project.status})'
                ),
                confidence=0.85,
            ))
        if context.tasks:
            actions.append(SuggestedAction(
                action="update_task_status",
                description=f"Update status for {_plural(len(context.tasks), 'task')}",
                confidence=0.8,
            ))

    elif intent is Intent.ASSIGN_TASK:
        if context.tasks and context.team_members:
            assignee = context.team_members[0]
            actions.append(SuggestedAction(
                action="assign_tasks",
                description=(
                    f"Assign {_plural(len(context.tasks), 'task')} to "
                    f"{assignee.full_name or assignee.username}"
                ),
                confidence=0.85,
            ))

    return actions
