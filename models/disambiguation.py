"""Disambiguation models — structured multi-choice prompts issued instead of acting.

A :class:`DisambiguationPrompt` pairs the numbered plain-text presentation
shown in chat with a :class:`PendingChoice` the caller keeps until the user's
next reply, which is matched with :meth:`PendingChoice.match_reply`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from models.base import CamelModel


class ChoiceKind(str, Enum):
    """Which disambiguation branch produced the pending choice."""

    CUSTOMER_DISAMBIGUATION = "customer_disambiguation"
    NO_BILLABLE_WORK = "no_billable_work"
    CREDIT_RISK = "credit_risk"
    INVOICE_OPTIONS = "invoice_options"
    LOW_CONFIDENCE = "low_confidence"


class ChoiceOption(CamelModel):
    """A single selectable answer."""

    key: str  # "1".."n" or "A".."C"
    label: str
    action: str
    value: str = ""


class PendingChoice(CamelModel):
    """Choice state the caller stores until the user answers."""

    kind: ChoiceKind
    options: list[ChoiceOption] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    allow_requery: bool = False

    def match_reply(self, reply: str) -> ChoiceOption | None:
        """Map a short reply such as ``"2"``, ``"b"`` or ``"B)"`` to an option."""
        cleaned = reply.strip().rstrip(".)").strip().upper()
        if not cleaned:
            return None
        for option in self.options:
            if option.key.upper() == cleaned:
                return option
        return None

    def wants_requery(self, reply: str) -> bool:
        """True when the reply asks to search again (``@...``)."""
        return self.allow_requery and reply.strip().startswith("@")


class DisambiguationPrompt(CamelModel):
    """Presentation text plus the pending choice it opens."""

    presentation: str
    pending_choice: PendingChoice
