"""Intent classifier — ordered pattern table, first match wins.

The table is an immutable tuple so its order is the only tie-breaker: more
specific intents are declared before broader ones, and an utterance matching
several intents resolves to whichever is declared first.  Anything that
matches nothing is ``GENERAL``.
"""

from __future__ import annotations

import re

from models.entity import Intent

_FLAGS = re.IGNORECASE


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, _FLAGS) for p in patterns)


INTENT_TABLE: tuple[tuple[Intent, tuple[re.Pattern[str], ...]], ...] = (
    (
        Intent.CREATE_INVOICE,
        _compile(
            r"create\s+(?:an?\s+)?invoice",
            r"(?:invoice|bill)\s+(?:for|to)",
            r"generate\s+(?:an?\s+)?invoice",
        ),
    ),
    (
        Intent.UPDATE_STATUS,
        _compile(
            r"update\s+status",
            r"change\s+status",
            r"mark\s+(?:as\s+)?(?:completed|done|finished|cancelled|on.hold)",
        ),
    ),
    (
        Intent.ASSIGN_TASK,
        _compile(
            r"assign\s+(?:task)?",
            r"reassign\s+(?:task)?",
            r"give\s+(?:task\s+)?to",
        ),
    ),
    (
        Intent.SHOW_OVERDUE,
        _compile(
            r"show\s+(?:my\s+)?overdue",
            r"list\s+overdue",
            r"overdue\s+(?:tasks|projects|invoices)",
        ),
    ),
    (
        Intent.CREATE_PROJECT,
        _compile(
            r"create\s+(?:a\s+)?project",
            r"new\s+project",
            r"start\s+project",
        ),
    ),
    (
        Intent.CREATE_TASK,
        _compile(
            r"create\s+(?:a\s+)?task",
            r"new\s+task",
            r"add\s+task",
        ),
    ),
)


class IntentClassifier:
    """Classify raw text into one :class:`Intent`."""

    def __init__(
        self,
        table: tuple[tuple[Intent, tuple[re.Pattern[str], ...]], ...] = INTENT_TABLE,
    ) -> None:
        self._table = table

    def classify(self, text: str) -> Intent:
        for intent, patterns in self._table:
            if any(p.search(text) for p in patterns):
                return intent
        return Intent.GENERAL
