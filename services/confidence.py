"""Confidence scorer — heuristic trust estimate for an automatic resolution.

The score is the single gate callers use: at or above the action threshold
the command may run unattended, below it the user is asked to disambiguate.
"""

from __future__ import annotations

from models.entity import EntityClass, ExtractedEntities, Intent, ResolvedContext
from services.entity_extractor import count_candidates

BASE_CONFIDENCE = 0.5
GROUNDED_BOOST = 0.3  # extraction found something and it matched real data
AMBIGUITY_PENALTY = 0.2
AMBIGUOUS_RESULT_COUNT = 10  # strictly more results than this is ambiguous


def clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class ConfidenceScorer:
    """Score resolutions and propose rephrasings when the score is low."""

    def score(
        self,
        entities: ExtractedEntities,
        context: ResolvedContext,
        intent: Intent,
    ) -> float:
        confidence = BASE_CONFIDENCE
        total_results = context.total_results()

        if count_candidates(entities) > 0 and total_results > 0:
            confidence += GROUNDED_BOOST

        if intent is Intent.CREATE_INVOICE:
            if context.customers:
                confidence += 0.2
            if context.tasks:
                confidence += 0.1
            if context.projects:
                confidence += 0.1
        elif intent is Intent.UPDATE_STATUS:
            if context.projects or context.tasks:
                confidence += 0.3
        elif intent is Intent.ASSIGN_TASK:
            if context.tasks and context.team_members:
                confidence += 0.3

        if total_results > AMBIGUOUS_RESULT_COUNT:
            confidence -= AMBIGUITY_PENALTY

        # Rounded so stacked float boosts compare cleanly against thresholds
        return clamp(round(confidence, 4))

    def suggestions(self, entities: ExtractedEntities, intent: Intent) -> list[str]:
        """Hints for making a low-confidence request more specific."""
        hints: list[str] = []

        if intent is Intent.CREATE_INVOICE and not entities.get(EntityClass.CUSTOMER):
            hints.append(
                'Try specifying the customer name more clearly '
                '(e.g., "Create invoice for Acme Corp")'
            )

        if (
            intent is Intent.UPDATE_STATUS
            and not entities.get(EntityClass.PROJECT)
            and not entities.get(EntityClass.TASK)
        ):
            hints.append(
                'Please specify which project or task to update '
                '(e.g., "Update Project Alpha status")'
            )

        if count_candidates(entities) == 0:
            hints.append("Try being more specific with names or IDs")
            hints.append("Use @ mentions for team members (e.g., @john)")

        return hints
