"""Entity pattern extractor — literal candidate strings per entity class.

Applies an ordered list of regex templates for each entity class (customer,
project, task, invoice, team member) to the raw user text.  Every
non-overlapping match contributes its first capture group.  Classes are
extracted independently, so one token may be a candidate for several classes;
the search step decides which of them are real.

Pure and deterministic: no data access, no state.
"""

from __future__ import annotations

import re

from models.entity import EntityClass, ExtractedEntities, empty_extraction

# Candidate length window: [MIN_CANDIDATE_LENGTH, MAX_CANDIDATE_LENGTH)
MIN_CANDIDATE_LENGTH = 2
MAX_CANDIDATE_LENGTH = 100

# A name-ish run of characters, and what may follow it.
_NAME = r"[a-zA-Z0-9\s&\-\.]+?"
_HANDLE = r"[a-zA-Z0-9\s\-\.]+?"
_CODE = r"[a-zA-Z0-9\-]+?"
_END = r"(?:\s|$|,|\.|!|\?)"

_FLAGS = re.IGNORECASE

# ---------------------------------------------------------------------------
# Pattern templates, in application order per class
# ---------------------------------------------------------------------------

ENTITY_PATTERNS: dict[EntityClass, tuple[re.Pattern[str], ...]] = {
    EntityClass.CUSTOMER: (
        re.compile(rf"(?:customer|client|for)\s+({_NAME}){_END}", _FLAGS),
        re.compile(rf"(?:invoice|bill)\s+(?:for\s+)?({_NAME}){_END}", _FLAGS),
        # Bare short text is treated as a customer name
        re.compile(r"^([a-zA-Z0-9\s&\-\.]{2,30})$", _FLAGS),
    ),
    EntityClass.PROJECT: (
        re.compile(rf"(?:project|proj)\s+({_NAME}){_END}", _FLAGS),
        re.compile(rf"(?:update|status|for)\s+({_NAME}){_END}", _FLAGS),
    ),
    EntityClass.TASK: (
        re.compile(rf"(?:task|todo)\s+({_NAME}){_END}", _FLAGS),
        re.compile(rf"(?:assign|reassign)\s+({_NAME}){_END}", _FLAGS),
    ),
    EntityClass.INVOICE: (
        re.compile(rf"(?:invoice|inv)\s+(?:#)?({_CODE}){_END}", _FLAGS),
        re.compile(rf"(?:invoice|bill)\s+(?:number\s+)?({_CODE}){_END}", _FLAGS),
    ),
    EntityClass.TEAM: (
        re.compile(rf"(?:assign|reassign)\s+(?:to\s+)?@?({_HANDLE}){_END}", _FLAGS),
        re.compile(rf"@({_HANDLE}){_END}", _FLAGS),
    ),
}


def _accept(candidate: str) -> bool:
    return MIN_CANDIDATE_LENGTH <= len(candidate) < MAX_CANDIDATE_LENGTH


def extract_candidates(text: str, patterns: tuple[re.Pattern[str], ...]) -> list[str]:
    """Run *patterns* over *text* in order and collect accepted group-1 matches.

    Duplicates are kept; the resolver de-duplicates search results, not terms.
    """
    candidates: list[str] = []
    for pat in patterns:
        for m in pat.finditer(text):
            raw = m.group(1)
            if raw is None:
                continue
            candidate = raw.strip()
            if _accept(candidate):
                candidates.append(candidate)
    return candidates


class EntityPatternExtractor:
    """Extract raw candidate strings for every entity class."""

    def __init__(
        self,
        patterns: dict[EntityClass, tuple[re.Pattern[str], ...]] | None = None,
    ) -> None:
        self._patterns = patterns or ENTITY_PATTERNS

    def extract(self, text: str) -> ExtractedEntities:
        """Return ``{entity class → candidates}``; every class key is present."""
        entities = empty_extraction()
        for entity_class, patterns in self._patterns.items():
            entities[entity_class] = extract_candidates(text, patterns)
        return entities


def count_candidates(entities: ExtractedEntities) -> int:
    return sum(len(v) for v in entities.values())
