"""Tests for the confidence scorer — heuristic trust estimate."""

import pytest

from models.entity import (
    Customer,
    EntityClass,
    Intent,
    Project,
    ResolvedContext,
    Task,
    TeamMember,
    empty_extraction,
)
from services.confidence import ConfidenceScorer

scorer = ConfidenceScorer()


def _entities(**by_class):
    entities = empty_extraction()
    for name, values in by_class.items():
        entities[EntityClass(name)] = values
    return entities


def _context(customers=0, projects=0, tasks=0, team=0):
    return ResolvedContext(
        customers=[Customer(id=f"c{i}") for i in range(customers)],
        projects=[Project(id=f"p{i}") for i in range(projects)],
        tasks=[Task(id=f"t{i}") for i in range(tasks)],
        team_members=[TeamMember(id=f"u{i}") for i in range(team)],
    )


def test_base_confidence_without_entities():
    assert scorer.score(empty_extraction(), _context(), Intent.GENERAL) == 0.5


def test_grounded_boost_requires_entities_and_results():
    entities = _entities(customer=["Acme"])
    assert scorer.score(entities, _context(), Intent.GENERAL) == 0.5
    assert scorer.score(empty_extraction(), _context(customers=1), Intent.GENERAL) == 0.5
    assert scorer.score(entities, _context(customers=1), Intent.GENERAL) == pytest.approx(0.8)


@pytest.mark.parametrize("intent,context,expected", [
    (Intent.CREATE_INVOICE, dict(customers=1), 1.0),
    (Intent.CREATE_INVOICE, dict(tasks=1), 0.9),
    (Intent.CREATE_INVOICE, dict(projects=1), 0.9),
    (Intent.UPDATE_STATUS, dict(projects=1), 1.0),
    (Intent.UPDATE_STATUS, dict(customers=1), 0.8),
    (Intent.ASSIGN_TASK, dict(tasks=1), 0.8),
    (Intent.ASSIGN_TASK, dict(tasks=1, team=1), 1.0),
    (Intent.SHOW_OVERDUE, dict(tasks=1), 0.8),
])
def test_intent_boosts(intent, context, expected):
    entities = _entities(customer=["x1"])
    assert scorer.score(entities, _context(**context), intent) == pytest.approx(expected)


def test_ambiguity_penalty_above_ten_results():
    entities = _entities(customer=["Acme"])
    assert scorer.score(entities, _context(customers=10), Intent.GENERAL) == pytest.approx(0.8)
    assert scorer.score(entities, _context(customers=11), Intent.GENERAL) == pytest.approx(0.6)


def test_clamped_to_one():
    entities = _entities(customer=["Acme"])
    score = scorer.score(entities, _context(customers=1, tasks=1, projects=1), Intent.CREATE_INVOICE)
    assert score == 1.0


def test_score_always_in_unit_interval():
    entities = _entities(customer=["Acme"], task=["homepage"])
    for intent in Intent:
        for size in (0, 1, 5, 11, 30):
            score = scorer.score(entities, _context(customers=size, tasks=size, team=size), intent)
            assert 0.0 <= score <= 1.0


def test_suggestions_for_invoice_without_customer():
    hints = scorer.suggestions(_entities(project=["Apollo"]), Intent.CREATE_INVOICE)
    assert any("customer name" in h for h in hints)


def test_suggestions_for_status_update_without_target():
    hints = scorer.suggestions(_entities(customer=["Acme"]), Intent.UPDATE_STATUS)
    assert any("project or task" in h for h in hints)


def test_suggestions_when_nothing_extracted():
    hints = scorer.suggestions(empty_extraction(), Intent.GENERAL)
    assert "Try being more specific with names or IDs" in hints
    assert any("@ mentions" in h for h in hints)
