"""Tests for the intent classifier — ordered table, first match wins."""

import pytest

from models.entity import Intent
from services.intent_classifier import INTENT_TABLE, IntentClassifier

classifier = IntentClassifier()


@pytest.mark.parametrize("text,expected", [
    ("create invoice for Acme", Intent.CREATE_INVOICE),
    ("Generate an invoice for Globex", Intent.CREATE_INVOICE),
    ("bill to Initech", Intent.CREATE_INVOICE),
    ("update status of project Apollo", Intent.UPDATE_STATUS),
    ("mark as done", Intent.UPDATE_STATUS),
    ("assign task homepage to @john", Intent.ASSIGN_TASK),
    ("give task to maria", Intent.ASSIGN_TASK),
    ("show my overdue tasks", Intent.SHOW_OVERDUE),
    ("list overdue invoices", Intent.SHOW_OVERDUE),
    ("new project Apollo", Intent.CREATE_PROJECT),
    ("add task write release notes", Intent.CREATE_TASK),
    ("", Intent.GENERAL),
    ("hello there", Intent.GENERAL),
])
def test_classify(text, expected):
    assert classifier.classify(text) is expected


def test_case_insensitive():
    assert classifier.classify("CREATE INVOICE FOR ACME") is Intent.CREATE_INVOICE


def test_declaration_order_breaks_ties():
    # Matches both CREATE_INVOICE and ASSIGN_TASK
    text = "create invoice for Acme and assign task to john"
    assert classifier.classify(text) is Intent.CREATE_INVOICE


def test_table_order():
    intents = [intent for intent, _ in INTENT_TABLE]
    assert intents[0] is Intent.CREATE_INVOICE
    assert Intent.GENERAL not in intents


def test_custom_table():
    custom = IntentClassifier(table=())
    assert custom.classify("create invoice for Acme") is Intent.GENERAL
