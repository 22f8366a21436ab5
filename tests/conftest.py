"""Shared pytest fixtures for the context resolution tests.

Provides:
- ``today``: fixed calendar day (a Wednesday) for date-dependent defaults
- ``acme_backend``: fake backend loaded with :func:`tests.fakes.acme_records`
- ``search_client``: CollectionSearchClient over ``acme_backend``
- ``engine``: ContextEngine wired to ``acme_backend`` with an isolated cache
"""

from __future__ import annotations

from datetime import date

import pytest

from services.collection_search import CollectionSearchClient
from services.context_engine import ContextEngine
from tests.fakes import TODAY, FakeBackend, acme_records, build_engine


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def acme_backend() -> FakeBackend:
    return FakeBackend(**acme_records())


@pytest.fixture
def search_client(acme_backend) -> CollectionSearchClient:
    return CollectionSearchClient(acme_backend)


@pytest.fixture
def engine(acme_backend) -> ContextEngine:
    return build_engine(acme_backend)
