"""
Pytest configuration and shared fixtures for person resolver tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- integration: Tests that exercise several services against one SQLite file

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import pytest

from api.services.person_cache import reset_person_cache
from api.services.person_record import PersonRecord
from api.services.person_store import PersonStore, reset_person_store
from api.services.review_queue import reset_review_queue_store


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Multi-service tests against a temp database")


@pytest.fixture(autouse=True)
def reset_singletons():
    """Every test starts without cached store/cache/queue singletons."""
    reset_person_store()
    reset_person_cache()
    reset_review_queue_store()
    yield
    reset_person_store()
    reset_person_cache()
    reset_review_queue_store()


@pytest.fixture
def person_store(tmp_path):
    """A PersonStore on a fresh temporary database."""
    return PersonStore(tmp_path / "people.db")


@pytest.fixture
def make_person(person_store):
    """
    Factory that bulk-loads a person (duplicates allowed).

    Usage:
        jeff = make_person("Jeffrey Epstein", aliases=["Jeff E."], document_count=3)
    """
    def _make(display_name, **kwargs):
        return person_store.import_record(PersonRecord(display_name=display_name, **kwargs))
    return _make
