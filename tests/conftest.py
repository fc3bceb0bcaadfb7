"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from studyloop.db.models import Base  # noqa: E402
from studyloop.db.repository import SqlRepository  # noqa: E402
from studyloop.items.base import Item  # noqa: E402

# Monday 2025-03-10 11:00 in Toronto (EDT, UTC-4)
FIXED_NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)
TOPIC = "Two Pointers"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory database, API)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ========================================
# Clock & Randomness
# ========================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock(FIXED_NOW)


@pytest.fixture
def rng():
    return random.Random(1234)


# ========================================
# Database
# ========================================


@pytest.fixture
def engine():
    """In-memory SQLite shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(db_session):
    return SqlRepository(db_session, default_timezone="America/Toronto")


# ========================================
# Items
# ========================================


def _item(item_id: str, body: dict, topic: str = TOPIC, difficulty: str = "M", **extra) -> Item:
    return Item.model_validate({"id": item_id, "topic": topic, "difficulty": difficulty, "body": body, **extra})


def mcq(item_id: str, correct_index: int = 1, rationale: str = "", **kwargs) -> Item:
    body = {
        "kind": "mcq",
        "prompt": {"stem": f"Question {item_id}", "options": ["left", "right", "both"]},
        "answer": {"correct_index": correct_index, "rationale": rationale},
    }
    return _item(item_id, body, **kwargs)


def ordering(item_id: str, order: list[int] | None = None, rationale: str = "", **kwargs) -> Item:
    body = {
        "kind": "order",
        "prompt": {"stem": "Order the steps", "steps": ["sort", "place pointers", "move inward"]},
        "answer": {"order": order or [0, 1, 2], "rationale": rationale},
    }
    return _item(item_id, body, **kwargs)


def fill_blank(item_id: str, solutions: list[list[str]] | None = None, **kwargs) -> Item:
    solutions = solutions or [["left", "lo"], ["right", "hi"]]
    body = {
        "kind": "fitb",
        "prompt": {"stem": "Pointers start at ___ and ___", "blanks": len(solutions)},
        "answer": {"solutions": solutions},
    }
    return _item(item_id, body, **kwargs)


def plan(item_id: str, checklist: list[str] | None = None, **kwargs) -> Item:
    body = {
        "kind": "plan",
        "prompt": {"stem": "Plan a solution for pair sum in a sorted array"},
        "answer": {
            "checklist": checklist if checklist is not None else [
                "Sort the array",
                "Place pointers at both ends",
                "Move the left pointer when the sum is too small",
            ],
        },
    }
    return _item(item_id, body, **kwargs)


def insight(item_id: str, **kwargs) -> Item:
    body = {"kind": "insight", "prompt": {"stem": "Two pointers trade a nested loop for a single pass."}}
    return _item(item_id, body, **kwargs)


@pytest.fixture
def make_item():
    """Item factories keyed by kind."""
    return {
        "mcq": mcq,
        "order": ordering,
        "fitb": fill_blank,
        "plan": plan,
        "insight": insight,
    }


@pytest.fixture
def seed_items(repo):
    """Write items to the repository and return them."""
    def _seed(items: list[Item]) -> list[Item]:
        with repo.transaction():
            repo.upsert_items(items)
        return items
    return _seed
