"""Pytest configuration and shared fixtures.

Provides bracket templates of different sizes, a manager bound to a
temporary database with a fixed clock and a seeded tie-break, and helpers
for driving voting rounds.
"""

import random
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from brackets import BracketManager, BracketStore, TournamentCreateRequest
from brackets.models import TournamentRecord

OWNER_ID = "owner-1"
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def build_template(competitors: list[str]) -> dict[str, Any]:
    """Build raw template data for a power-of-two field seeded in order."""
    size = len(competitors)
    total_rounds = size.bit_length() - 1
    rounds: list[dict[str, Any]] = []

    first_round = []
    for position in range(size // 2):
        first_round.append(
            {
                "id": f"r1-m{position + 1}",
                "position": position,
                "slot1": {"competitorId": competitors[2 * position], "seed": 2 * position + 1},
                "slot2": {"competitorId": competitors[2 * position + 1], "seed": 2 * position + 2},
            }
        )
    rounds.append({"roundNumber": 1, "matchups": first_round})

    for round_number in range(2, total_rounds + 1):
        count = 2 ** (total_rounds - round_number)
        rounds.append(
            {
                "roundNumber": round_number,
                "matchups": [
                    {"id": f"r{round_number}-m{position + 1}", "position": position}
                    for position in range(count)
                ],
            }
        )

    return {"rounds": rounds}


# =============================================================================
# SHARED FIXTURES - Available to all test modules
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Provide a fresh SQLite file per test."""
    return str(tmp_path / "brackets.db")


@pytest.fixture
def store(db_path: str) -> BracketStore:
    return BracketStore(db_path)


@pytest.fixture
def four_competitors() -> list[str]:
    """Provide the field of the canonical four-competitor bracket."""
    return ["A", "B", "C", "D"]


@pytest.fixture
def eight_competitors() -> list[str]:
    return ["c1", "c2", "c3", "c4", "c5", "c6", "c7", "c8"]


@pytest.fixture
def four_template(four_competitors: list[str]) -> dict[str, Any]:
    return build_template(four_competitors)


@pytest.fixture
def eight_template(eight_competitors: list[str]) -> dict[str, Any]:
    return build_template(eight_competitors)


@pytest.fixture
def manager(db_path: str) -> BracketManager:
    """Provide a manager with a fixed clock and a seeded tie-break."""
    return BracketManager(
        db_path,
        rng=random.Random(7),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def make_tournament(
    manager: BracketManager,
) -> Callable[..., TournamentRecord]:
    """Factory creating a tournament that is active at FIXED_NOW."""

    def _make(template: dict[str, Any], **overrides: Any) -> TournamentRecord:
        data: dict[str, Any] = {
            "starts_at": FIXED_NOW - timedelta(days=1),
            "ends_at": FIXED_NOW + timedelta(days=6),
            "template": template,
        }
        data.update(overrides)
        return manager.create_tournament(TournamentCreateRequest(**data), OWNER_ID)

    return _make


@pytest.fixture
def four_bracket(
    make_tournament: Callable[..., TournamentRecord], four_template: dict[str, Any]
) -> TournamentRecord:
    return make_tournament(four_template, id="t-four")


def matchup_ids(manager: BracketManager, tournament_id: str, round_number: int) -> list[str]:
    """Persisted matchup ids of a round, by position."""
    return [m.id for m in manager.store.list_round(tournament_id, round_number)]


def vote_many(
    manager: BracketManager, matchup_id: str, competitor_id: str, count: int, prefix: str
) -> None:
    """Cast ``count`` votes from distinct voters."""
    for i in range(count):
        manager.cast_vote(matchup_id, f"{prefix}-{i}", competitor_id)


# =============================================================================
# PYTEST CONFIGURATION HOOKS
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
