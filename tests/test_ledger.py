"""Tests for casting, switching and removing votes."""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from brackets import (
    BracketManager,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    TournamentRecord,
    UnauthorizedError,
    VoteAction,
)
from conftest import OWNER_ID, matchup_ids


@pytest.fixture
def open_matchup(manager: BracketManager, four_bracket: TournamentRecord) -> str:
    """Round 1 open for voting; returns the A vs B matchup id."""
    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    return matchup_ids(manager, four_bracket.id, 1)[0]


def test_cast_increments_tally(manager: BracketManager, open_matchup: str) -> None:
    outcome = manager.cast_vote(open_matchup, "u1", "A")

    assert outcome.action == VoteAction.CAST
    assert (outcome.tally1, outcome.tally2) == (1, 0)


def test_switch_moves_vote(manager: BracketManager, open_matchup: str) -> None:
    """A voter changing sides moves one vote between tallies."""
    manager.cast_vote(open_matchup, "u1", "A")
    outcome = manager.cast_vote(open_matchup, "u1", "B")

    assert outcome.action == VoteAction.SWITCHED
    assert (outcome.tally1, outcome.tally2) == (0, 1)
    assert manager.get_vote(open_matchup, "u1").competitor_id == "B"
    assert manager.store.count_votes(open_matchup) == {"B": 1}


def test_repeat_vote_is_unchanged(manager: BracketManager, open_matchup: str) -> None:
    manager.cast_vote(open_matchup, "u1", "A")
    outcome = manager.cast_vote(open_matchup, "u1", "A")

    assert outcome.action == VoteAction.UNCHANGED
    assert (outcome.tally1, outcome.tally2) == (1, 0)


def test_remove_vote(manager: BracketManager, open_matchup: str) -> None:
    manager.cast_vote(open_matchup, "u1", "A")
    manager.cast_vote(open_matchup, "u2", "A")

    outcome = manager.remove_vote(open_matchup, "u1")

    assert outcome.action == VoteAction.REMOVED
    assert outcome.competitor_id == "A"
    assert (outcome.tally1, outcome.tally2) == (1, 0)
    with pytest.raises(NotFoundError):
        manager.get_vote(open_matchup, "u1")


def test_remove_missing_vote(manager: BracketManager, open_matchup: str) -> None:
    with pytest.raises(NotFoundError):
        manager.remove_vote(open_matchup, "u1")


def test_remove_requires_identity(manager: BracketManager, open_matchup: str) -> None:
    with pytest.raises(UnauthorizedError) as exc_info:
        manager.remove_vote(open_matchup, None)

    assert exc_info.value.requires_login


def test_anonymous_votes_accumulate(manager: BracketManager, open_matchup: str) -> None:
    """Without require_login every anonymous call adds a vote."""
    manager.cast_vote(open_matchup, None, "B")
    outcome = manager.cast_vote(open_matchup, None, "B")

    assert outcome.action == VoteAction.CAST
    assert outcome.tally2 == 2


def test_login_required_rejects_anonymous(
    manager: BracketManager,
    make_tournament: Callable[..., TournamentRecord],
    four_template: dict[str, Any],
) -> None:
    tournament = make_tournament(four_template, require_login=True)
    manager.open_voting(tournament.id, 1, OWNER_ID)
    matchup_id = matchup_ids(manager, tournament.id, 1)[0]

    with pytest.raises(UnauthorizedError) as exc_info:
        manager.cast_vote(matchup_id, None, "A")

    assert exc_info.value.requires_login
    assert manager.store.get_matchup_by_id(matchup_id).tally1 == 0


def test_vote_for_outsider_is_rejected(manager: BracketManager, open_matchup: str) -> None:
    with pytest.raises(InvalidInputError):
        manager.cast_vote(open_matchup, "u1", "C")


def test_vote_unknown_matchup(manager: BracketManager, open_matchup: str) -> None:
    with pytest.raises(NotFoundError):
        manager.cast_vote("missing", "u1", "A")


def test_vote_with_window_closed(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    matchup_id = matchup_ids(manager, four_bracket.id, 1)[0]

    with pytest.raises(InvalidStateError, match="not currently active"):
        manager.cast_vote(matchup_id, "u1", "A")


def test_vote_on_other_round_is_rejected(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    r1 = matchup_ids(manager, four_bracket.id, 1)
    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    manager.cast_vote(r1[0], "u1", "A")
    manager.cast_vote(r1[1], "u1", "C")
    manager.close_voting(four_bracket.id, OWNER_ID)
    final_id = matchup_ids(manager, four_bracket.id, 2)[0]

    with pytest.raises(InvalidStateError, match="not currently active"):
        manager.cast_vote(final_id, "u1", "A")

    manager.open_voting(four_bracket.id, 2, OWNER_ID)
    with pytest.raises(InvalidStateError, match="already been decided"):
        manager.cast_vote(r1[0], "u2", "B")


def test_half_filled_matchup_rejects_votes(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    """No votes land on a matchup until both competitors are known."""
    r1 = matchup_ids(manager, four_bracket.id, 1)
    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    manager.cast_vote(r1[0], "u1", "A")
    manager.close_voting(four_bracket.id, OWNER_ID)
    final_id = matchup_ids(manager, four_bracket.id, 2)[0]
    manager.open_voting(four_bracket.id, 2, OWNER_ID)

    with pytest.raises(InvalidStateError, match="waiting for a competitor"):
        manager.cast_vote(final_id, "early", "A")
    with pytest.raises(InvalidStateError, match="waiting for a competitor"):
        manager.remove_vote(final_id, "early")

    manager.close_voting(four_bracket.id, OWNER_ID)
    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    manager.cast_vote(r1[1], "u1", "D")
    manager.close_voting(four_bracket.id, OWNER_ID)

    final = manager.store.get_matchup_by_id(final_id)
    assert (final.slot1_competitor_id, final.slot2_competitor_id) == ("A", "D")
    assert (final.tally1, final.tally2) == (0, 0)


def test_vote_in_wrong_round(
    manager: BracketManager,
    make_tournament: Callable[..., TournamentRecord],
    eight_template: dict[str, Any],
) -> None:
    tournament = make_tournament(eight_template)
    r1 = matchup_ids(manager, tournament.id, 1)
    manager.open_voting(tournament.id, 1, OWNER_ID)
    for matchup_id, winner in zip(r1, ["c1", "c3", "c5", "c7"]):
        manager.cast_vote(matchup_id, "u1", winner)
    manager.close_voting(tournament.id, OWNER_ID)

    # Round 2 decided for one side only so round 3 gets a row
    r2 = matchup_ids(manager, tournament.id, 2)
    manager.open_voting(tournament.id, 2, OWNER_ID)
    manager.cast_vote(r2[0], "u1", "c1")
    manager.close_voting(tournament.id, OWNER_ID)
    final_id = matchup_ids(manager, tournament.id, 3)[0]

    manager.open_voting(tournament.id, 2, OWNER_ID)
    with pytest.raises(InvalidStateError, match="Round 2, not Round 3"):
        manager.cast_vote(final_id, "u2", "c1")


@pytest.mark.slow
def test_concurrent_votes_keep_tallies_consistent(
    manager: BracketManager, open_matchup: str
) -> None:
    """Tallies match recorded votes under concurrent casts and switches."""
    voters = [f"voter-{i}" for i in range(24)]

    def cast_then_switch(voter_id: str) -> None:
        manager.cast_vote(open_matchup, voter_id, "A")
        if voter_id.endswith(("0", "5")):
            manager.cast_vote(open_matchup, voter_id, "B")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(cast_then_switch, voters))

    matchup = manager.store.get_matchup_by_id(open_matchup)
    counts = manager.store.count_votes(open_matchup)

    assert matchup.tally1 + matchup.tally2 == len(voters)
    assert matchup.tally1 == counts.get("A", 0)
    assert matchup.tally2 == counts.get("B", 0)
