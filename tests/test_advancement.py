"""Tests for round closing and winner advancement."""

import random
from collections.abc import Callable
from typing import Any

import pytest

from brackets import (
    AdvanceStatus,
    BracketManager,
    InvalidInputError,
    InvalidStateError,
    SlotIndex,
    TournamentRecord,
)
from brackets.advancement import next_slot
from conftest import OWNER_ID, matchup_ids, vote_many


def _close_round_one_a_d(manager: BracketManager, tournament_id: str) -> list[str]:
    """M0 A vs B 3-1, M1 C vs D 0-2, then close."""
    r1 = matchup_ids(manager, tournament_id, 1)
    manager.open_voting(tournament_id, 1, OWNER_ID)
    vote_many(manager, r1[0], "A", 3, "a")
    vote_many(manager, r1[0], "B", 1, "b")
    vote_many(manager, r1[1], "D", 2, "d")
    manager.close_voting(tournament_id, OWNER_ID)
    return r1


def test_next_slot_placement(manager: BracketManager, four_bracket: TournamentRecord) -> None:
    r1 = manager.store.list_round(four_bracket.id, 1)

    assert next_slot(r1[0]) == (2, 0, SlotIndex.SLOT1)
    assert next_slot(r1[1]) == (2, 0, SlotIndex.SLOT2)


def test_winners_fill_next_round(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    """Closing round 1 seeds the final with A and D."""
    r1 = _close_round_one_a_d(manager, four_bracket.id)

    assert manager.store.get_matchup_by_id(r1[0]).winner_competitor_id == "A"
    assert manager.store.get_matchup_by_id(r1[1]).winner_competitor_id == "D"

    final = manager.store.list_round(four_bracket.id, 2)
    assert len(final) == 1
    assert final[0].matchup_key == "r2-m1"
    assert (final[0].slot1_competitor_id, final[0].slot2_competitor_id) == ("A", "D")
    assert (final[0].tally1, final[0].tally2) == (0, 0)


def test_close_round_is_idempotent(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    _close_round_one_a_d(manager, four_bracket.id)
    before = manager.store.list_matchups(four_bracket.id)

    report = manager.advancement.close_round(four_bracket.id, 1)

    assert [r.status for r in report.results] == [AdvanceStatus.ALREADY_ADVANCED] * 2
    assert [r.winner_competitor_id for r in report.results] == ["A", "D"]
    assert manager.store.list_matchups(four_bracket.id) == before


def test_final_decides_champion(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    _close_round_one_a_d(manager, four_bracket.id)
    final_id = matchup_ids(manager, four_bracket.id, 2)[0]
    manager.open_voting(four_bracket.id, 2, OWNER_ID)
    vote_many(manager, final_id, "D", 2, "f")

    report = manager.close_voting(four_bracket.id, OWNER_ID)

    assert report.champion_competitor_id == "D"
    assert report.results[0].next_round is None
    assert manager.store.get_tournament(four_bracket.id).champion_competitor_id == "D"
    assert manager.store.list_round(four_bracket.id, 3) == []


def test_final_tie_is_broken_with_rng(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    """A tied final still produces exactly one champion."""
    _close_round_one_a_d(manager, four_bracket.id)
    final_id = matchup_ids(manager, four_bracket.id, 2)[0]
    manager.open_voting(four_bracket.id, 2, OWNER_ID)
    manager.cast_vote(final_id, "f1", "A")
    manager.cast_vote(final_id, "f2", "D")

    report = manager.close_voting(four_bracket.id, OWNER_ID)

    result = report.results[0]
    expected = random.Random(7).choice(["A", "D"])
    assert result.status == AdvanceStatus.ADVANCED
    assert result.tie_broken
    assert result.winner_competitor_id == expected
    assert manager.store.get_tournament(four_bracket.id).champion_competitor_id == expected


def test_non_final_tie_stays_open(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    r1 = matchup_ids(manager, four_bracket.id, 1)
    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    manager.cast_vote(r1[0], "u1", "A")
    manager.cast_vote(r1[0], "u2", "B")

    report = manager.close_voting(four_bracket.id, OWNER_ID)

    assert report.results[0].status == AdvanceStatus.TIE
    assert report.results[0].winner_competitor_id is None
    assert manager.store.get_matchup_by_id(r1[0]).winner_competitor_id is None
    # M1 had no votes at all, which is also a tie
    assert report.results[1].status == AdvanceStatus.TIE
    assert manager.store.list_round(four_bracket.id, 2) == []


def test_tied_matchup_can_be_revoted(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    r1 = matchup_ids(manager, four_bracket.id, 1)
    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    manager.cast_vote(r1[1], "u1", "C")
    manager.close_voting(four_bracket.id, OWNER_ID)

    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    manager.cast_vote(r1[0], "u1", "B")
    report = manager.close_voting(four_bracket.id, OWNER_ID)

    statuses = {r.matchup_key: r.status for r in report.results}
    assert statuses == {
        "r1-m1": AdvanceStatus.ADVANCED,
        "r1-m2": AdvanceStatus.ALREADY_ADVANCED,
    }
    final = manager.store.list_round(four_bracket.id, 2)[0]
    assert (final.slot1_competitor_id, final.slot2_competitor_id) == ("B", "C")


def test_half_filled_matchup_is_incomplete(
    manager: BracketManager,
    make_tournament: Callable[..., TournamentRecord],
    eight_template: dict[str, Any],
) -> None:
    tournament = make_tournament(eight_template)
    r1 = matchup_ids(manager, tournament.id, 1)
    manager.open_voting(tournament.id, 1, OWNER_ID)
    manager.cast_vote(r1[0], "u1", "c1")
    manager.cast_vote(r1[2], "u1", "c5")
    manager.cast_vote(r1[3], "u1", "c8")
    manager.close_voting(tournament.id, OWNER_ID)

    report = manager.advance_round(tournament.id, 2, OWNER_ID)

    statuses = [r.status for r in report.results]
    assert statuses == [AdvanceStatus.INCOMPLETE, AdvanceStatus.TIE]


def test_failure_in_one_matchup_does_not_stop_the_round(
    manager: BracketManager,
    make_tournament: Callable[..., TournamentRecord],
    eight_template: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tournament = make_tournament(eight_template)
    r1 = matchup_ids(manager, tournament.id, 1)
    manager.open_voting(tournament.id, 1, OWNER_ID)
    for matchup_id, winner in zip(r1, ["c1", "c3", "c5", "c7"]):
        manager.cast_vote(matchup_id, "u1", winner)

    original = manager.store.upsert_slot

    def flaky_upsert(tournament_id, round_number, position, *args, **kwargs):
        if position == 1:
            raise RuntimeError("disk full")
        return original(tournament_id, round_number, position, *args, **kwargs)

    monkeypatch.setattr(manager.store, "upsert_slot", flaky_upsert)

    report = manager.close_voting(tournament.id, OWNER_ID)

    statuses = [r.status for r in report.results]
    assert statuses == [
        AdvanceStatus.ADVANCED,
        AdvanceStatus.ADVANCED,
        AdvanceStatus.ERROR,
        AdvanceStatus.ERROR,
    ]
    assert report.results[2].error == "disk full"
    # The failed matchups rolled back and can be retried
    assert manager.store.get_matchup_by_id(r1[2]).winner_competitor_id is None
    assert not manager.voting.get(tournament.id).is_active

    monkeypatch.setattr(manager.store, "upsert_slot", original)
    retry = manager.advance_round(tournament.id, 1, OWNER_ID)

    assert [r.status for r in retry.results] == [
        AdvanceStatus.ALREADY_ADVANCED,
        AdvanceStatus.ALREADY_ADVANCED,
        AdvanceStatus.ADVANCED,
        AdvanceStatus.ADVANCED,
    ]


def test_advance_round_while_voting_open(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    manager.open_voting(four_bracket.id, 1, OWNER_ID)

    with pytest.raises(InvalidStateError, match="still open"):
        manager.advance_round(four_bracket.id, 1, OWNER_ID)


def test_advance_matchup_by_votes(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    r1 = matchup_ids(manager, four_bracket.id, 1)
    manager.open_voting(four_bracket.id, 1, OWNER_ID)
    vote_many(manager, r1[1], "C", 2, "c")
    manager.cast_vote(r1[0], "u1", "A")
    manager.cast_vote(r1[0], "u2", "B")
    manager.close_voting(four_bracket.id, OWNER_ID)

    with pytest.raises(InvalidStateError, match="votes are tied"):
        manager.advance_matchup(r1[0], OWNER_ID)

    result = manager.advance_matchup(r1[0], OWNER_ID, force_winner_id="B")

    assert result.status == AdvanceStatus.ADVANCED
    assert (result.next_round, result.next_position) == (2, 0)
    final = manager.store.list_round(four_bracket.id, 2)[0]
    assert (final.slot1_competitor_id, final.slot2_competitor_id) == ("B", "C")


def test_advance_matchup_rejects_outsider(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    matchup_id = matchup_ids(manager, four_bracket.id, 1)[0]

    with pytest.raises(InvalidInputError):
        manager.advance_matchup(matchup_id, OWNER_ID, force_winner_id="C")


def test_advance_decided_matchup(
    manager: BracketManager, four_bracket: TournamentRecord
) -> None:
    r1 = _close_round_one_a_d(manager, four_bracket.id)

    with pytest.raises(InvalidStateError, match="already been decided"):
        manager.advance_matchup(r1[0], OWNER_ID, force_winner_id="B")
