"""Round closing and winner advancement."""

import logging
import random
import sqlite3

from .database import BracketStore
from .exceptions import InvalidInputError, InvalidStateError
from .models import (
    AdvanceStatus,
    Matchup,
    MatchupAdvanceResult,
    RoundCloseReport,
    SlotIndex,
)

logger = logging.getLogger(__name__)


def next_slot(matchup: Matchup) -> tuple[int, int, SlotIndex]:
    """Round, position and slot the winner of ``matchup`` moves into."""
    slot = SlotIndex.SLOT1 if matchup.position % 2 == 0 else SlotIndex.SLOT2
    return matchup.round_number + 1, matchup.position // 2, slot


class AdvancementEngine:
    """Decides matchups and moves winners into the next round.

    Tie policy: a tie before the final leaves the matchup open and is
    reported as ``tie``. A tie in the final is broken by a uniform random
    choice between the two competitors using ``rng``.
    """

    def __init__(self, store: BracketStore, rng: random.Random | None = None):
        self.store = store
        self.rng = rng or random.Random()

    def close_round(self, tournament_id: str, round_number: int) -> RoundCloseReport:
        """Decide every open matchup of a round.

        Each matchup is processed in its own transaction. A failure is
        recorded against that matchup and the remaining ones still run.
        Matchups that already have a winner are reported as
        ``already_advanced`` and left untouched, so repeating the call is safe.
        """
        tournament = self.store.get_tournament(tournament_id)
        total_rounds = tournament.total_rounds
        report = RoundCloseReport(tournament_id=tournament_id, round_number=round_number)

        for matchup in self.store.list_round(tournament_id, round_number):
            try:
                result = self._close_matchup(matchup.id)
            except Exception as e:
                logger.error(f"Failed to advance matchup {matchup.id}: {e}")
                result = self._result(matchup, AdvanceStatus.ERROR, error=str(e))

            report.results.append(result)
            if result.status == AdvanceStatus.ADVANCED and round_number == total_rounds:
                report.champion_competitor_id = result.winner_competitor_id

        logger.info(
            f"Closed round {round_number} of tournament {tournament_id}: "
            f"{report.advanced_count}/{len(report.results)} matchups advanced"
        )
        return report

    def advance_matchup(
        self, matchup_id: str, force_winner_id: str | None = None
    ) -> MatchupAdvanceResult:
        """Decide a single matchup, optionally forcing the winner."""
        with self.store.transaction() as conn:
            matchup = self.store.get_matchup_by_id(matchup_id, conn=conn)
            tournament = self.store.get_tournament(matchup.tournament_id, conn=conn)

            if matchup.is_decided:
                raise InvalidStateError("This matchup has already been decided")

            if tournament.voting_window.accepts(matchup.round_number):
                raise InvalidStateError(
                    f"Voting is still open for Round {matchup.round_number}"
                )

            if force_winner_id is not None:
                if matchup.slot_of(force_winner_id) is None:
                    raise InvalidInputError(
                        f"Competitor {force_winner_id} is not in matchup {matchup_id}"
                    )
            elif not matchup.is_populated:
                raise InvalidStateError(
                    f"Matchup {matchup_id} is missing a competitor"
                )

            result = self._decide(
                matchup, tournament.total_rounds, conn, force_winner_id=force_winner_id
            )
            if result.status == AdvanceStatus.TIE:
                raise InvalidStateError("Cannot advance: votes are tied")

        return result

    def _close_matchup(self, matchup_id: str) -> MatchupAdvanceResult:
        with self.store.transaction() as conn:
            # Re-read under the write lock; the listing may be stale
            matchup = self.store.get_matchup_by_id(matchup_id, conn=conn)
            tournament = self.store.get_tournament(matchup.tournament_id, conn=conn)

            if matchup.is_decided:
                return self._result(
                    matchup,
                    AdvanceStatus.ALREADY_ADVANCED,
                    winner_competitor_id=matchup.winner_competitor_id,
                )

            if tournament.voting_window.accepts(matchup.round_number):
                raise InvalidStateError(
                    f"Voting is still open for Round {matchup.round_number}"
                )

            if not matchup.is_populated:
                return self._result(matchup, AdvanceStatus.INCOMPLETE)

            return self._decide(matchup, tournament.total_rounds, conn)

    def _decide(
        self,
        matchup: Matchup,
        total_rounds: int,
        conn: sqlite3.Connection,
        force_winner_id: str | None = None,
    ) -> MatchupAdvanceResult:
        is_final = matchup.round_number == total_rounds
        tie_broken = False

        if force_winner_id is not None:
            winner = force_winner_id
        elif matchup.tally1 > matchup.tally2:
            winner = matchup.slot1_competitor_id
        elif matchup.tally2 > matchup.tally1:
            winner = matchup.slot2_competitor_id
        elif is_final:
            winner = self.rng.choice(
                [matchup.slot1_competitor_id, matchup.slot2_competitor_id]
            )
            tie_broken = True
            logger.info(
                f"Final matchup {matchup.id} tied {matchup.tally1}-{matchup.tally2}, "
                f"tie broken at random for {winner}"
            )
        else:
            return self._result(matchup, AdvanceStatus.TIE)

        if not self.store.record_winner(matchup.id, winner, conn=conn):
            current = self.store.get_matchup_by_id(matchup.id, conn=conn)
            return self._result(
                current,
                AdvanceStatus.ALREADY_ADVANCED,
                winner_competitor_id=current.winner_competitor_id,
            )

        if is_final:
            self.store.set_champion(matchup.tournament_id, winner, conn=conn)
            logger.info(f"Tournament {matchup.tournament_id} champion: {winner}")
            return self._result(
                matchup,
                AdvanceStatus.ADVANCED,
                winner_competitor_id=winner,
                tie_broken=tie_broken,
            )

        next_round, next_position, slot = next_slot(matchup)
        self.store.upsert_slot(
            matchup.tournament_id, next_round, next_position, slot, winner, conn=conn
        )
        logger.info(
            f"Matchup {matchup.matchup_key} won by {winner}, advanced to "
            f"round {next_round} position {next_position} {slot.name.lower()}"
        )
        return self._result(
            matchup,
            AdvanceStatus.ADVANCED,
            winner_competitor_id=winner,
            next_round=next_round,
            next_position=next_position,
            tie_broken=tie_broken,
        )

    @staticmethod
    def _result(matchup: Matchup, status: AdvanceStatus, **kwargs) -> MatchupAdvanceResult:
        return MatchupAdvanceResult(
            matchup_id=matchup.id,
            matchup_key=matchup.matchup_key,
            round_number=matchup.round_number,
            position=matchup.position,
            status=status,
            **kwargs,
        )
