"""Read model merging template, live matchups and voting window."""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from .database import BracketStore
from .exceptions import NotFoundError
from .models import (
    ConsoleMatchup,
    ConsoleStatus,
    Matchup,
    MatchupTemplate,
    MatchupView,
    RoundView,
    SlotTemplate,
    SlotView,
    TournamentRecord,
    TournamentStatus,
    TournamentView,
)

logger = logging.getLogger(__name__)


def round_name(round_number: int, total_rounds: int) -> str:
    """Display name by distance from the final round."""
    rounds_from_end = total_rounds - round_number
    if rounds_from_end == 0:
        return "Finals"
    if rounds_from_end == 1:
        return "Semi-Finals"
    if rounds_from_end == 2:
        return "Quarter-Finals"
    if rounds_from_end == 3:
        return "Round of 16"
    return f"Round {round_number}"


def tournament_status(tournament: TournamentRecord, now: datetime) -> TournamentStatus:
    """Status derived from the externally supplied schedule."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if now < tournament.starts_at:
        return TournamentStatus.UPCOMING
    if now > tournament.ends_at:
        return TournamentStatus.COMPLETED
    return TournamentStatus.ACTIVE


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TournamentQuery:
    """Builds bracket views for consumers and the owner console."""

    def __init__(self, store: BracketStore, clock: Callable[[], datetime] | None = None):
        self.store = store
        self.clock = clock or _utc_now

    def _snapshot(self, tournament_id: str) -> tuple[TournamentRecord, list[Matchup]]:
        with self.store.transaction() as conn:
            tournament = self.store.get_tournament(tournament_id, conn=conn)
            matchups = self.store.list_matchups(tournament_id, conn=conn)
        return tournament, matchups

    def get_view(self, tournament_id: str) -> TournamentView:
        tournament, matchups = self._snapshot(tournament_id)
        template = tournament.template
        if template is None:
            raise NotFoundError(f"No bracket found for tournament {tournament_id}")

        status = tournament_status(tournament, self.clock())
        total_rounds = template.total_rounds
        live = {(m.round_number, m.position): m for m in matchups}
        seeds = template.seeds()

        if status == TournamentStatus.COMPLETED:
            current_round = total_rounds
        else:
            current_round = self._lowest_undecided_round(matchups) or 1

        rounds = [
            RoundView(
                round_number=round_template.round_number,
                round_name=round_name(round_template.round_number, total_rounds),
                matchups=[
                    self._merge(
                        round_template.round_number,
                        matchup_template,
                        live.get((round_template.round_number, matchup_template.position)),
                        seeds,
                    )
                    for matchup_template in round_template.matchups
                ],
            )
            for round_template in template.rounds
        ]

        return TournamentView(
            tournament_id=tournament.id,
            status=status,
            current_round=current_round,
            total_rounds=total_rounds,
            rounds=rounds,
            voting_window=tournament.voting_window,
            champion_competitor_id=tournament.champion_competitor_id,
            starts_at=tournament.starts_at,
            ends_at=tournament.ends_at,
        )

    def get_console_status(self, tournament_id: str) -> ConsoleStatus:
        """Round-by-round progress for the tournament owner."""
        tournament, matchups = self._snapshot(tournament_id)

        rounds: dict[int, list[ConsoleMatchup]] = {}
        for matchup in matchups:
            rounds.setdefault(matchup.round_number, []).append(
                ConsoleMatchup(
                    matchup_id=matchup.id,
                    matchup_key=matchup.matchup_key,
                    round_number=matchup.round_number,
                    position=matchup.position,
                    slot1_competitor_id=matchup.slot1_competitor_id,
                    slot2_competitor_id=matchup.slot2_competitor_id,
                    tally1=matchup.tally1,
                    tally2=matchup.tally2,
                    winner_competitor_id=matchup.winner_competitor_id,
                    completed=matchup.completed_at is not None,
                )
            )

        total_rounds = tournament.total_rounds or max(rounds, default=0)
        is_complete = (
            bool(matchups)
            and all(m.is_decided for m in matchups)
            and tournament.champion_competitor_id is not None
        )

        return ConsoleStatus(
            tournament_id=tournament.id,
            current_round=self._lowest_undecided_round(matchups) or max(total_rounds, 1),
            total_rounds=total_rounds,
            is_complete=is_complete,
            voting_window=tournament.voting_window,
            rounds=rounds,
        )

    @staticmethod
    def _lowest_undecided_round(matchups: list[Matchup]) -> int | None:
        return min(
            (m.round_number for m in matchups if not m.is_decided),
            default=None,
        )

    @staticmethod
    def _merge(
        round_number: int,
        matchup_template: MatchupTemplate,
        matchup: Matchup | None,
        seeds: dict[str, int],
    ) -> MatchupView:
        def slot_view(competitor_id: str | None, fallback: SlotTemplate | None) -> SlotView | None:
            if competitor_id is not None:
                return SlotView(competitor_id=competitor_id, seed=seeds.get(competitor_id))
            # Later-round template slots are filled only by advancement
            if fallback is not None and matchup is None and round_number == 1:
                return SlotView(competitor_id=fallback.competitor_id, seed=fallback.seed)
            return None

        if matchup is None:
            return MatchupView(
                id=matchup_template.id,
                round_number=round_number,
                position=matchup_template.position,
                slot1=slot_view(None, matchup_template.slot1),
                slot2=slot_view(None, matchup_template.slot2),
            )

        return MatchupView(
            id=matchup_template.id,
            matchup_id=matchup.id,
            round_number=round_number,
            position=matchup_template.position,
            slot1=slot_view(matchup.slot1_competitor_id, matchup_template.slot1),
            slot2=slot_view(matchup.slot2_competitor_id, matchup_template.slot2),
            tally1=matchup.tally1,
            tally2=matchup.tally2,
            winner_competitor_id=matchup.winner_competitor_id,
            completed_at=matchup.completed_at,
        )
