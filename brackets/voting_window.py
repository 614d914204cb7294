"""Per-tournament voting window gate."""

import logging

from .advancement import AdvancementEngine
from .database import BracketStore
from .exceptions import InvalidStateError, NotFoundError
from .models import RoundCloseReport, VotingWindow

logger = logging.getLogger(__name__)


class VotingWindowController:
    """Opens and closes the single voting round of a tournament.

    The window lives on the tournament record and has exactly two
    transitions. Closing hands the round to the advancement engine after
    the window has been flipped, so votes racing the close are rejected.
    """

    def __init__(
        self,
        store: BracketStore,
        advancement: AdvancementEngine,
        require_previous_round_decided: bool = False,
    ):
        self.store = store
        self.advancement = advancement
        self.require_previous_round_decided = require_previous_round_decided

    def get(self, tournament_id: str) -> VotingWindow:
        return self.store.get_tournament(tournament_id).voting_window

    def open(self, tournament_id: str, round_number: int) -> VotingWindow:
        """Start accepting votes for ``round_number``."""
        with self.store.transaction() as conn:
            tournament = self.store.get_tournament(tournament_id, conn=conn)

            window = tournament.voting_window
            if window.is_active:
                raise InvalidStateError(
                    f"Voting is already active for Round {window.current_round}"
                )

            matchups = self.store.list_round(tournament_id, round_number, conn=conn)
            if not matchups:
                raise NotFoundError(f"Round {round_number} does not exist")

            if all(m.is_decided for m in matchups):
                raise InvalidStateError(f"Round {round_number} is already complete")

            if self.require_previous_round_decided and round_number > 1:
                previous = self.store.list_round(
                    tournament_id, round_number - 1, conn=conn
                )
                if any(not m.is_decided for m in previous):
                    raise InvalidStateError(
                        f"Round {round_number - 1} must be decided before "
                        f"Round {round_number} can open"
                    )

            opened = VotingWindow.opened(round_number)
            self.store.save_voting_window(tournament_id, opened, conn=conn)

        logger.info(f"Voting opened for tournament {tournament_id} round {round_number}")
        return opened

    def close(self, tournament_id: str) -> RoundCloseReport:
        """Stop voting and advance the round's winners.

        The window is reset before advancement runs; per-matchup failures
        are reported in the returned report and never reopen the window.
        """
        with self.store.transaction() as conn:
            tournament = self.store.get_tournament(tournament_id, conn=conn)

            window = tournament.voting_window
            if not window.is_active or window.current_round is None:
                raise InvalidStateError("No active voting window")

            round_number = window.current_round
            self.store.save_voting_window(
                tournament_id, VotingWindow.closed(), conn=conn
            )

        logger.info(f"Voting closed for tournament {tournament_id} round {round_number}")
        return self.advancement.close_round(tournament_id, round_number)
