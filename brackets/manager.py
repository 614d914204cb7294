"""Tournament bracket management facade."""

import logging
import random
import uuid
from collections.abc import Callable
from datetime import datetime

from config.settings import AppConfig

from .advancement import AdvancementEngine
from .database import BracketStore
from .exceptions import InvalidStateError, NotFoundError, UnauthorizedError
from .ledger import VoteLedger
from .models import (
    ConsoleStatus,
    MatchupAdvanceResult,
    RoundCloseReport,
    TournamentCreateRequest,
    TournamentRecord,
    TournamentView,
    Vote,
    VoteOutcome,
    VotingWindow,
)
from .query import TournamentQuery
from .voting_window import VotingWindowController

logger = logging.getLogger(__name__)

OwnerCheck = Callable[[TournamentRecord, str], bool]


def is_owner(tournament: TournamentRecord, user_id: str) -> bool:
    """Default ownership rule: the user recorded at creation owns the tournament."""
    return tournament.owner_id == user_id


class BracketManager:
    """Entry point wiring the store, ledger, window controller and engine.

    Owner-only operations take the caller's id as resolved by the identity
    layer; ``owner_check`` decides ownership.
    """

    def __init__(
        self,
        db_path: str = "brackets.db",
        busy_timeout: float = 30.0,
        require_previous_round_decided: bool = False,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        owner_check: OwnerCheck | None = None,
    ):
        self.store = BracketStore(db_path, busy_timeout=busy_timeout)
        self.advancement = AdvancementEngine(self.store, rng=rng)
        self.voting = VotingWindowController(
            self.store,
            self.advancement,
            require_previous_round_decided=require_previous_round_decided,
        )
        self.ledger = VoteLedger(self.store)
        self.query = TournamentQuery(self.store, clock=clock)
        self.owner_check = owner_check or is_owner

    @classmethod
    def from_config(cls, config: AppConfig, **kwargs) -> "BracketManager":
        seed = config.voting.tie_break_seed
        return cls(
            db_path=config.storage.db_path,
            busy_timeout=config.storage.busy_timeout,
            require_previous_round_decided=config.voting.require_previous_round_decided,
            rng=random.Random(seed) if seed is not None else None,
            **kwargs,
        )

    def create_tournament(
        self, request: TournamentCreateRequest, owner_id: str
    ) -> TournamentRecord:
        """Register the tournament record and seed round 1 from its template."""
        record = TournamentRecord(
            id=request.id or uuid.uuid4().hex,
            owner_id=owner_id,
            starts_at=request.starts_at,
            ends_at=request.ends_at,
            require_login=request.require_login,
        )

        with self.store.transaction() as conn:
            self.store.create_tournament(record, conn=conn)
            self.store.initialize(record.id, request.template, conn=conn)
            created = self.store.get_tournament(record.id, conn=conn)

        logger.info(
            f"Created tournament {created.id} with {created.total_rounds} rounds"
        )
        return created

    def get_view(self, tournament_id: str) -> TournamentView:
        return self.query.get_view(tournament_id)

    def get_console_status(self, tournament_id: str, requester_id: str | None) -> ConsoleStatus:
        self._require_owner(tournament_id, requester_id)
        return self.query.get_console_status(tournament_id)

    def open_voting(
        self, tournament_id: str, round_number: int, requester_id: str | None
    ) -> VotingWindow:
        self._require_owner(tournament_id, requester_id)
        return self.voting.open(tournament_id, round_number)

    def close_voting(self, tournament_id: str, requester_id: str | None) -> RoundCloseReport:
        self._require_owner(tournament_id, requester_id)
        return self.voting.close(tournament_id)

    def advance_round(
        self, tournament_id: str, round_number: int, requester_id: str | None
    ) -> RoundCloseReport:
        """Close a round without going through the voting window."""
        tournament = self._require_owner(tournament_id, requester_id)

        if not self.store.list_round(tournament_id, round_number):
            raise NotFoundError(f"No matchups found for Round {round_number}")

        if tournament.voting_window.accepts(round_number):
            raise InvalidStateError(
                f"Voting is still open for Round {round_number}; end voting instead"
            )

        return self.advancement.close_round(tournament_id, round_number)

    def advance_matchup(
        self,
        matchup_id: str,
        requester_id: str | None,
        force_winner_id: str | None = None,
    ) -> MatchupAdvanceResult:
        matchup = self.store.get_matchup_by_id(matchup_id)
        self._require_owner(matchup.tournament_id, requester_id)
        return self.advancement.advance_matchup(matchup_id, force_winner_id=force_winner_id)

    def cast_vote(
        self, matchup_id: str, voter_id: str | None, competitor_id: str
    ) -> VoteOutcome:
        return self.ledger.cast_or_switch(matchup_id, voter_id, competitor_id)

    def remove_vote(self, matchup_id: str, voter_id: str | None) -> VoteOutcome:
        return self.ledger.remove(matchup_id, voter_id)

    def get_vote(self, matchup_id: str, voter_id: str | None) -> Vote:
        if voter_id is None:
            raise UnauthorizedError("Authentication required", requires_login=True)
        return self.ledger.get_vote(matchup_id, voter_id)

    def _require_owner(self, tournament_id: str, requester_id: str | None) -> TournamentRecord:
        tournament = self.store.get_tournament(tournament_id)

        if requester_id is None:
            raise UnauthorizedError("Authentication required", requires_login=True)

        if not self.owner_check(tournament, requester_id):
            logger.warning(
                f"User {requester_id} denied owner action on tournament {tournament_id}"
            )
            raise UnauthorizedError("You do not own this tournament")

        return tournament
