"""Vote recording with switch and removal semantics."""

import logging

from .database import BracketStore
from .exceptions import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from .models import Matchup, Vote, VoteAction, VoteOutcome, VotingWindow

logger = logging.getLogger(__name__)


class VoteLedger:
    """Records one vote per (matchup, voter) and keeps matchup tallies in step.

    Each call validates and mutates inside a single store transaction, so
    ``tally1 + tally2`` always equals the number of recorded votes.
    """

    def __init__(self, store: BracketStore):
        self.store = store

    def cast_or_switch(
        self, matchup_id: str, voter_id: str | None, competitor_id: str
    ) -> VoteOutcome:
        """Cast a vote, or move the voter's existing vote to ``competitor_id``."""
        with self.store.transaction() as conn:
            matchup = self.store.get_matchup_by_id(matchup_id, conn=conn)
            tournament = self.store.get_tournament(matchup.tournament_id, conn=conn)
            self._ensure_voting_open(matchup, tournament.voting_window)

            slot = matchup.slot_of(competitor_id)
            if slot is None:
                raise InvalidInputError(
                    f"Competitor {competitor_id} is not in matchup {matchup_id}"
                )

            if voter_id is None and tournament.require_login:
                raise UnauthorizedError("Login required to vote", requires_login=True)

            existing = (
                self.store.get_vote(matchup_id, voter_id, conn=conn)
                if voter_id is not None
                else None
            )

            if existing is None:
                self.store.insert_vote(matchup_id, voter_id, competitor_id, conn=conn)
                self.store.adjust_tally(matchup_id, slot, 1, conn=conn)
                action = VoteAction.CAST
            elif existing.competitor_id == competitor_id:
                action = VoteAction.UNCHANGED
            else:
                previous_slot = matchup.slot_of(existing.competitor_id)
                if previous_slot is not None:
                    self.store.adjust_tally(matchup_id, previous_slot, -1, conn=conn)
                self.store.update_vote_competitor(existing.id, competitor_id, conn=conn)
                self.store.adjust_tally(matchup_id, slot, 1, conn=conn)
                action = VoteAction.SWITCHED

            updated = self.store.get_matchup_by_id(matchup_id, conn=conn)

        logger.debug(
            f"Vote {action.value} on matchup {matchup_id} for {competitor_id} "
            f"(tally {updated.tally1}-{updated.tally2})"
        )
        return VoteOutcome(
            matchup_id=matchup_id,
            voter_id=voter_id,
            action=action,
            competitor_id=competitor_id,
            tally1=updated.tally1,
            tally2=updated.tally2,
        )

    def remove(self, matchup_id: str, voter_id: str | None) -> VoteOutcome:
        """Withdraw the voter's vote on a matchup."""
        if voter_id is None:
            raise UnauthorizedError(
                "Login required to remove a vote", requires_login=True
            )

        with self.store.transaction() as conn:
            matchup = self.store.get_matchup_by_id(matchup_id, conn=conn)
            tournament = self.store.get_tournament(matchup.tournament_id, conn=conn)
            self._ensure_voting_open(matchup, tournament.voting_window)

            vote = self.store.get_vote(matchup_id, voter_id, conn=conn)
            if vote is None:
                raise NotFoundError(
                    f"No vote recorded for voter {voter_id} on matchup {matchup_id}"
                )

            self.store.delete_vote(vote.id, conn=conn)
            slot = matchup.slot_of(vote.competitor_id)
            if slot is not None:
                self.store.adjust_tally(matchup_id, slot, -1, conn=conn)

            updated = self.store.get_matchup_by_id(matchup_id, conn=conn)

        logger.debug(f"Vote removed on matchup {matchup_id} by {voter_id}")
        return VoteOutcome(
            matchup_id=matchup_id,
            voter_id=voter_id,
            action=VoteAction.REMOVED,
            competitor_id=vote.competitor_id,
            tally1=updated.tally1,
            tally2=updated.tally2,
        )

    def get_vote(self, matchup_id: str, voter_id: str) -> Vote:
        """Return the voter's current vote on a matchup."""
        with self.store.transaction() as conn:
            self.store.get_matchup_by_id(matchup_id, conn=conn)
            vote = self.store.get_vote(matchup_id, voter_id, conn=conn)

        if vote is None:
            raise NotFoundError(
                f"No vote recorded for voter {voter_id} on matchup {matchup_id}"
            )
        return vote

    @staticmethod
    def _ensure_voting_open(matchup: Matchup, window: VotingWindow) -> None:
        if matchup.is_decided:
            raise InvalidStateError("This matchup has already been decided")

        if not window.is_active:
            raise InvalidStateError("Voting is not currently active")

        if not window.accepts(matchup.round_number):
            raise InvalidStateError(
                f"Voting is active for Round {window.current_round}, "
                f"not Round {matchup.round_number}"
            )

        if not matchup.is_populated:
            raise InvalidStateError("Matchup is still waiting for a competitor")
