"""Bracket API endpoint handlers."""

import logging
from typing import Any

from fastapi import HTTPException
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from .exceptions import (
    BracketError,
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from .manager import BracketManager
from .models import AdvanceStatus, RoundCloseReport, TournamentCreateRequest

logger = logging.getLogger(__name__)


def to_http_exception(error: BracketError) -> HTTPException:
    """Map an engine error kind to its HTTP status."""
    if isinstance(error, NotFoundError):
        status_code = HTTP_404_NOT_FOUND
    elif isinstance(error, (InvalidStateError, InvalidInputError)):
        status_code = HTTP_400_BAD_REQUEST
    elif isinstance(error, UnauthorizedError):
        status_code = HTTP_401_UNAUTHORIZED if error.requires_login else HTTP_403_FORBIDDEN
    elif isinstance(error, ConflictError):
        status_code = HTTP_409_CONFLICT
    else:
        logger.error(f"Bracket storage failure: {error}")
        return HTTPException(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
        )
    return HTTPException(status_code=status_code, detail=error.message)


def _report_payload(report: RoundCloseReport) -> dict[str, Any]:
    return {
        "round": report.round_number,
        "winners_advanced": report.advanced_count,
        "ties": sum(1 for r in report.results if r.status == AdvanceStatus.TIE),
        "champion_competitor_id": report.champion_competitor_id,
        "results": [r.model_dump(mode="json") for r in report.results],
    }


class BracketAPI:
    """FastAPI endpoint handlers for bracket operations."""

    def __init__(self, manager: BracketManager):
        self.manager = manager

    async def create_tournament(
        self, request: TournamentCreateRequest, owner_id: str
    ) -> dict[str, Any]:
        """Register a tournament and seed its bracket."""
        try:
            tournament = self.manager.create_tournament(request, owner_id)
            return {
                "tournament_id": tournament.id,
                "message": "Tournament created successfully",
                "total_rounds": tournament.total_rounds,
                "voting_window": tournament.voting_window.model_dump(mode="json"),
            }

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to create tournament: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def get_tournament(self, tournament_id: str) -> dict[str, Any]:
        """Get the merged bracket view."""
        try:
            view = self.manager.get_view(tournament_id)
            return view.model_dump(mode="json")

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to get tournament {tournament_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def get_status(self, tournament_id: str, requester_id: str | None) -> dict[str, Any]:
        """Get owner console status."""
        try:
            status = self.manager.get_console_status(tournament_id, requester_id)
            return status.model_dump(mode="json")

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to get status for tournament {tournament_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def start_voting(
        self, tournament_id: str, round_number: int, requester_id: str | None
    ) -> dict[str, Any]:
        """Open the voting window for a round."""
        try:
            window = self.manager.open_voting(tournament_id, round_number, requester_id)
            return {
                "message": f"Voting started for Round {round_number}",
                "voting_window": window.model_dump(mode="json"),
            }

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to start voting for tournament {tournament_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def end_voting(self, tournament_id: str, requester_id: str | None) -> dict[str, Any]:
        """Close the voting window and advance winners."""
        try:
            report = self.manager.close_voting(tournament_id, requester_id)
            return {
                "message": "Voting ended and winners advanced",
                **_report_payload(report),
            }

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to end voting for tournament {tournament_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def advance_round(
        self, tournament_id: str, round_number: int, requester_id: str | None
    ) -> dict[str, Any]:
        """Advance every decidable matchup of a round."""
        try:
            report = self.manager.advance_round(tournament_id, round_number, requester_id)
            return {
                "message": "Round advancement complete",
                **_report_payload(report),
            }

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(
                f"Failed to advance round {round_number} of tournament {tournament_id}: {e}"
            )
            raise HTTPException(status_code=500, detail="Internal server error")

    async def advance_matchup(
        self, matchup_id: str, requester_id: str | None, force_winner_id: str | None
    ) -> dict[str, Any]:
        """Advance a single matchup's winner."""
        try:
            result = self.manager.advance_matchup(
                matchup_id, requester_id, force_winner_id=force_winner_id
            )
            is_final = result.next_round is None
            return {
                "message": (
                    "Tournament completed!" if is_final else "Winner advanced to next round"
                ),
                **result.model_dump(mode="json"),
            }

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to advance matchup {matchup_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def vote(
        self, matchup_id: str, voter_id: str | None, competitor_id: str
    ) -> dict[str, Any]:
        """Cast or switch a vote."""
        try:
            outcome = self.manager.cast_vote(matchup_id, voter_id, competitor_id)
            return {
                "success": True,
                "message": "Vote recorded successfully",
                **outcome.model_dump(mode="json"),
            }

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to record vote on matchup {matchup_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def remove_vote(self, matchup_id: str, voter_id: str | None) -> dict[str, Any]:
        """Withdraw a vote."""
        try:
            outcome = self.manager.remove_vote(matchup_id, voter_id)
            return {
                "success": True,
                "message": "Vote removed",
                **outcome.model_dump(mode="json"),
            }

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to remove vote on matchup {matchup_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

    async def get_vote(self, matchup_id: str, voter_id: str | None) -> dict[str, Any]:
        """Get the caller's vote on a matchup."""
        try:
            vote = self.manager.get_vote(matchup_id, voter_id)
            return vote.model_dump(mode="json")

        except BracketError as e:
            raise to_http_exception(e)
        except Exception as e:
            logger.error(f"Failed to get vote on matchup {matchup_id}: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")
