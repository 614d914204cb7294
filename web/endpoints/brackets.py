"""Tournament bracket and voting endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, Depends

from brackets import BracketAPI, BracketManager
from brackets.models import (
    AdvanceMatchupRequest,
    OpenVotingRequest,
    TournamentCreateRequest,
    VoteRequest,
)
from config.settings import get_default_config
from web.auth_utils import get_current_user, get_current_user_optional

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

bracket_api: BracketAPI | None = None


def get_bracket_api() -> BracketAPI:
    """Get or create the bracket API instance."""
    global bracket_api
    if bracket_api is None:
        config = get_default_config()
        bracket_api = BracketAPI(BracketManager.from_config(config))
        logger.info(f"Bracket API ready (database: {config.storage.db_path})")
    return bracket_api


def _user_id(user: dict[str, Any] | None) -> str | None:
    return user["id"] if user else None


# Public routes: viewing and voting


@router.post("/tournaments")
async def create_tournament(
    request: TournamentCreateRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Register a tournament; the caller becomes its owner."""
    return await api.create_tournament(request, current_user["id"])


@router.get("/tournaments/{tournament_id}")
async def get_tournament(tournament_id: str, api: BracketAPI = Depends(get_bracket_api)):
    """Get the merged bracket view."""
    return await api.get_tournament(tournament_id)


@router.post("/tournaments/matchups/{matchup_id}/vote")
async def vote_on_matchup(
    matchup_id: str,
    request: VoteRequest,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Cast or switch a vote."""
    return await api.vote(matchup_id, _user_id(current_user), request.competitor_id)


@router.delete("/tournaments/matchups/{matchup_id}/vote")
async def remove_vote(
    matchup_id: str,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Withdraw the caller's vote."""
    return await api.remove_vote(matchup_id, _user_id(current_user))


@router.get("/tournaments/matchups/{matchup_id}/vote")
async def get_my_vote(
    matchup_id: str,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Get the caller's current vote."""
    return await api.get_vote(matchup_id, _user_id(current_user))


# Management routes: owner only


@router.get("/tournaments/{tournament_id}/status")
async def get_tournament_status(
    tournament_id: str,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Get console status for the owner."""
    return await api.get_status(tournament_id, _user_id(current_user))


@router.post("/tournaments/{tournament_id}/voting/start")
async def start_voting(
    tournament_id: str,
    request: OpenVotingRequest,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Open the voting window for a round."""
    return await api.start_voting(tournament_id, request.round, _user_id(current_user))


@router.post("/tournaments/{tournament_id}/voting/end")
async def end_voting(
    tournament_id: str,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Close the voting window and advance winners."""
    return await api.end_voting(tournament_id, _user_id(current_user))


# Admin routes: manual advancement


@router.post("/tournaments/{tournament_id}/rounds/{round_number}/advance-all")
async def advance_round(
    tournament_id: str,
    round_number: int,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Advance every decidable matchup in a round."""
    return await api.advance_round(tournament_id, round_number, _user_id(current_user))


@router.post("/tournaments/matchups/{matchup_id}/advance")
async def advance_matchup(
    matchup_id: str,
    request: AdvanceMatchupRequest | None = None,
    current_user: dict[str, Any] | None = Depends(get_current_user_optional),
    api: BracketAPI = Depends(get_bracket_api),
):
    """Advance one matchup's winner, optionally forcing it."""
    return await api.advance_matchup(
        matchup_id,
        _user_id(current_user),
        request.force_winner_id if request else None,
    )
