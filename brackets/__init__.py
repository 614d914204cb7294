"""Single-elimination tournament bracket engine with round-gated voting."""

from .advancement import AdvancementEngine
from .api import BracketAPI
from .database import BracketStore
from .exceptions import (
    BracketError,
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
)
from .ledger import VoteLedger
from .manager import BracketManager
from .models import (
    AdvanceStatus,
    BracketTemplate,
    ConsoleStatus,
    Matchup,
    MatchupAdvanceResult,
    MatchupTemplate,
    RoundCloseReport,
    RoundTemplate,
    SlotIndex,
    SlotTemplate,
    TournamentCreateRequest,
    TournamentRecord,
    TournamentStatus,
    TournamentView,
    Vote,
    VoteAction,
    VoteOutcome,
    VotingWindow,
)
from .query import TournamentQuery, round_name
from .voting_window import VotingWindowController

__all__ = [
    "AdvancementEngine",
    "BracketAPI",
    "BracketStore",
    "BracketManager",
    "VoteLedger",
    "VotingWindowController",
    "TournamentQuery",
    "round_name",
    "BracketError",
    "ConflictError",
    "InvalidInputError",
    "InvalidStateError",
    "NotFoundError",
    "StorageError",
    "UnauthorizedError",
    "AdvanceStatus",
    "BracketTemplate",
    "ConsoleStatus",
    "Matchup",
    "MatchupAdvanceResult",
    "MatchupTemplate",
    "RoundCloseReport",
    "RoundTemplate",
    "SlotIndex",
    "SlotTemplate",
    "TournamentCreateRequest",
    "TournamentRecord",
    "TournamentStatus",
    "TournamentView",
    "Vote",
    "VoteAction",
    "VoteOutcome",
    "VotingWindow",
]
