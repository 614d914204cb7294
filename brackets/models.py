"""Bracket engine data models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TournamentStatus(Enum):
    """Schedule-derived tournament status."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class SlotIndex(Enum):
    """Competitor slot within a matchup."""

    SLOT1 = 1
    SLOT2 = 2


class AdvanceStatus(Enum):
    """Per-matchup outcome of a round close."""

    ADVANCED = "advanced"
    TIE = "tie"
    ALREADY_ADVANCED = "already_advanced"
    INCOMPLETE = "incomplete"  # a slot is still empty
    ERROR = "error"


class VoteAction(Enum):
    """What a vote call did to the ledger."""

    CAST = "cast"
    SWITCHED = "switched"
    UNCHANGED = "unchanged"
    REMOVED = "removed"


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Bracket template (supplied by the external seeding step)
# ---------------------------------------------------------------------------


class SlotTemplate(BaseModel):
    """Seeded competitor in a template slot."""

    model_config = ConfigDict(populate_by_name=True)

    competitor_id: str = Field(..., alias="competitorId", min_length=1)
    seed: int = Field(..., gt=0)


class MatchupTemplate(BaseModel):
    """Matchup slot pair at a fixed position within a round."""

    id: str = Field(..., min_length=1)
    position: int = Field(..., ge=0)
    slot1: SlotTemplate | None = None
    slot2: SlotTemplate | None = None


class RoundTemplate(BaseModel):
    """One elimination stage of the template."""

    model_config = ConfigDict(populate_by_name=True)

    round_number: int = Field(..., alias="roundNumber", ge=1)
    matchups: list[MatchupTemplate]


class BracketTemplate(BaseModel):
    """Ordered rounds of matchup slots for a single-elimination bracket."""

    rounds: list[RoundTemplate]

    @model_validator(mode="after")
    def validate_structure(self) -> "BracketTemplate":
        if not self.rounds:
            raise ValueError("Template must contain at least one round")

        self.rounds.sort(key=lambda r: r.round_number)
        total_rounds = len(self.rounds)
        numbers = [r.round_number for r in self.rounds]
        if numbers != list(range(1, total_rounds + 1)):
            raise ValueError(f"Round numbers must be 1..{total_rounds}, got {numbers}")

        seen_ids: set[str] = set()
        for round_template in self.rounds:
            expected = 2 ** (total_rounds - round_template.round_number)
            round_template.matchups.sort(key=lambda m: m.position)
            positions = [m.position for m in round_template.matchups]
            if positions != list(range(expected)):
                raise ValueError(
                    f"Round {round_template.round_number} must have positions "
                    f"0..{expected - 1}, got {positions}"
                )
            for matchup in round_template.matchups:
                if matchup.id in seen_ids:
                    raise ValueError(f"Duplicate matchup id '{matchup.id}'")
                seen_ids.add(matchup.id)

        competitors: set[str] = set()
        for matchup in self.rounds[0].matchups:
            if matchup.slot1 is None or matchup.slot2 is None:
                raise ValueError(
                    f"Round 1 matchup '{matchup.id}' must have both slots populated"
                )
            for slot in (matchup.slot1, matchup.slot2):
                if slot.competitor_id in competitors:
                    raise ValueError(
                        f"Competitor '{slot.competitor_id}' appears more than once in round 1"
                    )
                competitors.add(slot.competitor_id)

        return self

    @property
    def total_rounds(self) -> int:
        return len(self.rounds)

    def get_round(self, round_number: int) -> RoundTemplate | None:
        for round_template in self.rounds:
            if round_template.round_number == round_number:
                return round_template
        return None

    def matchup_at(self, round_number: int, position: int) -> MatchupTemplate | None:
        round_template = self.get_round(round_number)
        if round_template is None:
            return None
        for matchup in round_template.matchups:
            if matchup.position == position:
                return matchup
        return None

    def seeds(self) -> dict[str, int]:
        """Map competitor id to its round-1 seed."""
        seeds: dict[str, int] = {}
        for matchup in self.rounds[0].matchups:
            for slot in (matchup.slot1, matchup.slot2):
                if slot is not None:
                    seeds[slot.competitor_id] = slot.seed
        return seeds


def matchup_key_for(round_number: int, position: int) -> str:
    """Fallback key for matchups the template does not name."""
    return f"r{round_number}-m{position + 1}"


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


class VotingWindow(BaseModel):
    """Per-tournament gate stating which round accepts votes."""

    is_active: bool = False
    current_round: int | None = None

    @classmethod
    def closed(cls) -> "VotingWindow":
        return cls(is_active=False, current_round=None)

    @classmethod
    def opened(cls, round_number: int) -> "VotingWindow":
        return cls(is_active=True, current_round=round_number)

    def accepts(self, round_number: int) -> bool:
        return self.is_active and self.current_round == round_number


class TournamentRecord(BaseModel):
    """Tournament record owned by the external event lifecycle."""

    id: str
    owner_id: str
    starts_at: datetime
    ends_at: datetime
    require_login: bool = False
    template: BracketTemplate | None = None
    voting_window: VotingWindow = Field(default_factory=VotingWindow)
    champion_competitor_id: str | None = None
    created_at: datetime | None = None

    @field_validator("starts_at", "ends_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def total_rounds(self) -> int:
        return self.template.total_rounds if self.template else 0


class Matchup(BaseModel):
    """Live matchup with slots, tallies and the eventual winner."""

    id: str
    tournament_id: str
    matchup_key: str
    round_number: int
    position: int
    slot1_competitor_id: str | None = None
    slot2_competitor_id: str | None = None
    tally1: int = 0
    tally2: int = 0
    winner_competitor_id: str | None = None
    completed_at: datetime | None = None

    @property
    def is_decided(self) -> bool:
        return self.winner_competitor_id is not None

    @property
    def is_populated(self) -> bool:
        return (
            self.slot1_competitor_id is not None
            and self.slot2_competitor_id is not None
        )

    def slot_of(self, competitor_id: str) -> SlotIndex | None:
        if competitor_id is None:
            return None
        if competitor_id == self.slot1_competitor_id:
            return SlotIndex.SLOT1
        if competitor_id == self.slot2_competitor_id:
            return SlotIndex.SLOT2
        return None


class Vote(BaseModel):
    """One recorded vote; ``voter_id`` is None for anonymous votes."""

    id: int | None = None
    matchup_id: str
    voter_id: str | None = None
    competitor_id: str
    cast_at: datetime


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class VoteOutcome(BaseModel):
    """Result of a cast, switch or removal."""

    matchup_id: str
    voter_id: str | None
    action: VoteAction
    competitor_id: str | None
    tally1: int
    tally2: int


class MatchupAdvanceResult(BaseModel):
    """Outcome of closing one matchup."""

    matchup_id: str
    matchup_key: str
    round_number: int
    position: int
    status: AdvanceStatus
    winner_competitor_id: str | None = None
    next_round: int | None = None
    next_position: int | None = None
    tie_broken: bool = False
    error: str | None = None


class RoundCloseReport(BaseModel):
    """Per-matchup results of closing a round."""

    tournament_id: str
    round_number: int
    results: list[MatchupAdvanceResult] = Field(default_factory=list)
    champion_competitor_id: str | None = None

    @property
    def advanced_count(self) -> int:
        return sum(1 for r in self.results if r.status == AdvanceStatus.ADVANCED)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


class SlotView(BaseModel):
    competitor_id: str
    seed: int | None = None


class MatchupView(BaseModel):
    """Template matchup merged with its live data."""

    id: str  # template matchup id
    matchup_id: str | None = None  # persisted id, None until the row exists
    round_number: int
    position: int
    slot1: SlotView | None = None
    slot2: SlotView | None = None
    tally1: int = 0
    tally2: int = 0
    winner_competitor_id: str | None = None
    completed_at: datetime | None = None


class RoundView(BaseModel):
    round_number: int
    round_name: str
    matchups: list[MatchupView]


class TournamentView(BaseModel):
    """Merged bracket view served to consumers."""

    tournament_id: str
    status: TournamentStatus
    current_round: int
    total_rounds: int
    rounds: list[RoundView]
    voting_window: VotingWindow
    champion_competitor_id: str | None = None
    starts_at: datetime
    ends_at: datetime


class ConsoleMatchup(BaseModel):
    matchup_id: str
    matchup_key: str
    round_number: int
    position: int
    slot1_competitor_id: str | None = None
    slot2_competitor_id: str | None = None
    tally1: int = 0
    tally2: int = 0
    winner_competitor_id: str | None = None
    completed: bool = False


class ConsoleStatus(BaseModel):
    """Owner console summary of round progress."""

    tournament_id: str
    current_round: int
    total_rounds: int
    is_complete: bool
    voting_window: VotingWindow
    rounds: dict[int, list[ConsoleMatchup]]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TournamentCreateRequest(BaseModel):
    """Request to register a tournament and seed its bracket."""

    id: str | None = Field(default=None, description="Tournament id; generated if omitted")
    starts_at: datetime = Field(..., description="Voting period start")
    ends_at: datetime = Field(..., description="Voting period end")
    require_login: bool = Field(default=False, description="Reject anonymous votes")
    template: BracketTemplate

    @model_validator(mode="after")
    def validate_schedule(self) -> "TournamentCreateRequest":
        if _as_utc(self.ends_at) <= _as_utc(self.starts_at):
            raise ValueError("ends_at must be after starts_at")
        return self


class VoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    competitor_id: str = Field(..., alias="competitorId", min_length=1)


class OpenVotingRequest(BaseModel):
    round: int = Field(..., ge=1, description="Round to open for voting")


class AdvanceMatchupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    force_winner_id: str | None = Field(default=None, alias="forceWinnerId")
