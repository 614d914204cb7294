"""Bracket database operations."""

import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    StorageError,
)
from .models import (
    BracketTemplate,
    Matchup,
    SlotIndex,
    TournamentRecord,
    Vote,
    VotingWindow,
    matchup_key_for,
)
from .schema import SchemaManager

logger = logging.getLogger(__name__)

# Column names are never taken from user input
SLOT_COLUMNS = {
    SlotIndex.SLOT1: "slot1_competitor_id",
    SlotIndex.SLOT2: "slot2_competitor_id",
}
TALLY_COLUMNS = {
    SlotIndex.SLOT1: "tally1",
    SlotIndex.SLOT2: "tally2",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def parse_template(template: BracketTemplate | dict[str, Any]) -> BracketTemplate:
    """Validate raw template data, raising InvalidInputError when malformed."""
    if isinstance(template, BracketTemplate):
        return template
    try:
        return BracketTemplate.model_validate(template)
    except ValidationError as e:
        raise InvalidInputError(f"Malformed bracket template: {e}") from e


class BracketStore:
    """Manages SQLite persistence for tournaments, matchups and votes.

    Every public method accepts an optional ``conn``. When given, the call
    joins the caller's transaction; otherwise it runs in its own.
    """

    def __init__(self, db_path: str = "brackets.db", busy_timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self.schema_manager = SchemaManager()
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database with required tables using schema manager."""
        if not self.schema_manager.validate_schema_files():
            raise RuntimeError("Database schema validation failed - missing schema files")

        with self.transaction() as conn:
            self.schema_manager.initialize_database_schema(conn.cursor())

        logger.info(f"Bracket database initialized at {self.db_path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get an autocommit connection; transactions are managed explicitly."""
        conn = None
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            if conn:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block under the database write lock.

        ``BEGIN IMMEDIATE`` takes the write lock before the first read, so a
        read-validate-mutate sequence inside the block is atomic. Any
        exception rolls back; sqlite errors surface as StorageError.
        """
        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.execute("COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            logger.error(f"Bracket database error: {e}")
            raise StorageError(f"Storage failure: {e}") from e

    @contextmanager
    def _use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def create_tournament(
        self, record: TournamentRecord, conn: sqlite3.Connection | None = None
    ) -> TournamentRecord:
        """Insert a tournament record supplied by the event lifecycle."""
        now = _now()
        with self._use(conn) as c:
            try:
                c.execute(
                    """
                    INSERT INTO tournaments (
                        id, owner_id, starts_at, ends_at, require_login,
                        template, voting_window, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.owner_id,
                        record.starts_at.isoformat(),
                        record.ends_at.isoformat(),
                        int(record.require_login),
                        record.template.model_dump_json() if record.template else None,
                        VotingWindow.closed().model_dump_json(),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"Tournament {record.id} already exists") from e

        logger.info(f"Created tournament {record.id} owned by {record.owner_id}")
        return record.model_copy(
            update={"voting_window": VotingWindow.closed(), "created_at": _parse_ts(now)}
        )

    def get_tournament(
        self, tournament_id: str, conn: sqlite3.Connection | None = None
    ) -> TournamentRecord:
        """Get tournament by ID."""
        with self._use(conn) as c:
            row = c.execute(
                "SELECT * FROM tournaments WHERE id = ?", (tournament_id,)
            ).fetchone()

        if not row:
            raise NotFoundError(f"Tournament {tournament_id} not found")

        return TournamentRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            starts_at=datetime.fromisoformat(row["starts_at"]),
            ends_at=datetime.fromisoformat(row["ends_at"]),
            require_login=bool(row["require_login"]),
            template=(
                BracketTemplate.model_validate_json(row["template"])
                if row["template"]
                else None
            ),
            voting_window=VotingWindow.model_validate_json(row["voting_window"]),
            champion_competitor_id=row["champion_competitor_id"],
            created_at=_parse_ts(row["created_at"]),
        )

    def save_voting_window(
        self,
        tournament_id: str,
        window: VotingWindow,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._use(conn) as c:
            cursor = c.execute(
                "UPDATE tournaments SET voting_window = ?, updated_at = ? WHERE id = ?",
                (window.model_dump_json(), _now(), tournament_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Tournament {tournament_id} not found")

    def set_champion(
        self,
        tournament_id: str,
        competitor_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Record the champion once; later calls leave it unchanged."""
        with self._use(conn) as c:
            cursor = c.execute(
                """
                UPDATE tournaments
                SET champion_competitor_id = ?, updated_at = ?
                WHERE id = ? AND champion_competitor_id IS NULL
                """,
                (competitor_id, _now(), tournament_id),
            )
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Bracket
    # ------------------------------------------------------------------

    def initialize(
        self,
        tournament_id: str,
        template: BracketTemplate | dict[str, Any],
        conn: sqlite3.Connection | None = None,
    ) -> list[Matchup]:
        """Persist the template and its seeded round-1 matchups."""
        bracket = parse_template(template)

        with self._use(conn) as c:
            self.get_tournament(tournament_id, conn=c)

            existing = c.execute(
                "SELECT COUNT(*) AS count FROM matchups WHERE tournament_id = ?",
                (tournament_id,),
            ).fetchone()["count"]
            if existing:
                raise ConflictError(
                    f"Bracket for tournament {tournament_id} is already initialized"
                )

            now = _now()
            c.execute(
                "UPDATE tournaments SET template = ?, updated_at = ? WHERE id = ?",
                (bracket.model_dump_json(), now, tournament_id),
            )

            for matchup in bracket.rounds[0].matchups:
                c.execute(
                    """
                    INSERT INTO matchups (
                        id, tournament_id, matchup_key, round_number, position,
                        slot1_competitor_id, slot2_competitor_id, created_at, updated_at
                    ) VALUES (?, ?, ?, 1, ?, ?, ?, ?, ?)
                    """,
                    (
                        uuid.uuid4().hex,
                        tournament_id,
                        matchup.id,
                        matchup.position,
                        matchup.slot1.competitor_id if matchup.slot1 else None,
                        matchup.slot2.competitor_id if matchup.slot2 else None,
                        now,
                        now,
                    ),
                )

            matchups = self.list_round(tournament_id, 1, conn=c)

        logger.info(
            f"Initialized bracket for tournament {tournament_id}: "
            f"{bracket.total_rounds} rounds, {len(matchups)} opening matchups"
        )
        return matchups

    def get_matchup(
        self,
        tournament_id: str,
        round_number: int,
        position: int,
        conn: sqlite3.Connection | None = None,
    ) -> Matchup:
        with self._use(conn) as c:
            row = c.execute(
                """
                SELECT * FROM matchups
                WHERE tournament_id = ? AND round_number = ? AND position = ?
                """,
                (tournament_id, round_number, position),
            ).fetchone()

        if not row:
            raise NotFoundError(
                f"No matchup at round {round_number} position {position} "
                f"in tournament {tournament_id}"
            )
        return self._row_to_matchup(row)

    def get_matchup_by_id(
        self, matchup_id: str, conn: sqlite3.Connection | None = None
    ) -> Matchup:
        with self._use(conn) as c:
            row = c.execute(
                "SELECT * FROM matchups WHERE id = ?", (matchup_id,)
            ).fetchone()

        if not row:
            raise NotFoundError(f"Matchup {matchup_id} not found")
        return self._row_to_matchup(row)

    def list_round(
        self,
        tournament_id: str,
        round_number: int,
        conn: sqlite3.Connection | None = None,
    ) -> list[Matchup]:
        """Matchups of a round ordered by position; empty if none exist yet."""
        with self._use(conn) as c:
            rows = c.execute(
                """
                SELECT * FROM matchups
                WHERE tournament_id = ? AND round_number = ?
                ORDER BY position
                """,
                (tournament_id, round_number),
            ).fetchall()

        return [self._row_to_matchup(row) for row in rows]

    def list_matchups(
        self, tournament_id: str, conn: sqlite3.Connection | None = None
    ) -> list[Matchup]:
        with self._use(conn) as c:
            rows = c.execute(
                """
                SELECT * FROM matchups
                WHERE tournament_id = ?
                ORDER BY round_number, position
                """,
                (tournament_id,),
            ).fetchall()

        return [self._row_to_matchup(row) for row in rows]

    def upsert_slot(
        self,
        tournament_id: str,
        round_number: int,
        position: int,
        slot_index: SlotIndex,
        competitor_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Matchup:
        """Create the matchup row if absent, otherwise set only the named slot.

        Tallies, winner and the other slot are never touched. Writing the
        value a slot already holds changes nothing.
        """
        column = SLOT_COLUMNS[slot_index]

        with self._use(conn) as c:
            tournament = self.get_tournament(tournament_id, conn=c)
            matchup_key = matchup_key_for(round_number, position)
            if tournament.template is not None:
                total_rounds = tournament.template.total_rounds
                if not 1 <= round_number <= total_rounds:
                    raise InvalidInputError(
                        f"Round {round_number} is outside 1..{total_rounds}"
                    )
                max_position = 2 ** (total_rounds - round_number) - 1
                if not 0 <= position <= max_position:
                    raise InvalidInputError(
                        f"Position {position} is outside 0..{max_position} "
                        f"for round {round_number}"
                    )
                template_matchup = tournament.template.matchup_at(round_number, position)
                if template_matchup is not None:
                    matchup_key = template_matchup.id

            now = _now()
            c.execute(
                f"""
                INSERT INTO matchups (
                    id, tournament_id, matchup_key, round_number, position,
                    {column}, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (tournament_id, round_number, position) DO UPDATE
                SET {column} = excluded.{column}, updated_at = excluded.updated_at
                WHERE matchups.{column} IS NOT excluded.{column}
                """,
                (
                    uuid.uuid4().hex,
                    tournament_id,
                    matchup_key,
                    round_number,
                    position,
                    competitor_id,
                    now,
                    now,
                ),
            )

            return self.get_matchup(tournament_id, round_number, position, conn=c)

    def record_winner(
        self,
        matchup_id: str,
        winner_competitor_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Set the winner if none is recorded yet. Returns False otherwise."""
        with self._use(conn) as c:
            now = _now()
            cursor = c.execute(
                """
                UPDATE matchups
                SET winner_competitor_id = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND winner_competitor_id IS NULL
                """,
                (winner_competitor_id, now, now, matchup_id),
            )
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Votes and tallies
    # ------------------------------------------------------------------

    def get_vote(
        self,
        matchup_id: str,
        voter_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Vote | None:
        with self._use(conn) as c:
            row = c.execute(
                "SELECT * FROM votes WHERE matchup_id = ? AND voter_id = ?",
                (matchup_id, voter_id),
            ).fetchone()

        return self._row_to_vote(row) if row else None

    def insert_vote(
        self,
        matchup_id: str,
        voter_id: str | None,
        competitor_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> Vote:
        with self._use(conn) as c:
            cast_at = _now()
            try:
                cursor = c.execute(
                    """
                    INSERT INTO votes (matchup_id, voter_id, competitor_id, cast_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (matchup_id, voter_id, competitor_id, cast_at),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(
                    f"Voter {voter_id} already has a vote on matchup {matchup_id}"
                ) from e

        return Vote(
            id=cursor.lastrowid,
            matchup_id=matchup_id,
            voter_id=voter_id,
            competitor_id=competitor_id,
            cast_at=datetime.fromisoformat(cast_at),
        )

    def update_vote_competitor(
        self,
        vote_id: int,
        competitor_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._use(conn) as c:
            c.execute(
                "UPDATE votes SET competitor_id = ?, cast_at = ? WHERE id = ?",
                (competitor_id, _now(), vote_id),
            )

    def delete_vote(self, vote_id: int, conn: sqlite3.Connection | None = None) -> None:
        with self._use(conn) as c:
            c.execute("DELETE FROM votes WHERE id = ?", (vote_id,))

    def adjust_tally(
        self,
        matchup_id: str,
        slot_index: SlotIndex,
        delta: int,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """Add ``delta`` to one tally, clamping at zero."""
        column = TALLY_COLUMNS[slot_index]
        with self._use(conn) as c:
            c.execute(
                f"""
                UPDATE matchups
                SET {column} = MAX({column} + ?, 0), updated_at = ?
                WHERE id = ?
                """,
                (delta, _now(), matchup_id),
            )

    def count_votes(
        self, matchup_id: str, conn: sqlite3.Connection | None = None
    ) -> dict[str, int]:
        """Recorded votes per competitor for a matchup."""
        with self._use(conn) as c:
            rows = c.execute(
                """
                SELECT competitor_id, COUNT(*) AS count
                FROM votes
                WHERE matchup_id = ?
                GROUP BY competitor_id
                """,
                (matchup_id,),
            ).fetchall()

        return {row["competitor_id"]: row["count"] for row in rows}

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_matchup(row: sqlite3.Row) -> Matchup:
        return Matchup(
            id=row["id"],
            tournament_id=row["tournament_id"],
            matchup_key=row["matchup_key"],
            round_number=row["round_number"],
            position=row["position"],
            slot1_competitor_id=row["slot1_competitor_id"],
            slot2_competitor_id=row["slot2_competitor_id"],
            tally1=row["tally1"],
            tally2=row["tally2"],
            winner_competitor_id=row["winner_competitor_id"],
            completed_at=_parse_ts(row["completed_at"]),
        )

    @staticmethod
    def _row_to_vote(row: sqlite3.Row) -> Vote:
        return Vote(
            id=row["id"],
            matchup_id=row["matchup_id"],
            voter_id=row["voter_id"],
            competitor_id=row["competitor_id"],
            cast_at=datetime.fromisoformat(row["cast_at"]),
        )


__all__ = ["BracketStore", "parse_template"]
