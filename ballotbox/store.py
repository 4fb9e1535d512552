"""
PostgreSQL-backed ballot store.

``PostgresStore`` hands out a ``BallotRepository`` bound to one pooled
connection, either plain (reads) or inside a transaction (the ballot
write).  Every query the protocol needs lives on the repository, so the
validator, executor and aggregator never see SQL.

Driver and connectivity faults are re-raised as ``StorageError``; protocol
errors raised by callers inside a block pass through untouched (after the
transaction has rolled back).
"""
import logging
from contextlib import asynccontextmanager

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from .database import Database
from .errors import DuplicateVote, StorageError

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class BallotRepository:
    """Queries over the ballot tables, bound to a single connection."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    # ── Directory reads ──────────────────────────────────────────────────────

    async def get_election(self, election_id: int):
        return await self.conn.fetchrow(
            """
            SELECT id, name, description, status, start_date, end_date
            FROM elections WHERE id = $1
            """,
            election_id,
        )

    async def list_portfolios(self, election_id: int):
        return await self.conn.fetch(
            """
            SELECT id, name, description, election_id
            FROM portfolios WHERE election_id = $1
            ORDER BY id
            """,
            election_id,
        )

    async def get_candidates(self, candidate_ids: list[int]):
        if not candidate_ids:
            return []
        return await self.conn.fetch(
            "SELECT id, portfolio_id, election_id FROM candidates WHERE id = ANY($1::int[])",
            candidate_ids,
        )

    async def get_voter(self, external_id: str):
        return await self.conn.fetchrow(
            "SELECT id, voter_id, name FROM voters WHERE voter_id = $1",
            external_id,
        )

    # ── Ballot writes ────────────────────────────────────────────────────────

    async def lock_election(self, election_id: int):
        """Re-read the election's status and window, holding a share lock until commit."""
        return await self.conn.fetchrow(
            "SELECT id, status, start_date, end_date FROM elections WHERE id = $1 FOR SHARE",
            election_id,
        )

    async def claim_ballot(self, voter_pk: int, election_id: int) -> bool:
        """Flip has_voted to TRUE for (voter, election), creating the row if needed.

        Returns False when the voter had already voted.  The conditional
        upsert is a single statement, so of two concurrent claims exactly
        one gets a row back; the other blocks on the row lock and then
        sees has_voted = TRUE.
        """
        row_id = await self.conn.fetchval(
            """
            INSERT INTO voter_elections (voter_id, election_id, has_voted)
            VALUES ($1, $2, TRUE)
            ON CONFLICT (voter_id, election_id)
            DO UPDATE SET has_voted = TRUE
            WHERE voter_elections.has_voted = FALSE
            RETURNING id
            """,
            voter_pk, election_id,
        )
        return row_id is not None

    async def add_vote_action(self, voter_pk: int, election_id: int, portfolio_id: int,
                              candidate_id: int | None, action_type: str) -> int:
        try:
            return await self.conn.fetchval(
                """
                INSERT INTO vote_actions
                    (voter_id, election_id, portfolio_id, candidate_id, action_type)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                voter_pk, election_id, portfolio_id, candidate_id, action_type,
            )
        except UniqueViolationError as e:
            if e.constraint_name == "vote_actions_one_decision_key":
                raise DuplicateVote() from e
            raise

    async def add_vote(self, voter_pk: int, candidate_id: int, election_id: int) -> int:
        return await self.conn.fetchval(
            """
            INSERT INTO votes (voter_id, candidate_id, election_id)
            VALUES ($1, $2, $3)
            RETURNING id
            """,
            voter_pk, candidate_id, election_id,
        )

    # ── Tally reads ──────────────────────────────────────────────────────────

    async def portfolio_action_counts(self, election_id: int):
        return await self.conn.fetch(
            """
            SELECT p.id AS portfolio_id,
                   COUNT(va.id) AS total,
                   COUNT(va.id) FILTER (WHERE va.action_type = 'SKIP') AS skips
            FROM portfolios p
            LEFT JOIN vote_actions va
                   ON va.portfolio_id = p.id AND va.election_id = p.election_id
            WHERE p.election_id = $1
            GROUP BY p.id
            ORDER BY p.id
            """,
            election_id,
        )

    async def candidate_vote_counts(self, election_id: int):
        return await self.conn.fetch(
            """
            SELECT c.id, c.portfolio_id, c.name, c.party, c.party_symbol,
                   c.profile_picture, COUNT(va.id) AS vote_count
            FROM candidates c
            LEFT JOIN vote_actions va
                   ON va.candidate_id = c.id
                  AND va.portfolio_id = c.portfolio_id
                  AND va.election_id = c.election_id
                  AND va.action_type = 'VOTE'
            WHERE c.election_id = $1
            GROUP BY c.id
            ORDER BY c.portfolio_id, c.id
            """,
            election_id,
        )

    async def voter_turnout(self, election_id: int):
        return await self.conn.fetchrow(
            """
            SELECT COUNT(*) AS total_voters,
                   COUNT(*) FILTER (WHERE has_voted) AS votes_cast
            FROM voter_elections
            WHERE election_id = $1
            """,
            election_id,
        )

    async def list_vote_actions(self, election_id: int):
        return await self.conn.fetch(
            """
            SELECT va.id, v.name AS voter_name,
                   va.portfolio_id, p.name AS portfolio_name,
                   va.candidate_id, c.name AS candidate_name,
                   va.action_type, va.created_at
            FROM vote_actions va
            JOIN voters v ON v.id = va.voter_id
            JOIN portfolios p ON p.id = va.portfolio_id
            LEFT JOIN candidates c ON c.id = va.candidate_id
            WHERE va.election_id = $1
            ORDER BY va.created_at DESC, va.id DESC
            """,
            election_id,
        )


class PostgresStore:
    """Ballot store over the shared asyncpg pool."""

    async def start(self, migrate: bool = False) -> None:
        await Database.get_pool()
        if migrate:
            await Database.ensure_schema()

    async def close(self) -> None:
        await Database.close()

    @asynccontextmanager
    async def connection(self):
        try:
            async with Database.connection() as conn:
                yield BallotRepository(conn)
        except _DRIVER_ERRORS as e:
            raise StorageError(str(e)) from e

    @asynccontextmanager
    async def transaction(self):
        try:
            async with Database.transaction() as conn:
                yield BallotRepository(conn)
        except _DRIVER_ERRORS as e:
            raise StorageError(str(e)) from e

    @asynccontextmanager
    async def snapshot(self):
        """Read-only repeatable-read transaction: every query sees the same commit state."""
        try:
            async with Database.transaction(isolation="repeatable_read", readonly=True) as conn:
                yield BallotRepository(conn)
        except _DRIVER_ERRORS as e:
            raise StorageError(str(e)) from e
