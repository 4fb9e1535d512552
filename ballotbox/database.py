"""
Async database access for the ballot service.
Uses asyncpg for non-blocking PostgreSQL access with connection pooling.
"""
import logging
from contextlib import asynccontextmanager

import asyncpg

from . import config

logger = logging.getLogger(__name__)


# Idempotent bootstrap DDL.  Directory tables (elections, portfolios,
# candidates, voters) are owned by the admin application; they are created
# here only so a fresh database can accept ballots.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS elections (
    id          SERIAL PRIMARY KEY,
    name        VARCHAR(255) NOT NULL,
    description TEXT,
    status      VARCHAR(20) NOT NULL DEFAULT 'UPCOMING'
                CHECK (status IN ('UPCOMING', 'IN_PROGRESS', 'ENDED', 'PAUSED', 'CANCELLED')),
    start_date  TIMESTAMPTZ,
    end_date    TIMESTAMPTZ,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CHECK (start_date IS NULL OR end_date IS NULL OR start_date < end_date)
);

CREATE TABLE IF NOT EXISTS portfolios (
    id          SERIAL PRIMARY KEY,
    name        VARCHAR(255) NOT NULL,
    description TEXT,
    election_id INTEGER NOT NULL REFERENCES elections(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS candidates (
    id              SERIAL PRIMARY KEY,
    name            VARCHAR(255) NOT NULL,
    party           VARCHAR(255),
    party_symbol    TEXT,
    profile_picture TEXT,
    portfolio_id    INTEGER NOT NULL REFERENCES portfolios(id) ON DELETE CASCADE,
    election_id     INTEGER NOT NULL REFERENCES elections(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS voters (
    id           SERIAL PRIMARY KEY,
    voter_id     VARCHAR(64) UNIQUE,
    phone_number VARCHAR(32) UNIQUE,
    name         VARCHAR(255) NOT NULL,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS voter_elections (
    id          SERIAL PRIMARY KEY,
    voter_id    INTEGER NOT NULL REFERENCES voters(id) ON DELETE CASCADE,
    election_id INTEGER NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    has_voted   BOOLEAN NOT NULL DEFAULT FALSE,
    CONSTRAINT voter_elections_voter_election_key UNIQUE (voter_id, election_id)
);

CREATE TABLE IF NOT EXISTS vote_actions (
    id           SERIAL PRIMARY KEY,
    voter_id     INTEGER NOT NULL REFERENCES voters(id),
    election_id  INTEGER NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    portfolio_id INTEGER NOT NULL REFERENCES portfolios(id) ON DELETE CASCADE,
    candidate_id INTEGER REFERENCES candidates(id) ON DELETE CASCADE,
    action_type  VARCHAR(4) NOT NULL CHECK (action_type IN ('VOTE', 'SKIP')),
    created_at   TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT vote_actions_one_decision_key UNIQUE (voter_id, election_id, portfolio_id),
    CHECK ((action_type = 'VOTE') = (candidate_id IS NOT NULL))
);

CREATE TABLE IF NOT EXISTS votes (
    id           SERIAL PRIMARY KEY,
    voter_id     INTEGER NOT NULL REFERENCES voters(id),
    candidate_id INTEGER NOT NULL REFERENCES candidates(id) ON DELETE CASCADE,
    election_id  INTEGER NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT votes_one_per_candidate_key UNIQUE (voter_id, candidate_id, election_id)
);

CREATE INDEX IF NOT EXISTS idx_vote_actions_election_portfolio
    ON vote_actions (election_id, portfolio_id);
CREATE INDEX IF NOT EXISTS idx_voter_elections_election
    ON voter_elections (election_id);
"""


class Database:
    """Async database connection pool manager."""

    _pool: asyncpg.Pool | None = None

    @classmethod
    async def get_pool(cls) -> asyncpg.Pool:
        """Return the existing pool or create one lazily."""
        if cls._pool is None:
            cls._pool = await asyncpg.create_pool(
                host=config.DB_HOST,
                port=config.DB_PORT,
                database=config.DB_NAME,
                user=config.DB_USER,
                password=config.DB_PASSWORD,
                min_size=config.DB_POOL_MIN,
                max_size=config.DB_POOL_MAX,
            )
            logger.info(f"Database pool ready ({config.DB_HOST}:{config.DB_PORT}/{config.DB_NAME})")
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        """Gracefully close the pool (called on app shutdown)."""
        if cls._pool is not None:
            await cls._pool.close()
            cls._pool = None

    @classmethod
    @asynccontextmanager
    async def connection(cls):
        """Acquire a connection from the pool (auto-released on exit)."""
        pool = await cls.get_pool()
        async with pool.acquire() as conn:
            yield conn

    @classmethod
    @asynccontextmanager
    async def transaction(cls, **options):
        """Acquire a connection and open a transaction (auto-committed/rolled-back).

        ``options`` are passed to ``Connection.transaction`` (isolation, readonly).
        """
        pool = await cls.get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction(**options):
                yield conn

    @classmethod
    async def ensure_schema(cls) -> None:
        """Create any missing tables.  Safe to run on every start."""
        async with cls.connection() as conn:
            await conn.execute(SCHEMA_SQL)
