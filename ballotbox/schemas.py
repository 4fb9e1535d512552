"""
Pydantic schemas — request validation and response serialisation.

Wire format is camelCase (``electionId``, ``portfolioResults`` …) to match
the browser clients; Python code uses the snake_case field names.

Organised by concern:
    1. Ballot      — submission request and response
    2. Results     — tallies shared by the results API and live broadcasts
    3. Audit       — vote-action log entries
    4. Common      — health, errors
"""
from __future__ import annotations
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ══════════════════════════════════════════════════════════════════════════════
# 1. BALLOT
# ══════════════════════════════════════════════════════════════════════════════

ActionType = Literal["VOTE", "SKIP"]


class BallotEntry(CamelModel):
    portfolio_id: int
    candidate_id: int | None = None
    # Older clients omit the action and mean a vote.
    action_type: ActionType = "VOTE"


class BallotRequest(CamelModel):
    election_id: int
    votes: list[BallotEntry]


class VoteResponse(CamelModel):
    message: str
    voter_id: str | None = None
    election_id: int
    votes_recorded: int
    portfolio_results: list[PortfolioResult]


# ══════════════════════════════════════════════════════════════════════════════
# 2. RESULTS
# ══════════════════════════════════════════════════════════════════════════════

class CandidateResult(CamelModel):
    id: int
    name: str
    party: str | None = None
    party_symbol: str | None = None
    profile_picture: str | None = None
    vote_count: int
    percentage: float


class PortfolioResult(CamelModel):
    portfolio_id: int
    portfolio_name: str
    portfolio_description: str | None = None
    total_votes: int
    skip_votes: int
    skip_percentage: float
    candidates: list[CandidateResult]
    winner: CandidateResult | None = None
    tied: list[int] = []


class ElectionInfo(CamelModel):
    id: int
    name: str
    description: str | None = None
    status: str
    start_date: datetime | None = None
    end_date: datetime | None = None


class ResultSummary(CamelModel):
    total_voters: int
    total_votes_cast: int
    turnout_percentage: float
    total_portfolios: int


class ElectionResults(CamelModel):
    election: ElectionInfo
    summary: ResultSummary
    portfolios: list[PortfolioResult]
    last_updated: datetime


# ══════════════════════════════════════════════════════════════════════════════
# 3. AUDIT
# ══════════════════════════════════════════════════════════════════════════════

class AuditLogEntry(CamelModel):
    id: int
    voter_name: str
    portfolio_id: int
    portfolio_name: str
    candidate_id: int | None = None
    candidate_name: str | None = None
    action_type: ActionType
    created_at: datetime


# ══════════════════════════════════════════════════════════════════════════════
# 4. COMMON
# ══════════════════════════════════════════════════════════════════════════════

class HealthResponse(BaseModel):
    status: str
    service: str


class ErrorResponse(BaseModel):
    error: str
    detail: str


VoteResponse.model_rebuild()
