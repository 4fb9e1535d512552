"""
Ballot validation.

Checks a submission against the election directory before anything is
written.  The whole ballot is checked up front: one bad entry rejects the
submission and no entry is recorded.
"""
import logging
from datetime import datetime, timezone
from typing import NamedTuple

from .errors import (
    ElectionNotActive, ElectionNotFound, ElectionWindowClosed,
    InvalidBallot, InvalidCandidateBinding, UnknownPortfolio, VoterNotRegistered,
)
from .schemas import BallotEntry
from .security import Principal

logger = logging.getLogger(__name__)


class ValidatedVote(NamedTuple):
    portfolio_id: int
    candidate_id: int | None
    action_type: str


def check_voting_window(election, now: datetime) -> None:
    """Raise unless the election is IN_PROGRESS and ``now`` is in [start, end)."""
    if election["status"] != "IN_PROGRESS":
        raise ElectionNotActive(election["status"])

    start, end = election["start_date"], election["end_date"]
    if start is not None and now < start:
        raise ElectionWindowClosed()
    if end is not None and now >= end:
        raise ElectionWindowClosed()


class BallotValidator:
    """Read-only checks of a ballot against the store's directory tables."""

    def __init__(self, store, clock=None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def check_principal(self, principal: Principal) -> None:
        """Administrators may only vote under a voter registration of their own."""
        if not principal.is_admin:
            return
        async with self.store.connection() as repo:
            voter = await repo.get_voter(principal.user_id)
        if voter is None:
            raise VoterNotRegistered()

    async def validate(self, election_id: int, entries: list[BallotEntry]) -> list[ValidatedVote]:
        if not entries:
            raise InvalidBallot("Ballot contains no votes")

        async with self.store.connection() as repo:
            election = await repo.get_election(election_id)
            if election is None:
                raise ElectionNotFound(election_id)

            check_voting_window(election, self.clock())

            portfolio_ids = {p["id"] for p in await repo.list_portfolios(election_id)}
            wanted = sorted({
                e.candidate_id for e in entries
                if e.action_type == "VOTE" and e.candidate_id is not None
            })
            candidates = {c["id"]: c for c in await repo.get_candidates(wanted)}

        validated = []
        seen = set()
        for entry in entries:
            if entry.portfolio_id not in portfolio_ids:
                raise UnknownPortfolio(entry.portfolio_id)
            if entry.portfolio_id in seen:
                raise InvalidBallot(f"Portfolio {entry.portfolio_id} appears more than once")
            seen.add(entry.portfolio_id)

            if entry.action_type == "SKIP":
                validated.append(ValidatedVote(entry.portfolio_id, None, "SKIP"))
                continue

            if entry.candidate_id is None:
                raise InvalidCandidateBinding(
                    f"A candidate is required to vote in portfolio {entry.portfolio_id}"
                )
            candidate = candidates.get(entry.candidate_id)
            if candidate is None:
                raise InvalidCandidateBinding(f"Candidate {entry.candidate_id} not found")
            if candidate["portfolio_id"] != entry.portfolio_id or candidate["election_id"] != election_id:
                raise InvalidCandidateBinding(
                    f"Candidate {entry.candidate_id} does not belong to portfolio "
                    f"{entry.portfolio_id} in this election"
                )
            validated.append(ValidatedVote(entry.portfolio_id, entry.candidate_id, "VOTE"))

        return validated
