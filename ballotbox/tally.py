"""
Tally aggregation.

Results are always recomputed from the committed vote_actions,
voter_elections and candidates tables, never from counters kept in
memory, so any process can produce them after a restart.

Percentages are of all decisions in a portfolio (votes plus skips), rounded
to two decimals with halves going up (1 of 32 is 3.13), and 0.0 when there is nothing to divide by.

Tie policy: when two or more candidates share the highest non-zero vote
count there is no winner; ``tied`` lists their ids.  Candidates with equal
counts are listed in ascending id order.
"""
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from .errors import ElectionNotFound
from .schemas import (
    CandidateResult, ElectionInfo, ElectionResults, PortfolioResult, ResultSummary,
)

logger = logging.getLogger(__name__)


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    value = Decimal(part * 100) / Decimal(whole)
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def summarize_portfolio(portfolio, total: int, skips: int, candidate_rows) -> PortfolioResult:
    candidates = [
        CandidateResult(
            id=c["id"],
            name=c["name"],
            party=c["party"],
            party_symbol=c["party_symbol"],
            profile_picture=c["profile_picture"],
            vote_count=c["vote_count"],
            percentage=percentage(c["vote_count"], total),
        )
        for c in candidate_rows
    ]
    candidates.sort(key=lambda c: (-c.vote_count, c.id))

    winner = None
    tied = []
    if candidates and candidates[0].vote_count > 0:
        top = [c for c in candidates if c.vote_count == candidates[0].vote_count]
        if len(top) == 1:
            winner = top[0]
        else:
            tied = [c.id for c in top]

    return PortfolioResult(
        portfolio_id=portfolio["id"],
        portfolio_name=portfolio["name"],
        portfolio_description=portfolio["description"],
        total_votes=total,
        skip_votes=skips,
        skip_percentage=percentage(skips, total),
        candidates=candidates,
        winner=winner,
        tied=tied,
    )


class TallyAggregator:

    def __init__(self, store):
        self.store = store

    async def election_results(self, election_id: int) -> ElectionResults:
        async with self.store.snapshot() as repo:
            election = await repo.get_election(election_id)
            if election is None:
                raise ElectionNotFound(election_id)
            portfolios = await repo.list_portfolios(election_id)
            counts = {r["portfolio_id"]: r for r in await repo.portfolio_action_counts(election_id)}
            candidate_rows = await repo.candidate_vote_counts(election_id)
            turnout = await repo.voter_turnout(election_id)

        by_portfolio = {}
        for c in candidate_rows:
            by_portfolio.setdefault(c["portfolio_id"], []).append(c)

        results = []
        for p in portfolios:
            row = counts.get(p["id"])
            total = row["total"] if row else 0
            skips = row["skips"] if row else 0
            results.append(summarize_portfolio(p, total, skips, by_portfolio.get(p["id"], [])))

        return ElectionResults(
            election=ElectionInfo(
                id=election["id"],
                name=election["name"],
                description=election["description"],
                status=election["status"],
                start_date=election["start_date"],
                end_date=election["end_date"],
            ),
            summary=ResultSummary(
                total_voters=turnout["total_voters"],
                total_votes_cast=turnout["votes_cast"],
                turnout_percentage=percentage(turnout["votes_cast"], turnout["total_voters"]),
                total_portfolios=len(portfolios),
            ),
            portfolios=results,
            last_updated=datetime.now(timezone.utc),
        )
