"""
Ballot submission pipeline.

    validate  ->  write (one transaction)  ->  re-tally from storage  ->  broadcast

Everything before the commit can fail the request.  Everything after it is
best-effort: the ballot is already durable, so a failed re-tally or
broadcast is logged and the voter still gets a success response.  The
broadcast runs in the background; the response never waits on a live
client.
"""
import logging

from .broadcaster import Broadcaster
from .errors import BallotError, StorageError
from .executor import VoteExecutor
from .schemas import BallotRequest, ElectionResults, VoteResponse
from .security import Principal
from .tally import TallyAggregator
from .validator import BallotValidator

logger = logging.getLogger(__name__)


class BallotService:

    def __init__(self, store, broadcaster: Broadcaster, clock=None, timeout: float | None = None):
        self.validator = BallotValidator(store, clock=clock)
        self.executor = VoteExecutor(store, timeout=timeout, clock=self.validator.clock)
        self.aggregator = TallyAggregator(store)
        self.broadcaster = broadcaster

    async def submit(self, principal: Principal, ballot: BallotRequest) -> VoteResponse:
        await self.validator.check_principal(principal)
        votes = await self.validator.validate(ballot.election_id, ballot.votes)
        outcome = await self.executor.execute(principal.user_id, ballot.election_id, votes)

        results = await self.publish_update(ballot.election_id)

        return VoteResponse(
            message="Votes recorded successfully",
            voter_id=outcome["voter"]["voter_id"],
            election_id=ballot.election_id,
            votes_recorded=outcome["votes_recorded"],
            portfolio_results=results.portfolios if results else [],
        )

    async def publish_update(self, election_id: int) -> ElectionResults | None:
        """Recompute tallies from storage and hand them to the broadcaster."""
        try:
            results = await self.aggregator.election_results(election_id)
        except (StorageError, BallotError) as e:
            logger.error(f"Tally refresh failed for election {election_id} after a committed ballot: {e}")
            return None

        self.broadcaster.schedule_results(election_id, results)
        return results
