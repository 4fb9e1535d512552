"""
Vote transaction executor.

Records a validated ballot as one atomic unit:

  1. resolve the voter
  2. re-check the election's status and voting window under a share lock,
     so a status change cannot slip in between validation and commit
  3. claim the (voter, election) ballot: check and set has_voted in a
     single conditional upsert; a voter who already voted gets DuplicateVote
  4. append one vote_actions row per portfolio decision (votes and skips)
  5. append one votes row per VOTE decision

Either everything above is committed or nothing is.  Nothing is broadcast
from inside the transaction.
"""
import asyncio
import logging
from datetime import datetime, timezone

from . import config
from .errors import (
    BallotError, DuplicateVote, ElectionNotFound, StorageError, TransactionFailed, VoterNotFound,
)
from .validator import ValidatedVote, check_voting_window

logger = logging.getLogger(__name__)


class VoteExecutor:

    def __init__(self, store, timeout: float | None = None, clock=None):
        self.store = store
        self.timeout = config.VOTE_TRANSACTION_TIMEOUT if timeout is None else timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))
    async def execute(self, voter_external_id: str, election_id: int,
                      votes: list[ValidatedVote]) -> dict:
        """Write the ballot; return the voter row and the number of countable votes."""
        try:
            return await asyncio.wait_for(
                self._write(voter_external_id, election_id, votes), self.timeout,
            )
        except DuplicateVote:
            logger.info(f"Duplicate ballot rejected: voter={voter_external_id} election={election_id}")
            raise
        except BallotError:
            raise
        except asyncio.TimeoutError as e:
            logger.error(
                f"Ballot write timed out after {self.timeout}s: "
                f"voter={voter_external_id} election={election_id}"
            )
            raise TransactionFailed() from e
        except StorageError as e:
            logger.exception(
                f"Ballot write failed: voter={voter_external_id} election={election_id}: {e}"
            )
            raise TransactionFailed() from e

    async def _write(self, voter_external_id, election_id, votes):
        async with self.store.transaction() as repo:
            voter = await repo.get_voter(voter_external_id)
            if voter is None:
                raise VoterNotFound()

            election = await repo.lock_election(election_id)
            if election is None:
                raise ElectionNotFound(election_id)
            check_voting_window(election, self.clock())

            if not await repo.claim_ballot(voter["id"], election_id):
                raise DuplicateVote()

            for vote in votes:
                await repo.add_vote_action(
                    voter["id"], election_id, vote.portfolio_id,
                    vote.candidate_id, vote.action_type,
                )

            recorded = 0
            for vote in votes:
                if vote.action_type == "VOTE":
                    await repo.add_vote(voter["id"], vote.candidate_id, election_id)
                    recorded += 1

        logger.info(
            f"Ballot recorded: voter={voter_external_id} election={election_id} "
            f"decisions={len(votes)} votes={recorded}"
        )
        return {"voter": voter, "votes_recorded": recorded}
