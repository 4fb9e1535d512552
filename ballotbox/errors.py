"""
Error taxonomy for ballot submission and result queries.

Every client-facing failure is a ``BallotError`` with a stable ``kind``
(returned as the ``error`` field of the JSON body), an HTTP status and a
human-readable ``detail``.  ``StorageError`` is internal: the store raises
it for driver/connectivity faults and the executor turns it into an
opaque ``TransactionFailed``.
"""


class BallotError(Exception):
    kind = "BallotError"
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ElectionNotFound(BallotError):
    kind = "ElectionNotFound"
    status_code = 404

    def __init__(self, election_id: int):
        super().__init__(f"Election {election_id} not found")
        self.election_id = election_id


class ElectionNotActive(BallotError):
    kind = "ElectionNotActive"

    def __init__(self, status: str):
        super().__init__(f"Election is not active ({status})")
        self.status = status


class ElectionWindowClosed(BallotError):
    kind = "ElectionWindowClosed"

    def __init__(self):
        super().__init__("Election is not currently open for voting")


class InvalidBallot(BallotError):
    kind = "InvalidBallot"


class UnknownPortfolio(BallotError):
    kind = "UnknownPortfolio"

    def __init__(self, portfolio_id: int):
        super().__init__(f"Portfolio {portfolio_id} not found in this election")
        self.portfolio_id = portfolio_id


class InvalidCandidateBinding(BallotError):
    kind = "InvalidCandidateBinding"


class VoterNotFound(BallotError):
    kind = "VoterNotFound"
    status_code = 404

    def __init__(self):
        super().__init__("Voter not found")


class VoterNotRegistered(BallotError):
    kind = "VoterNotRegistered"
    status_code = 403

    def __init__(self):
        super().__init__("Admin is not registered as a voter. Register as a voter to vote.")


class DuplicateVote(BallotError):
    kind = "DuplicateVote"
    status_code = 409

    def __init__(self):
        super().__init__("You have already voted in this election")


class ResultsUnavailable(BallotError):
    kind = "ResultsUnavailable"
    status_code = 403

    def __init__(self):
        super().__init__("Results are only available after the election has ended.")


class TransactionFailed(BallotError):
    kind = "TransactionFailed"
    status_code = 500

    def __init__(self):
        super().__init__("Your ballot could not be recorded. Please try again.")


class StorageError(Exception):
    """Raised by a store when the underlying database fails."""
