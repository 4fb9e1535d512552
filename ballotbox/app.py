"""
Ballot Service — vote casting, live tallies, and results.

Endpoint groups:
  1. Health
  2. Voting         — submit a ballot for an election
  3. Results        — tallies and the vote-action audit log
  4. Live updates   — websocket rooms fed after every committed ballot

Election, portfolio, candidate and voter records are managed by the admin
application; this service only reads them.

Run with:  uvicorn ballotbox.app:app
"""
import json
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .broadcaster import Broadcaster, election_room, results_room
from .errors import BallotError, ElectionNotFound, ResultsUnavailable, StorageError
from .schemas import (
    AuditLogEntry, BallotRequest, ElectionResults, ErrorResponse, HealthResponse, VoteResponse,
)
from .security import Principal, get_principal
from .service import BallotService
from .store import PostgresStore

logger = logging.getLogger("ballot-service")

LIVE_ROOMS = {
    "joinElection": ("subscribe", election_room),
    "joinResults": ("subscribe", results_room),
    "leaveElection": ("unsubscribe", election_room),
    "leaveResults": ("unsubscribe", results_room),
}

router = APIRouter()


def get_ballots(request: Request) -> BallotService:
    return request.app.state.ballots


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Unauthorized: Admin access required.")
    return principal


# ==========================================================================
# 1. HEALTH
# ==========================================================================

@router.get("/health", response_model=HealthResponse)
async def health():
    return {"status": "healthy", "service": "ballot"}


# ==========================================================================
# 2. VOTING
# ==========================================================================

@router.post(
    "/votes",
    response_model=VoteResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse},
               409: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def submit_votes(ballot: BallotRequest,
                       principal: Principal = Depends(get_principal),
                       ballots: BallotService = Depends(get_ballots)):
    """Cast a full ballot: one decision (vote or skip) per portfolio."""
    return await ballots.submit(principal, ballot)


# ==========================================================================
# 3. RESULTS
# ==========================================================================

@router.get("/elections/{election_id}/results", response_model=ElectionResults)
async def get_results(election_id: int,
                      principal: Principal = Depends(get_principal),
                      ballots: BallotService = Depends(get_ballots)):
    """Current tallies.  Voters only see results once the election has ended."""
    results = await ballots.aggregator.election_results(election_id)
    if not principal.is_admin and results.election.status != "ENDED":
        raise ResultsUnavailable()
    return results


@router.get("/elections/{election_id}/audit-logs", response_model=list[AuditLogEntry])
async def get_audit_logs(request: Request, election_id: int,
                         principal: Principal = Depends(require_admin)):
    """Every vote/skip decision for an election, newest first."""
    async with request.app.state.store.connection() as repo:
        if await repo.get_election(election_id) is None:
            raise ElectionNotFound(election_id)
        rows = await repo.list_vote_actions(election_id)

    return [
        AuditLogEntry(
            id=r["id"],
            voter_name=r["voter_name"],
            portfolio_id=r["portfolio_id"],
            portfolio_name=r["portfolio_name"],
            candidate_id=r["candidate_id"],
            candidate_name=r["candidate_name"],
            action_type=r["action_type"],
            created_at=r["created_at"],
        )
        for r in rows
    ]


# ==========================================================================
# 4. LIVE UPDATES
#
#   client -> {"event": "joinElection", "electionId": 7}
#   server -> {"event": "subscribed", "data": {"room": "election:7"}}
#   server -> {"event": "voteUpdate", "data": {...results...}}
# ==========================================================================

@router.websocket("/ws")
async def live_updates(websocket: WebSocket):
    broadcaster: Broadcaster = websocket.app.state.broadcaster
    await websocket.accept()
    conn = broadcaster.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Binary frames carry no "text" and get the error reply.
            reply = _handle_live_message(broadcaster, conn, message.get("text"))
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.debug(f"Client {conn.id} closed the socket")
    finally:
        broadcaster.disconnect(conn)


def _handle_live_message(broadcaster, conn, raw):
    try:
        message = json.loads(raw)
        action, room_for = LIVE_ROOMS[message["event"]]
        room = room_for(int(message["electionId"]))
    except (ValueError, TypeError, KeyError):
        return {"event": "error", "data": {"detail": "Expected {event, electionId}"}}

    if action == "subscribe":
        broadcaster.subscribe(conn, room)
        return {"event": "subscribed", "data": {"room": room}}
    broadcaster.unsubscribe(conn, room)
    return {"event": "unsubscribed", "data": {"room": room}}


# ==========================================================================
# APPLICATION
# ==========================================================================

def create_app(store=None, broadcaster: Broadcaster | None = None,
               clock=None, migrate: bool | None = None) -> FastAPI:
    store = store or PostgresStore()
    broadcaster = broadcaster or Broadcaster()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logging.basicConfig(
            level=config.LOG_LEVEL,
            format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        )
        await store.start(migrate=config.AUTO_MIGRATE if migrate is None else migrate)
        yield
        broadcaster.close()
        await store.close()

    application = FastAPI(
        title="Ballot Service",
        description="Ballot submission, live tallies, and election results",
        lifespan=lifespan,
    )
    application.state.store = store
    application.state.broadcaster = broadcaster
    application.state.ballots = BallotService(store, broadcaster, clock=clock)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @application.exception_handler(BallotError)
    async def ballot_error_handler(request: Request, exc: BallotError):
        return JSONResponse(status_code=exc.status_code,
                            content={"error": exc.kind, "detail": exc.detail})

    @application.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=503,
                            content={"error": "StorageUnavailable",
                                     "detail": "The service is temporarily unavailable"})

    application.include_router(router)
    return application


app = create_app()
