"""
Realtime fan-out of election tallies.

Clients hold a websocket and join per-election rooms:

    election:{id}   live voting view   -> "voteUpdate"
    results:{id}    results dashboard  -> "resultsUpdate"

Delivery is best-effort and at-most-once.  Nothing is queued or replayed:
a client only receives updates published while it is subscribed and
re-fetches results over HTTP to catch up.  A send that fails, or that
takes longer than ``send_timeout``, drops that connection; it never
affects the publisher.

The room registry is local to this process.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum

from . import config

logger = logging.getLogger(__name__)


def election_room(election_id: int) -> str:
    return f"election:{election_id}"


def results_room(election_id: int) -> str:
    return f"results:{election_id}"


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTED = "CONNECTED"
    SUBSCRIBED = "SUBSCRIBED"


class LiveConnection:
    """One client socket and the rooms it has joined.

    ``socket`` is anything with an async ``send_json`` (a Starlette
    WebSocket in production).
    """

    def __init__(self, socket):
        self.socket = socket
        self.id = uuid.uuid4().hex[:12]
        self.rooms: set[str] = set()
        self.closed = False

    @property
    def state(self) -> ConnectionState:
        if self.closed:
            return ConnectionState.DISCONNECTED
        if self.rooms:
            return ConnectionState.SUBSCRIBED
        return ConnectionState.CONNECTED


class Broadcaster:

    def __init__(self, send_timeout: float | None = None):
        self.send_timeout = config.BROADCAST_SEND_TIMEOUT if send_timeout is None else send_timeout
        self._rooms: dict[str, set[LiveConnection]] = {}
        self._pending: set[asyncio.Task] = set()

    def connect(self, socket) -> LiveConnection:
        conn = LiveConnection(socket)
        logger.info(f"Client connected: {conn.id}")
        return conn

    def subscribe(self, conn: LiveConnection, room: str) -> None:
        if conn.closed:
            return
        self._rooms.setdefault(room, set()).add(conn)
        if room not in conn.rooms:
            conn.rooms.add(room)
            logger.info(f"Client {conn.id} joined {room}")

    def unsubscribe(self, conn: LiveConnection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(conn)
            if not members:
                del self._rooms[room]
        conn.rooms.discard(room)

    def disconnect(self, conn: LiveConnection) -> None:
        if conn.closed:
            return
        for room in list(conn.rooms):
            self.unsubscribe(conn, room)
        conn.closed = True
        logger.info(f"Client disconnected: {conn.id}")

    def close(self) -> None:
        """Forget every connection and cancel in-flight fan-outs (application shutdown)."""
        for task in list(self._pending):
            task.cancel()
        for conn in {c for members in self._rooms.values() for c in members}:
            self.disconnect(conn)

    def subscriber_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def _send(self, conn: LiveConnection, room: str, message: dict) -> bool:
        try:
            await asyncio.wait_for(conn.socket.send_json(message), self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Dropping client {conn.id}: send to {room} took longer than {self.send_timeout}s")
        except Exception as e:
            logger.warning(f"Dropping client {conn.id} after failed send to {room}: {e}")
        self.disconnect(conn)
        return False

    async def publish(self, room: str, event: str, data: dict) -> int:
        """Send ``{"event", "data"}`` to every member of ``room``; return how many received it.

        Members are sent to concurrently and each send is bounded by
        ``send_timeout``, so one slow client never holds up the others.
        """
        message = {"event": event, "data": data}
        members = list(self._rooms.get(room, ()))
        sent = await asyncio.gather(*(self._send(conn, room, message) for conn in members))
        return sum(sent)

    async def publish_results(self, election_id: int, results) -> None:
        """Push freshly computed ``ElectionResults`` to the live and results rooms."""
        payload = results.model_dump(mode="json", by_alias=True)
        payload["electionId"] = election_id
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()

        live, dashboards = await asyncio.gather(
            self.publish(election_room(election_id), "voteUpdate", payload),
            self.publish(results_room(election_id), "resultsUpdate", payload),
        )
        logger.debug(f"Election {election_id} update sent to {live} live and {dashboards} results clients")

    def schedule_results(self, election_id: int, results) -> asyncio.Task:
        """Start ``publish_results`` in the background and return its task.

        The caller does not wait for delivery.  Tasks are tracked until they
        finish so shutdown can cancel them.
        """
        task = asyncio.get_running_loop().create_task(self.publish_results(election_id, results))
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Broadcast failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for every scheduled fan-out to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
