"""
Shared fixtures.

``MemoryStore`` stands in for PostgreSQL.  It exposes the same repository
methods as ``ballotbox.store.BallotRepository`` and gives transactions the
properties the protocol depends on: they are serialised, and any exception
(including cancellation) restores the ballot tables to their state before
the transaction began.
"""
import asyncio
import copy
import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from ballotbox.app import create_app
from ballotbox.broadcaster import Broadcaster
from ballotbox.errors import DuplicateVote, StorageError
from ballotbox.security import create_session_token

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


class MemoryRepository:

    def __init__(self, store):
        self.s = store

    async def _step(self, name):
        await asyncio.sleep(self.s.delay)
        if self.s.fail_on == name:
            raise StorageError(f"simulated failure in {name}")

    # ── Directory reads ──────────────────────────────────────────────────────

    async def get_election(self, election_id):
        await self._step("get_election")
        row = self.s.elections.get(election_id)
        return dict(row) if row else None

    async def list_portfolios(self, election_id):
        await self._step("list_portfolios")
        return [dict(p) for p in sorted(self.s.portfolios.values(), key=lambda p: p["id"])
                if p["election_id"] == election_id]

    async def get_candidates(self, candidate_ids):
        await self._step("get_candidates")
        return [
            {"id": c["id"], "portfolio_id": c["portfolio_id"], "election_id": c["election_id"]}
            for cid in candidate_ids if (c := self.s.candidates.get(cid))
        ]

    async def get_voter(self, external_id):
        await self._step("get_voter")
        for v in self.s.voters.values():
            if v["voter_id"] == external_id:
                return dict(v)
        return None

    # ── Ballot writes ────────────────────────────────────────────────────────

    async def lock_election(self, election_id):
        await self._step("lock_election")
        row = self.s.elections.get(election_id)
        return dict(row) if row else None

    async def claim_ballot(self, voter_pk, election_id):
        await self._step("claim_ballot")
        key = (voter_pk, election_id)
        row = self.s.voter_elections.get(key)
        if row is None:
            self.s.voter_elections[key] = {"id": next(self.s.ids), "has_voted": True}
            return True
        if row["has_voted"]:
            return False
        row["has_voted"] = True
        return True

    async def add_vote_action(self, voter_pk, election_id, portfolio_id, candidate_id, action_type):
        await self._step("add_vote_action")
        for a in self.s.vote_actions:
            if (a["voter_id"], a["election_id"], a["portfolio_id"]) == (voter_pk, election_id, portfolio_id):
                raise DuplicateVote()
        row_id = next(self.s.ids)
        self.s.vote_actions.append({
            "id": row_id, "voter_id": voter_pk, "election_id": election_id,
            "portfolio_id": portfolio_id, "candidate_id": candidate_id,
            "action_type": action_type, "created_at": NOW + timedelta(seconds=row_id),
        })
        return row_id

    async def add_vote(self, voter_pk, candidate_id, election_id):
        await self._step("add_vote")
        row_id = next(self.s.ids)
        self.s.votes.append({
            "id": row_id, "voter_id": voter_pk,
            "candidate_id": candidate_id, "election_id": election_id,
        })
        return row_id

    # ── Tally reads ──────────────────────────────────────────────────────────

    async def portfolio_action_counts(self, election_id):
        await self._step("portfolio_action_counts")
        rows = []
        for p in await self.list_portfolios(election_id):
            actions = [a for a in self.s.vote_actions
                       if a["portfolio_id"] == p["id"] and a["election_id"] == election_id]
            rows.append({
                "portfolio_id": p["id"],
                "total": len(actions),
                "skips": sum(1 for a in actions if a["action_type"] == "SKIP"),
            })
        return rows

    async def candidate_vote_counts(self, election_id):
        await self._step("candidate_vote_counts")
        rows = []
        for c in sorted(self.s.candidates.values(), key=lambda c: (c["portfolio_id"], c["id"])):
            if c["election_id"] != election_id:
                continue
            count = sum(
                1 for a in self.s.vote_actions
                if a["candidate_id"] == c["id"] and a["portfolio_id"] == c["portfolio_id"]
                and a["election_id"] == election_id and a["action_type"] == "VOTE"
            )
            rows.append({**c, "vote_count": count})
        return rows

    async def voter_turnout(self, election_id):
        await self._step("voter_turnout")
        rows = [r for (_, eid), r in self.s.voter_elections.items() if eid == election_id]
        return {"total_voters": len(rows), "votes_cast": sum(1 for r in rows if r["has_voted"])}

    async def list_vote_actions(self, election_id):
        await self._step("list_vote_actions")
        rows = []
        for a in self.s.vote_actions:
            if a["election_id"] != election_id:
                continue
            candidate = self.s.candidates.get(a["candidate_id"])
            rows.append({
                "id": a["id"],
                "voter_name": self.s.voters[a["voter_id"]]["name"],
                "portfolio_id": a["portfolio_id"],
                "portfolio_name": self.s.portfolios[a["portfolio_id"]]["name"],
                "candidate_id": a["candidate_id"],
                "candidate_name": candidate["name"] if candidate else None,
                "action_type": a["action_type"],
                "created_at": a["created_at"],
            })
        rows.sort(key=lambda r: (r["created_at"], r["id"]), reverse=True)
        return rows


class MemoryStore:

    def __init__(self):
        self.ids = itertools.count(1)
        self.elections = {}
        self.portfolios = {}
        self.candidates = {}
        self.voters = {}
        self.voter_elections = {}
        self.vote_actions = []
        self.votes = []
        self.fail_on = None
        self.delay = 0
        self._lock = asyncio.Lock()

    # ── Seeding ──────────────────────────────────────────────────────────────

    def add_election(self, name="Student Council", status="IN_PROGRESS",
                     start_date=NOW - timedelta(days=1), end_date=NOW + timedelta(days=1)):
        eid = next(self.ids)
        self.elections[eid] = {
            "id": eid, "name": name, "description": f"{name} election",
            "status": status, "start_date": start_date, "end_date": end_date,
        }
        return eid

    def add_portfolio(self, election_id, name):
        pid = next(self.ids)
        self.portfolios[pid] = {"id": pid, "name": name, "description": None,
                                "election_id": election_id}
        return pid

    def add_candidate(self, portfolio_id, name, party=None):
        cid = next(self.ids)
        self.candidates[cid] = {
            "id": cid, "name": name, "party": party, "party_symbol": None,
            "profile_picture": None, "portfolio_id": portfolio_id,
            "election_id": self.portfolios[portfolio_id]["election_id"],
        }
        return cid

    def add_voter(self, voter_id, name):
        pk = next(self.ids)
        self.voters[pk] = {"id": pk, "voter_id": voter_id, "name": name}
        return pk

    def register(self, voter_pk, election_id, has_voted=False):
        self.voter_elections[(voter_pk, election_id)] = {"id": next(self.ids), "has_voted": has_voted}

    def has_voted(self, voter_pk, election_id):
        row = self.voter_elections.get((voter_pk, election_id))
        return bool(row and row["has_voted"])

    # ── Store interface ──────────────────────────────────────────────────────

    async def start(self, migrate=False):
        pass

    async def close(self):
        pass

    @asynccontextmanager
    async def connection(self):
        yield MemoryRepository(self)

    @asynccontextmanager
    async def snapshot(self):
        async with self._lock:
            yield MemoryRepository(self)

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            saved = copy.deepcopy((self.voter_elections, self.vote_actions, self.votes))
            try:
                yield MemoryRepository(self)
            except BaseException:
                self.voter_elections, self.vote_actions, self.votes = saved
                raise


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def world(store):
    """E1 in progress with P1 (C1, C2) and P2 (C3); E2 ended; voters V1, V2 and an admin voter."""
    e1 = store.add_election("Student Council")
    p1 = store.add_portfolio(e1, "President")
    c1 = store.add_candidate(p1, "Ama Owusu", party="Progress")
    c2 = store.add_candidate(p1, "Kofi Mensah", party="Unity")
    p2 = store.add_portfolio(e1, "Treasurer")
    c3 = store.add_candidate(p2, "Esi Boateng")

    e2 = store.add_election("Last Year", status="ENDED",
                            start_date=NOW - timedelta(days=400), end_date=NOW - timedelta(days=300))
    p9 = store.add_portfolio(e2, "President")
    c9 = store.add_candidate(p9, "Yaw Darko")

    v1 = store.add_voter("VTR-001", "First Voter")
    v2 = store.add_voter("VTR-002", "Second Voter")
    admin = store.add_voter("ADM-001", "Admin Voter")
    for pk in (v1, v2, admin):
        store.register(pk, e1)

    return SimpleNamespace(e1=e1, e2=e2, p1=p1, p2=p2, p9=p9,
                           c1=c1, c2=c2, c3=c3, c9=c9, v1=v1, v2=v2, admin=admin)


@pytest.fixture
def broadcaster():
    return Broadcaster()


@pytest.fixture
def client(store, broadcaster):
    app = create_app(store=store, broadcaster=broadcaster, clock=lambda: NOW, migrate=False)
    with TestClient(app) as c:
        yield c


def bearer(user_id, role="VOTER"):
    return {"Authorization": f"Bearer {create_session_token(user_id, role)}"}
