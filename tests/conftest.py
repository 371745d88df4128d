"""Shared fixtures: required settings, an in-memory session store, a fake table store."""

import os
import sys

# config.py refuses to import without these
os.environ.setdefault("SUPABASE_URL", "https://store.test")
os.environ.setdefault("SUPABASE_KEY", "test-key")
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import pytest

from mitra.schemas import ACTIVE_JOB_STATUSES, Agent, Job, JobStatus, SessionState
from mitra.services.errors import StatusUpdateRejected, StoreUnavailable


class MemorySessionStore:
    """Dict-backed stand-in for services.session_store."""

    def __init__(self):
        self.sessions: dict[str, str] = {}
        self.busy: dict[str, str] = {}
        self.saved: list[SessionState] = []

    async def load_session(self, session_id):
        raw = self.sessions.get(session_id)
        return SessionState.model_validate_json(raw) if raw else SessionState()

    async def save_session(self, session_id, state):
        self.saved.append(state)
        self.sessions[session_id] = state.model_dump_json()

    async def delete_session(self, session_id):
        self.sessions.pop(session_id, None)

    async def acquire_busy(self, session_id, ttl_ms):
        if session_id in self.busy:
            return None
        self.busy[session_id] = "token"
        return "token"

    async def release_busy(self, session_id, token):
        if self.busy.get(session_id) == token:
            del self.busy[session_id]


class FakeTableStore:
    """Behaves like services.store_gateway over in-memory agents and jobs."""

    def __init__(self):
        self.agents: dict[str, Agent] = {}
        self.jobs: list[tuple[str, Job]] = []   # (agent_id, job) in creation order
        self.calls: list[tuple] = []
        self.fail_updates_with: Exception | None = None
        self.unreachable = False

    def add_agent(self, agent_id="A1", phone="9876543210", name="Ravi Kumar"):
        self.agents[phone] = Agent(id=agent_id, phone_number=phone, full_name=name)

    def add_job(self, agent_id="A1", job_id="J1", status=JobStatus.PENDING, **fields):
        fields.setdefault("customer_name", "Arjun Mehta")
        fields.setdefault("address", "Flat 402, Sunshine Towers, Andheri West, Mumbai")
        self.jobs.append((agent_id, Job(id=job_id, status=status, **fields)))

    def job(self, job_id) -> Job:
        return next(j for _, j in self.jobs if j.id == job_id)

    async def lookup_agent(self, phone_number):
        self.calls.append(("lookup_agent", phone_number))
        if self.unreachable:
            raise StoreUnavailable("connect timeout")
        return self.agents.get(phone_number)

    async def fetch_active_job(self, agent_id):
        self.calls.append(("fetch_active_job", agent_id))
        active = [j for a, j in self.jobs if a == agent_id and j.status in ACTIVE_JOB_STATUSES]
        return active[-1] if active else None

    async def set_job_status(self, job_id, new_status):
        self.calls.append(("set_job_status", job_id, new_status))
        if self.fail_updates_with is not None:
            raise self.fail_updates_with
        for i, (agent_id, job) in enumerate(self.jobs):
            if job.id == job_id:
                updated = job.model_copy(update={"status": new_status})
                self.jobs[i] = (agent_id, updated)
                return updated
        raise StatusUpdateRejected("Job not found")


@pytest.fixture
def memory_store():
    return MemorySessionStore()


@pytest.fixture
def table_store():
    store = FakeTableStore()
    store.add_agent()
    return store
