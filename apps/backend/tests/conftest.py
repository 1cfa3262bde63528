"""
Pytest fixtures for the job tracker tests.
"""

import os

# IMPORTANT: Set environment variables BEFORE any imports from jobtracker
# so the global Settings instance points at a throwaway local backend.
os.environ["BACKEND"] = "local"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_ANON_KEY", None)

import asyncio
import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from jobtracker.backends.base import AuthListeners, AuthResult, AuthUser, Session
from jobtracker.backends.local import InProcessChangeChannel, LocalAuthService, SqlAlchemyDataStore
from jobtracker.database import close_db, create_engine, create_session_factory, init_db
from jobtracker.errors import AuthError
from jobtracker.schemas.job import JobRecord

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class FixedClock:
    """Deterministic clock; each call advances by one second."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


class FakeDataStore:
    """In-memory DataStore with failure injection.

    ``fail_next[operation] = BackendError(...)`` makes the next call of that
    operation raise. ``gate`` (an asyncio.Event per operation) holds a call
    until the test releases it.
    """

    def __init__(self, changes: InProcessChangeChannel | None = None):
        self.tables: dict[str, dict[str, dict[str, Any]]] = {"jobs": {}, "profiles": {}}
        self.calls: list[tuple[str, str]] = []
        self.fail_next: dict[str, Exception] = {}
        self.gates: dict[str, list[asyncio.Event]] = {}
        self.changes = changes
        self._ids = itertools.count(1)

    async def _enter(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        gates = self.gates.get(operation)
        if gates:
            await gates.pop(0).wait()
        error = self.fail_next.pop(operation, None)
        if error is not None:
            raise error

    def _publish(self, table: str, owner_id: str, event: str, record_id: str) -> None:
        if self.changes is not None:
            self.changes.publish(table, owner_id, event, record_id)

    def seed(self, table: str, *rows: dict[str, Any]) -> None:
        for row in rows:
            self.tables[table][str(row["id"])] = copy.deepcopy(row)

    async def select(self, table, filters, *, order_by=None, descending=False, columns="*"):
        await self._enter("select", table)
        rows = [
            copy.deepcopy(row)
            for row in self.tables[table].values()
            if all(row.get(key) == value for key, value in filters.items())
        ]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is not None, row.get(order_by) or 0), reverse=descending)
        return rows

    async def insert(self, table, record):
        await self._enter("insert", table)
        row = copy.deepcopy(record)
        row.setdefault("id", f"row-{next(self._ids)}")
        self.tables[table][str(row["id"])] = row
        self._publish(table, row.get("user_id"), "INSERT", row["id"])
        return copy.deepcopy(row)

    async def update(self, table, record_id, patch, owner_id):
        await self._enter("update", table)
        row = self.tables[table].get(record_id)
        if row is None or row.get("user_id") != owner_id:
            return []
        row.update(copy.deepcopy(patch))
        self._publish(table, owner_id, "UPDATE", record_id)
        return [copy.deepcopy(row)]

    async def delete(self, table, record_id, owner_id):
        await self._enter("delete", table)
        row = self.tables[table].get(record_id)
        if row is None or row.get("user_id") != owner_id:
            return []
        del self.tables[table][record_id]
        self._publish(table, owner_id, "DELETE", record_id)
        return [row]

    async def upsert(self, table, record, on_conflict):
        await self._enter("upsert", table)
        for row in self.tables[table].values():
            if row.get(on_conflict) == record[on_conflict]:
                row.update(copy.deepcopy(record))
                return copy.deepcopy(row)
        row = {"id": f"row-{next(self._ids)}", **copy.deepcopy(record)}
        self.tables[table][row["id"]] = row
        return copy.deepcopy(row)


class FakeAuthService:
    """AuthService fake with a fixed set of accounts."""

    def __init__(self, accounts: dict[str, tuple[str, str]] | None = None, confirm_email: bool = False):
        # email -> (password, user id)
        self.accounts = accounts or {}
        self.confirm_email = confirm_email
        self.session: Session | None = None
        self._listeners = AuthListeners()

    def on_auth_state_change(self, callback):
        return self._listeners.add(callback)

    async def get_session(self):
        return self.session

    async def sign_in(self, email, password):
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError("Invalid login credentials")
        self.session = Session(access_token="token", user=AuthUser(id=account[1], email=email))
        await self._listeners.emit("SIGNED_IN", self.session)
        return self.session

    async def sign_up(self, email, password, metadata=None):
        if email in self.accounts:
            raise AuthError("User already registered")
        user = AuthUser(id=f"id-{email}", email=email, metadata=metadata or {})
        self.accounts[email] = (password, user.id)
        if self.confirm_email:
            return AuthResult(user=user)
        self.session = Session(access_token="token", user=user)
        await self._listeners.emit("SIGNED_IN", self.session)
        return AuthResult(user=user, session=self.session)

    async def sign_out(self):
        self.session = None
        await self._listeners.emit("SIGNED_OUT", None)


def job_row(job_id: str, user_id: str = USER_ID, **fields: Any) -> dict[str, Any]:
    """Build a stored job row with sensible defaults."""
    row = {
        "id": job_id,
        "user_id": user_id,
        "position": "Engineer",
        "company": "Acme",
        "location": None,
        "job_url": None,
        "notes": "",
        "salary_min": None,
        "salary_max": None,
        "status": "bookmarked",
        "rating": 0,
        "date_saved": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "date_applied": None,
        "test_date": None,
        "interview_date": None,
    }
    row.update(fields)
    return row


def make_job(job_id: str, **fields: Any) -> JobRecord:
    return JobRecord.model_validate(job_row(job_id, **fields))


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def changes():
    return InProcessChangeChannel()


@pytest.fixture
def data_store(changes):
    return FakeDataStore(changes)


@pytest.fixture
def auth_service():
    return FakeAuthService({"ada@example.com": ("secret123", USER_ID)})


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with the job tracker tables created."""
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest_asyncio.fixture
async def local_store(engine, changes):
    return SqlAlchemyDataStore(create_session_factory(engine), changes)


@pytest.fixture
def local_auth():
    return LocalAuthService()

