"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from backend.app.main import app
from backend.app.db.session import Base, create_session_factory
from backend.app.core.dependencies import get_ledger
from backend.app.core.jwt import create_access_token
from backend.app.schemas.expense import ExpenseCreate, ParticipantIn
from backend.app.schemas.group import GroupCreate, MemberAdd
from backend.app.services.ledger_runtime import build_runtime

# Users
ALICE, BOB, CAROL, DAVE = 1, 2, 3, 4


# One file database per test: sessions get their own connections, as they
# would against PostgreSQL
@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    @event.listens_for(test_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable foreign key constraints for SQLite."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def ledger(session_factory):
    return build_runtime(session_factory, lock_backend="local", broadcast_backend="local")


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(ledger):
    """Async client for testing, wired to the per-test ledger runtime."""
    app.dependency_overrides[get_ledger] = lambda: ledger
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_ledger, None)


def auth_headers(user_id: int) -> dict:
    token = create_access_token(data={"sub": f"user-{user_id}", "user_id": user_id})
    return {"Authorization": f"Bearer {token}"}


# Mock Redis for the Redis-backed lock and relay paths
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self.fail_publish = False
        self._closed = False

    async def ping(self):
        return not self._closed

    async def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("redis unavailable")
        self.published.append((channel, message))
        return 1

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    async def flushdb(self):
        self.store = {}
        self.published = []

    async def aclose(self):
        self._closed = True


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def make_group(ledger):
    """Create a group owned by ALICE with the given extra members."""
    async def _make(creator=ALICE, members=(BOB, CAROL), **settings):
        group = await ledger.groups.create_group(creator, GroupCreate(name="Trip", **settings))
        for user_id in members:
            group = await ledger.groups.add_member(creator, group.id, MemberAdd(user_id=user_id))
        return group
    return _make


@pytest.fixture
def make_expense(ledger):
    """Record an expense; ``shares`` maps user id to share (or None for equal splits)."""
    async def _make(group_id, amount, paid_by=ALICE, shares=None, split_method=None, actor=None, **fields):
        shares = shares if shares is not None else {ALICE: None, BOB: None, CAROL: None}
        payload = ExpenseCreate(
            group_id=group_id,
            description=fields.pop("description", "Dinner"),
            amount=amount,
            paid_by=paid_by,
            split_method=split_method,
            participants=[ParticipantIn(user_id=uid, share=share) for uid, share in shares.items()],
            **fields,
        )
        return await ledger.expenses.create_expense(actor or paid_by, payload)
    return _make
