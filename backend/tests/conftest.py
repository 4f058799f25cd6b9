"""
Test fixtures for Keystone Access.

Every test gets a fresh in-memory SQLite database built from the model
metadata.  The ``scenario`` fixture seeds the reference tree used across
modules:

    Report R (owner u1)
    └── A            (no grants)
        └── B        (u2 = REVIEWER)
            └── C
"""
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from keystone_access.database import Base, get_db
from keystone_access.middleware.auth import create_access_token
from keystone_access.models import (
    Category,
    CategoryPermission,
    Expense,
    Report,
    User,
)
from keystone_access.services.access_gate import AccessGate
from keystone_access.services.access_store import AccessStore

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def store(db):
    return AccessStore(db)


@pytest_asyncio.fixture
async def gate(store, clock):
    return AccessGate(store, clock=clock)


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


async def make_user(db, external_id: str, email: str | None = None) -> User:
    user = User(external_id=external_id, email=email, name=external_id)
    db.add(user)
    await db.flush()
    return user


async def make_report(db, owner: User, name: str = "Report") -> Report:
    report = Report(name=name, owner_id=owner.id)
    db.add(report)
    await db.flush()
    return report


async def make_category(db, report: Report, name: str, parent: Category | None = None) -> Category:
    category = Category(
        report_id=report.id,
        name=name,
        parent_category_id=parent.id if parent else None,
    )
    db.add(category)
    await db.flush()
    return category


async def grant(db, user: User, category: Category, role: str) -> CategoryPermission:
    perm = CategoryPermission(user_id=user.id, category_id=category.id, role=role)
    db.add(perm)
    await db.flush()
    return perm


async def add_expense(db, category: Category, submitter: User | None = None) -> Expense:
    expense = Expense(
        category_id=category.id,
        submitter_id=submitter.id if submitter else None,
        description="Taxi",
    )
    db.add(expense)
    await db.flush()
    return expense


@pytest_asyncio.fixture
async def scenario(db):
    """Report R owned by u1; A -> B (u2 REVIEWER) -> C; u3 has no grants."""
    u1 = await make_user(db, "owner-uid", "owner@example.com")
    u2 = await make_user(db, "reviewer-uid", "reviewer@example.com")
    u3 = await make_user(db, "outsider-uid", "outsider@example.com")
    report = await make_report(db, u1, "Trip 2026")
    a = await make_category(db, report, "A")
    b = await make_category(db, report, "B", parent=a)
    c = await make_category(db, report, "C", parent=b)
    await grant(db, u2, b, "REVIEWER")
    await db.commit()
    return SimpleNamespace(u1=u1, u2=u2, u3=u3, report=report, a=a, b=b, c=c)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def auth_headers(external_id: str) -> dict:
    """Return auth header dict for a given external user id."""
    return {"Authorization": f"Bearer {create_access_token({'sub': external_id})}"}


@pytest_asyncio.fixture
async def client(session_factory):
    """ASGI client with ``get_db`` bound to the test database."""
    from keystone_access.main import app

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
