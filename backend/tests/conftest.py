"""
Orienteer Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment is overridden before any `app` import so the settings
       singleton, the engine and the file service pick up test values.

Fixture Overview:
    ├── mock_db_session: AsyncSession stand-in (no real database needed)
    ├── temp_storage:    per-test storage directory
    ├── db_result:       factory for execute() results
    ├── requestors:      anonymous, guest, standard, admin, as_requestor(user)
    ├── make_user / make_club / make_event / make_runner: ORM factories
    └── test_client:     HTTPX AsyncClient bound to the FastAPI app
"""

import os
import tempfile

# Must run before anything imports app.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="orienteer_test_")
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.models.event import Event, EventRunner
from app.models.user import Club, User
from app.schemas.visibility import Requestor, Role


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

def make_result(scalar=None, scalars=None):
    """A stand-in for the Result returned by `await session.execute(...)`."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar.return_value = scalar
    result.scalars.return_value.all.return_value = list(scalars or [])
    return result


@pytest.fixture
def db_result():
    """Factory for execute() results: db_result(scalar=user) or db_result(scalars=[...])."""
    return make_result


@pytest.fixture
def mock_db_session():
    """
    Mock async database session.

    Usage:
        mock_db_session.execute.return_value = make_result(scalar=user)
        result = await user_service.get_user(mock_db_session, requestor, user.id)
    """
    session = AsyncMock()
    session.execute = AsyncMock(return_value=make_result())
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.get = AsyncMock(return_value=None)
    session.add = MagicMock()
    # `async with session.begin_nested():` (SAVEPOINT)
    session.begin_nested = MagicMock(return_value=AsyncMock())
    return session


@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


# ══════════════════════════════════════════════════════════════════════════
# ORM factories (transient objects, never flushed)
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_club():
    def _make(short_name="OK", active=True):
        return Club(id=uuid4(), short_name=short_name, full_name=f"{short_name} club", active=active)
    return _make


@pytest.fixture
def make_user():
    def _make(display_name="runner", role="standard", visibility="private", active=True, clubs=None):
        return User(
            id=uuid4(),
            email=f"{display_name}@example.org",
            display_name=display_name,
            full_name=display_name.title(),
            about="",
            profile_image="",
            role=role,
            visibility=visibility,
            active=active,
            created_at=datetime(2024, 5, 18, tzinfo=timezone.utc),
            clubs=list(clubs or []),
        )
    return _make


@pytest.fixture
def make_runner():
    def _make(user, visibility="private", maps=None, distance_run=None):
        return EventRunner(
            id=uuid4(),
            user_id=user.id,
            user=user,
            visibility=visibility,
            course_title="Long",
            course_length=None,
            time="1:02:03",
            place=None,
            distance_run=distance_run,
            maps=list(maps or []),
            created_at=datetime(2024, 5, 18, tzinfo=timezone.utc),
        )
    return _make


@pytest.fixture
def make_event():
    def _make(runners=None, active=True, location=None):
        lat, long = location if location else (None, None)
        return Event(
            id=uuid4(),
            name="Spring Middle",
            date=date(2024, 5, 18),
            active=active,
            location_lat=lat,
            location_long=long,
            runners=list(runners or []),
        )
    return _make


# ══════════════════════════════════════════════════════════════════════════
# Requestors
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def anonymous():
    return Requestor.anonymous()


@pytest.fixture
def guest():
    return Requestor(role=Role.GUEST, id=str(uuid4()))


@pytest.fixture
def standard():
    return Requestor(role=Role.STANDARD, id=str(uuid4()))


@pytest.fixture
def admin():
    return Requestor(role=Role.ADMIN, id=str(uuid4()))


@pytest.fixture
def as_requestor():
    """Requestor acting as the given ORM user."""
    def _make(user, role=Role.STANDARD):
        return Requestor(role=role, id=str(user.id), clubs=[str(c.id) for c in user.clubs])
    return _make


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(mock_db_session):
    """
    HTTPX client talking to the app in-process, with the database session
    dependency replaced by mock_db_session.
    """
    from app.database import get_db_session
    from app.main import app

    async def _override_db():
        yield mock_db_session

    app.dependency_overrides[get_db_session] = _override_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
