"""Shared test fixtures for the request desk."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass

import aiosqlite
import pytest

from request_desk.config_schema import DeskConfig, RetryPolicy
from request_desk.db import AppContext, connect, ensure_schema
from request_desk.models import Identity, Role
from request_desk.store import PROFILES

PEOPLE: dict[str, tuple[str, Role]] = {
    "client-1": ("alice@client.test", Role.CLIENT),
    "client-2": ("bob@client.test", Role.CLIENT),
    "admin-1": ("ops@desk.test", Role.ADMIN),
    "reviewer-1": ("rita@desk.test", Role.REVIEWER),
    "reviewer-2": ("raj@desk.test", Role.REVIEWER),
}


@dataclass
class _MockFastMCP:
    """Stands in for the FastMCP instance so ctx.fastmcp._lifespan_result works."""

    _lifespan_result: AppContext


@dataclass
class MockContext:
    """Minimal mock for fastmcp.Context that provides fastmcp._lifespan_result."""

    fastmcp: _MockFastMCP

    @property
    def lifespan_context(self) -> AppContext:
        return self.fastmcp._lifespan_result


@pytest.fixture
async def db() -> AsyncIterator[aiosqlite.Connection]:
    """In-memory SQLite database for tests."""
    conn = await connect(":memory:")
    await ensure_schema(conn)
    yield conn
    await conn.close()


@pytest.fixture
async def app(db: aiosqlite.Connection) -> AppContext:
    """AppContext over the in-memory db with every test profile registered.

    Identity retries are instant so unknown-user tests stay fast.
    """
    config = DeskConfig(identity_retry=RetryPolicy(max_attempts=5, base_delay_seconds=0.0))
    context = AppContext(db=db, config=config)
    for user_id, (email, role) in PEOPLE.items():
        await context.store.insert(PROFILES, {"id": user_id, "email": email, "role": role})
    return context


@pytest.fixture
def ctx(app: AppContext) -> MockContext:
    """Create a MockContext wrapping the app fixture."""
    return MockContext(fastmcp=_MockFastMCP(_lifespan_result=app))


@pytest.fixture
def client() -> Identity:
    return Identity(user_id="client-1", role=Role.CLIENT)


@pytest.fixture
def other_client() -> Identity:
    return Identity(user_id="client-2", role=Role.CLIENT)


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def reviewer() -> Identity:
    return Identity(user_id="reviewer-1", role=Role.REVIEWER)
