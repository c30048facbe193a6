from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from publisher import models  # noqa: F401  -- ensure all models are registered
from publisher.async_db import get_async_engine
from publisher.db import Base
from publisher.models import Campaign, MetaConnection
from publisher.platforms.meta_ads import MetaAdsAdapter
from publisher.settings import settings

USER_ID = "user-1"
FB_USER_ID = "fb-user-1"
TOKEN = "EAAB-long-lived-token-0001"


# ---------------------------------------------------------------------------
# Fake Graph boundary
# ---------------------------------------------------------------------------


class FakeGraph:
    """Stands in for ``GraphClient``: routes (method, path) to canned bodies.

    A route value may be a dict, an exception instance (raised), or a callable
    taking the request params and returning either of those.
    """

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None):
        self.routes: dict[tuple[str, str], Any] = dict(routes or {})
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def on(self, method: str, path: str, response: Any) -> "FakeGraph":
        self.routes[(method, path.strip("/"))] = response
        return self

    async def _dispatch(self, method: str, path: str, params: dict[str, Any]) -> dict[str, Any]:
        key = (method, path.strip("/"))
        self.calls.append((method, key[1], params))
        if key not in self.routes:
            raise AssertionError(f"Unexpected Graph call {method} /{key[1]}")
        response = self.routes[key]
        if callable(response):
            response = response(params)
        if isinstance(response, BaseException):
            raise response
        return response

    async def get(self, path, *, fields=None, params=None):
        query = dict(params or {})
        if fields:
            query["fields"] = ",".join(fields)
        return await self._dispatch("GET", path, query)

    async def post(self, path, data=None):
        return await self._dispatch("POST", path, dict(data or {}))

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [params for m, p, params in self.calls if m == method and p == path.strip("/")]


class FakeAdapterFactory:
    """Adapter factory returning real ``MetaAdsAdapter`` objects over a ``FakeGraph``."""

    def __init__(self, graph: FakeGraph):
        self.graph = graph
        self.tokens: list[str | None] = []

    def __call__(self, access_token: str | None) -> MetaAdsAdapter:
        self.tokens.append(access_token)
        return MetaAdsAdapter(self.graph)


def sequence(*responses: Any) -> Callable[[dict[str, Any]], Any]:
    """Route value that returns ``responses`` one after another (last one repeats)."""
    remaining = list(responses)

    def _next(params: dict[str, Any]) -> Any:
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return _next


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


def setup_async_test_db():
    """Create an in-memory async SQLite engine and session factory."""
    engine = get_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_pre_ping=False,
    )
    TestingAsyncSession = async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False
    )
    return engine, TestingAsyncSession


@pytest.fixture
async def session_factory():
    engine, SessionFactory = setup_async_test_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SessionFactory
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def adapter_factory(graph) -> FakeAdapterFactory:
    return FakeAdapterFactory(graph)


@pytest.fixture
def meta_credentials(monkeypatch):
    monkeypatch.setattr(settings, "META_APP_ID", "app-123")
    monkeypatch.setattr(settings, "META_APP_SECRET", "app-secret-xyz")
    monkeypatch.setattr(settings, "META_DEFAULT_TOKEN_TTL_DAYS", 60)


async def make_campaign(db: AsyncSession, *, user_id: str = USER_ID) -> Campaign:
    campaign = Campaign(user_id=user_id, name="Spring promo", status="draft")
    db.add(campaign)
    await db.commit()
    await db.refresh(campaign)
    return campaign


async def make_connection(
    db: AsyncSession,
    campaign_id: uuid.UUID,
    *,
    token: str | None = TOKEN,
    expires_at: datetime | None = None,
    **selection: Any,
) -> MetaConnection:
    values: dict[str, Any] = {
        "selected_business_id": "biz-1",
        "selected_page_id": "page-1",
        "selected_page_access_token": "page-token-1",
        "selected_ad_account_id": "act_1001",
    }
    values.update(selection)
    connection = MetaConnection(
        campaign_id=campaign_id,
        user_id=USER_ID,
        fb_user_id=FB_USER_ID,
        long_lived_user_token=token,
        token_expires_at=expires_at or datetime.now(timezone.utc) + timedelta(days=30),
        **values,
    )
    db.add(connection)
    await db.commit()
    await db.refresh(connection)
    return connection


@pytest.fixture
async def campaign(db_session) -> Campaign:
    return await make_campaign(db_session)


@pytest.fixture
async def connection(db_session, campaign) -> MetaConnection:
    return await make_connection(db_session, campaign.id)
