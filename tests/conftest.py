"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

os.environ["SHOWCASE_AUTH_JWT_ALGORITHM"] = "HS256"
os.environ["SHOWCASE_AUTH_JWT_SECRET"] = "test-secret-for-identity-tokens-0123456789"
os.environ["SHOWCASE_LOG_FORMAT"] = "console"

from showcase.auth.jwt import reset_keys  # noqa: E402
from showcase.config import get_settings  # noqa: E402
from showcase.database import close_db, get_engine, get_session_factory, init_db  # noqa: E402
from showcase.db.base import Base  # noqa: E402
from showcase.db.models import UserProfile, Website  # noqa: E402
from showcase.social.push_gateway import BasePushGateway, DeliveryReceipt  # noqa: E402
from showcase.ws.manager import registry  # noqa: E402

TEST_SECRET = os.environ["SHOWCASE_AUTH_JWT_SECRET"]


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Re-read settings for every test so monkeypatched env vars apply."""
    get_settings.cache_clear()
    reset_keys()
    yield
    get_settings.cache_clear()
    reset_keys()


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[None, None]:
    """File-backed SQLite database with the full schema."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'social.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(db_engine: None) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for service calls and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_engine: None) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client (no lifespan: DB is initialized by ``db_engine``, Redis stays off)."""
    from showcase.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def _clean_registry():
    yield
    for sub_id in [s.id for s in list(registry._subscriptions.values())]:
        registry.unregister(sub_id)


def make_token(uid: str, name: str | None = None, role: str | None = None, **claims: Any) -> str:
    """Identity token signed with the test secret."""
    now = int(datetime.now(timezone.utc).timestamp())
    payload: dict[str, Any] = {"sub": uid, "iat": now, "exp": now + 3600, **claims}
    if name is not None:
        payload["name"] = name
    if role is not None:
        payload["role"] = role
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


def auth_headers(uid: str, name: str | None = None, role: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(uid, name or uid.title(), role)}"}


async def create_user(db: AsyncSession, uid: str, name: str | None = None, *, is_active: bool = True) -> UserProfile:
    profile = UserProfile(id=uid, display_name=name or uid.title(), is_active=is_active)
    db.add(profile)
    await db.commit()
    return profile


async def create_users(db: AsyncSession, *uids: str) -> None:
    for uid in uids:
        db.add(UserProfile(id=uid, display_name=uid.title(), is_active=True))
    await db.commit()


async def create_website(db: AsyncSession, website_id: str, owner_id: str, title: str = "My Site") -> Website:
    website = Website(id=website_id, owner_id=owner_id, title=title)
    db.add(website)
    await db.commit()
    return website


class RecordingGateway(BasePushGateway):
    """Push gateway that records sends and answers with a fixed status."""

    def __init__(self, status: str = "sent") -> None:
        self.status = status
        self.sent: list[tuple[str, str, str, dict[str, Any]]] = []

    async def send(self, token: str, title: str, body: str, data: dict[str, Any]) -> DeliveryReceipt:
        self.sent.append((token, title, body, data))
        return DeliveryReceipt(token=token, status=self.status, message_id="m-1" if self.status == "sent" else None)


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()
