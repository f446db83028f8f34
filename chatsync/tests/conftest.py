"""Async test fixtures for sync tests using SQLite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatsync.b2chat.client import B2ChatTransientError, ExportPage
from chatsync.database import get_db
from chatsync.deps import get_b2chat_client, get_emitter, get_registry
from chatsync.models.base import Base
from chatsync.sync.cancellation import CancellationRegistry
from chatsync.sync.events import SyncEventEmitter

BASE_TIME = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)  # a Monday


class FakeB2ChatClient:
    """Serves canned export pages; optionally fails once a page count is reached."""

    def __init__(self, items: dict[str, list[dict]] | None = None, *, fail_on_page: int | None = None):
        self.items = items or {"contacts": [], "chats": []}
        self.fail_on_page = fail_on_page
        self.calls: list[dict] = []

    async def export_page(self, entity_type, *, offset=0, limit=100, date_from=None, date_to=None):
        self.calls.append(
            {"entity_type": entity_type, "offset": offset, "limit": limit,
             "date_from": date_from, "date_to": date_to}
        )
        if self.fail_on_page is not None and len(self.calls) >= self.fail_on_page:
            raise B2ChatTransientError(
                "B2Chat API server error", 503, {"message": "unavailable"},
                endpoint=f"/{entity_type}/export", request_url=f"http://b2chat.test/{entity_type}/export",
            )
        data = self.items.get(entity_type, [])
        page = data[offset:offset + limit]
        return ExportPage(
            items=page,
            exported=len(page),
            total=len(data),
            offset=offset,
            limit=limit,
            request_url=f"http://b2chat.test/{entity_type}/export?offset={offset}",
        )


def contact_payload(n: int, **overrides) -> dict:
    data = {
        "contact_id": f"C{n:04d}",
        "fullname": f"Contact {n}",
        "mobile": f"+5730000{n:05d}",
        "email": f"contact{n}@example.com",
        "identification": f"ID{n}",
        "city": "Bogota",
        "created": (BASE_TIME - timedelta(days=30)).isoformat(),
        "updated": (BASE_TIME - timedelta(days=1)).isoformat(),
    }
    data.update(overrides)
    return data


def chat_payload(n: int, contact: dict | None = None, **overrides) -> dict:
    opened = BASE_TIME + timedelta(minutes=n)
    data = {
        "chat_id": f"CH{n:04d}",
        "alias": f"chat-{n}",
        "provider": "whatsapp",
        "status": "CLOSED",
        "agent": {"name": "Ana Agent", "username": "ana", "email": "ana@example.com"},
        "department": {"name": "Support", "code": "SUP"},
        "contact": contact if contact is not None else {"contact_id": f"C{n:04d}", "fullname": f"Contact {n}"},
        "created_at": opened.isoformat(),
        "opened_at": opened.isoformat(),
        "picked_up_at": (opened + timedelta(seconds=90)).isoformat(),
        "response_at": (opened + timedelta(seconds=150)).isoformat(),
        "closed_at": (opened + timedelta(minutes=30)).isoformat(),
        "duration": "00:30:00",
        "messages": [
            {"created_at": (opened + timedelta(seconds=10)).isoformat(), "incoming": True, "type": "text", "body": "Hi"},
            {"created_at": (opened + timedelta(seconds=150)).isoformat(), "incoming": False, "type": "text", "body": "Hello"},
            {"created_at": (opened + timedelta(seconds=200)).isoformat(), "incoming": True, "type": "text", "body": "Thanks"},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def registry():
    reg = CancellationRegistry()
    yield reg
    reg.clear()


@pytest.fixture
def emitter():
    em = SyncEventEmitter(max_history=500)
    yield em
    em.clear()


@pytest.fixture
def make_contact():
    return contact_payload


@pytest.fixture
def make_chat():
    return chat_payload


@pytest.fixture
def make_b2chat():
    return FakeB2ChatClient


@pytest.fixture
def fake_b2chat():
    return FakeB2ChatClient(
        {
            "contacts": [contact_payload(i) for i in range(5)],
            "chats": [chat_payload(i) for i in range(5)],
        }
    )


@pytest_asyncio.fixture
async def client(engine, registry, emitter, fake_b2chat):
    """HTTPX async test client against the sync app."""
    from chatsync.app import app

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_b2chat_client():
        yield fake_b2chat

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_emitter] = lambda: emitter
    app.dependency_overrides[get_b2chat_client] = override_get_b2chat_client

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers={"X-User-Id": "tester"}
    ) as c:
        yield c

    app.dependency_overrides.clear()
