# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import taskboard.models  # noqa: F401  (registers tables on Base.metadata)
from taskboard.api.tasks import get_attachment_storage
from taskboard.core.database import Base, get_db
from taskboard.main import app
from taskboard.services.repository import SqlTaskRepository

from .fakes import FakeAttachmentStorage, InMemoryTaskRepository


@pytest.fixture()
def now() -> datetime:
    """A fixed clock: 10 March 2026, 09:00 UTC."""
    return datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def repo() -> InMemoryTaskRepository:
    return InMemoryTaskRepository()


@pytest.fixture()
def storage() -> FakeAttachmentStorage:
    return FakeAttachmentStorage()


@pytest.fixture()
async def sql_sessionmaker(tmp_path: Path):
    """
    SQLite-backed session factory with the schema created.

    A file database (not :memory:) so every connection in the pool sees the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tasks.sqlite3'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture()
async def sql_repo(sql_sessionmaker) -> SqlTaskRepository:
    async with sql_sessionmaker() as session:
        yield SqlTaskRepository(session)


@pytest.fixture()
async def client(sql_sessionmaker, storage: FakeAttachmentStorage):
    """HTTP client against the real app, wired to SQLite and the fake storage."""

    async def _get_db():
        async with sql_sessionmaker() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_attachment_storage] = lambda: storage
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()
