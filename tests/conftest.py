"""
Shared fixtures: in-memory async SQLite and a fresh plugin registry.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.models import Base
from plugins.registry import PluginRegistry
from tests.fakes import FakePlugin


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def registry():
    PluginRegistry.reset()
    yield PluginRegistry()
    PluginRegistry.reset()


@pytest.fixture
def fake_plugin(registry):
    plugin = FakePlugin()
    registry.register(plugin)
    return plugin
