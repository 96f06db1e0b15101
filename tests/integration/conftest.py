"""Shared fixtures for integration tests requiring live infrastructure."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from blog_gateway.config import get_settings
from blog_gateway.storage.orm import (
    ArticleUsage,
    BlogPost,
    PlanLimit,
    RegenerationUsage,
    Store,
)
from blog_gateway.storage.store import SqlContentStore

# ── Engine (module-scoped, shared across test module) ──────────────


@pytest.fixture(scope="module")
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an async engine from settings (module-scoped)."""
    engine = create_async_engine(
        get_settings().database_url,
        pool_size=10,
        max_overflow=0,
    )
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture()
def content_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> SqlContentStore:
    return SqlContentStore(session_factory)


# ── Committed seeds (real commit + DELETE cleanup) ─────────────────


@pytest.fixture()
async def committed_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[dict[str, Any]]:
    """Create a Store on the seeded ``starter`` plan with real commits.

    Returns dict with ``store_id`` and ``shop_domain``. The SQL quota
    functions commit their own writes, so cleanup deletes in reverse FK
    order instead of rolling back.
    """
    shop_domain = f"test-{uuid.uuid4().hex[:8]}.example.com"
    async with session_factory() as session:
        plan_id = (
            await session.execute(
                select(PlanLimit.id).where(PlanLimit.plan_name == "starter")
            )
        ).scalar_one()
        store = Store(shop_domain=shop_domain, plan_id=plan_id)
        session.add(store)
        await session.commit()
        store_id: uuid.UUID = store.id

    yield {"store_id": str(store_id), "shop_domain": shop_domain}

    async with session_factory() as session:
        for model in (RegenerationUsage, ArticleUsage, BlogPost):
            await session.execute(delete(model).where(model.store_id == store_id))
        await session.execute(delete(Store).where(Store.id == store_id))
        await session.commit()


# ── Redis fixture ─────────────────────────────────────────────────


@pytest.fixture()
async def arq_redis() -> AsyncGenerator[Any]:
    """Create and close a real ArqRedis connection pool."""
    from arq.connections import RedisSettings, create_pool

    pool = await create_pool(RedisSettings.from_dsn(get_settings().redis_url))
    yield pool
    await pool.aclose()
