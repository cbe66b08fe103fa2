"""Engine, session and Redis client lifecycle."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from tilawa import database, redis_client
from tilawa.config import Settings


class TestDatabaseLifecycle:
    @pytest.mark.asyncio
    async def test_engine_before_init(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            database.get_engine()

    @pytest.mark.asyncio
    async def test_sqlite_engine_enforces_foreign_keys(self):
        await database.init_db(Settings(database_url="sqlite+aiosqlite:///:memory:"))
        try:
            sessions = database.get_session()
            session = await anext(sessions)
            assert await session.scalar(text("PRAGMA foreign_keys")) == 1
            await sessions.aclose()
        finally:
            await database.close_db()

        with pytest.raises(RuntimeError):
            database.get_engine()


class TestRedisLifecycle:
    @pytest.mark.asyncio
    async def test_get_before_init(self):
        with pytest.raises(RuntimeError, match="not initialized"):
            redis_client.get_redis()

    @pytest.mark.asyncio
    async def test_init_and_close(self):
        await redis_client.init_redis(Settings(redis_url="redis://localhost:6399/0", redis_socket_timeout=0.1))
        client = redis_client.get_redis()
        assert client.connection_pool.max_connections == 50
        await redis_client.close_redis()
        with pytest.raises(RuntimeError):
            redis_client.get_redis()
