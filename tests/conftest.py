# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.db.base import Base, init_models
from app.db.session import get_session, normalize_async_dsn
from app.main import app

# ==========================
# 数据库 DSN
#   - 设置 WMS_TEST_DATABASE_URL：用真实 PostgreSQL（行锁 / 并发用例才有意义）
#   - 未设置：每个用例一个临时 sqlite 文件库
# ==========================
PG_TEST_URL = os.getenv("WMS_TEST_DATABASE_URL")


def is_postgres() -> bool:
    return bool(PG_TEST_URL) and normalize_async_dsn(PG_TEST_URL).startswith("postgresql")


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL")
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


# =========================================
# 每用例独立 Engine（NullPool，避免跨 loop）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    if PG_TEST_URL:
        url = normalize_async_dsn(PG_TEST_URL)
    else:
        url = f"sqlite+aiosqlite:///{tmp_path / 'wms_test.db'}"

    engine = create_async_engine(url, poolclass=NullPool, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _sqlite_pragmas)

    # 按 HEAD 模型重建表结构；有问题直接炸，暴露模型问题
    init_models()
    async with engine.begin() as conn:
        if engine.dialect.name != "sqlite":
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    标准 Session：用例内自行 run_tx / commit；结束时回滚残留事务
    """
    async with async_session_maker() as sess:
        try:
            yield sess
        finally:
            if sess.in_transaction():
                await sess.rollback()


# =========================================
# FastAPI / httpx AsyncClient（get_session 指向测试库）
# =========================================
@pytest_asyncio.fixture(scope="function")
async def client(async_session_maker) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_maker() as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
        ) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_session, None)
