# app/db/session.py
# 异步 engine / AsyncSession 工厂 + FastAPI 依赖（get_session）
from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings

log = logging.getLogger("wms.db")


# ---- DSN 归一：统一到 psycopg3 与 aiosqlite ----
def normalize_async_dsn(url: str) -> str:
    url = (url or "").strip()
    # 有些环境会把值写成 '"postgresql+psycopg://.../wms"'，这里统一剥掉两侧引号
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    # sqlite:/// → sqlite+aiosqlite:///
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    # postgres/postgresql(+*) → postgresql+psycopg
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def normalize_sync_dsn(url: str) -> str:
    """Alembic 使用同步 engine：aiosqlite 退回 pysqlite，PG 统一 psycopg3。"""
    out = normalize_async_dsn(url)
    if out.startswith("sqlite+aiosqlite://"):
        return "sqlite://" + out[len("sqlite+aiosqlite://") :]
    return out


@lru_cache
def get_engine() -> AsyncEngine:
    s = get_settings()
    url = normalize_async_dsn(s.DATABASE_URL)
    log.info("[DB] Using DSN (async): %s", url)
    return create_async_engine(url, future=True, pool_pre_ping=True, echo=s.SQL_ECHO)


@lru_cache
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=get_engine(), class_=AsyncSession, expire_on_commit=False)


# ---- FastAPI 依赖 ----
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_sessionmaker()() as session:
        yield session


# ---- 关闭引擎（测试/生命周期） ----
async def close_engines() -> None:
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
