# app/core/tx.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import get_settings
from app.services.fulfillment_errors import ConcurrencyConflict, FulfillmentError, Unavailable

logger = logging.getLogger("wms.tx")

T = TypeVar("T")

# Postgres SQLSTATE:
# - 40001: serialization_failure
# - 40P01: deadlock_detected
# - 55P03: lock_not_available（lock_timeout / nowait）
# - 57014: query_canceled（statement_timeout）
# - 23505: unique_violation（并发生成单号等）
_PG_CONFLICT_CODES = {"40001", "40P01", "55P03", "57014", "23505"}


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_db_error(exc: BaseException) -> Optional[FulfillmentError]:
    """
    把 SQLAlchemy/驱动层异常翻译为业务可识别的异常；无法识别返回 None（原样上抛）。
    """
    if isinstance(exc, StaleDataError):
        return ConcurrencyConflict(
            "数据已被并发修改，请重试。",
            context={"reason": "stale_version"},
        )

    code = _sqlstate(exc)
    if code in _PG_CONFLICT_CODES:
        return ConcurrencyConflict(
            "并发冲突（锁等待/序列化失败/唯一键冲突），请重试。",
            context={"sqlstate": code},
        )

    if isinstance(exc, IntegrityError):
        msg = str(getattr(exc, "orig", exc))
        if "UNIQUE" in msg.upper():
            return ConcurrencyConflict("唯一键冲突，请重试。", context={"reason": "unique_violation"})
        return None

    if isinstance(exc, OperationalError) and "database is locked" in str(exc):
        # sqlite 写锁竞争
        return ConcurrencyConflict("数据库写锁竞争，请重试。", context={"reason": "database_locked"})

    if isinstance(exc, (OperationalError, InterfaceError)):
        return Unavailable("存储暂不可用，请稍后重试。", context={"sqlstate": code} if code else None)

    return None


async def flush_or_conflict(session: AsyncSession) -> None:
    """flush；乐观版本冲突 / 唯一冲突 → ConcurrencyConflict，连接类故障 → Unavailable。"""
    try:
        await session.flush()
    except (StaleDataError, DBAPIError) as e:
        mapped = translate_db_error(e)
        if mapped is None:
            raise
        raise mapped from e


@asynccontextmanager
async def tx_commit(session: AsyncSession):
    """
    Commit 事务：正常 begin/commit；异常一律回滚。
    若 session 已经 autobegin（例如事务前做过查询），沿用该事务。
    """
    if session.in_transaction():
        try:
            yield
        except BaseException:
            await session.rollback()
            raise
        else:
            await session.commit()
    else:
        async with session.begin():
            yield


async def _apply_tx_guard(session: AsyncSession) -> None:
    # 事务内护栏：避免在 DB 锁等待/慢查询上无限卡住（仅 PG）
    if dialect_name(session) != "postgresql":
        return
    s = get_settings()
    await session.execute(text(f"SET LOCAL lock_timeout = {int(s.TX_LOCK_TIMEOUT_MS)}"))
    await session.execute(text(f"SET LOCAL statement_timeout = {int(s.TX_STATEMENT_TIMEOUT_MS)}"))


async def run_tx(
    session: AsyncSession,
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    backoff_ms: Optional[int] = None,
    guard: bool = True,
) -> T:
    """
    统一的事务执行器：

    - 每次尝试一个完整事务：成功 commit，任何异常 rollback
    - ConcurrencyConflict（含 DB 层翻译出的冲突）按指数退避重试，超过上限后原样抛出
    - InsufficientStock / CapacityExceeded 等业务结果不重试
    - 连接类故障翻译为 Unavailable

    fn 必须是可重入的：每次重试都会在新事务里重新读取并加锁。
    """
    s = get_settings()
    max_attempts = int(attempts or s.CONFLICT_RETRY_ATTEMPTS)
    base_delay = (s.CONFLICT_RETRY_BACKOFF_MS if backoff_ms is None else backoff_ms) / 1000.0

    attempt = 0
    while True:
        attempt += 1
        try:
            async with tx_commit(session):
                if guard:
                    await _apply_tx_guard(session)
                return await fn(session)
        except ConcurrencyConflict as e:
            conflict: FulfillmentError = e
        except (StaleDataError, DBAPIError) as e:
            mapped = translate_db_error(e)
            if mapped is None:
                raise
            if not isinstance(mapped, ConcurrencyConflict):
                raise mapped from e
            conflict = mapped

        if attempt >= max_attempts:
            logger.warning(
                "tx conflict: giving up after %s attempts (%s)",
                attempt,
                conflict.context or conflict.message,
            )
            raise conflict

        delay = base_delay * (2 ** (attempt - 1))
        logger.info("tx conflict: retry %s/%s in %.3fs", attempt, max_attempts, delay)
        await asyncio.sleep(delay)
