# alembic/env.py — 迁移入口：DSN 取自环境变量，模型元数据取自 app.db.base

from __future__ import annotations

import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection
from sqlalchemy.pool import NullPool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# 延迟加载模型（避免导入时机引发的问题）
from app.db.base import Base, init_models  # noqa: E402
from app.db.session import normalize_sync_dsn  # noqa: E402


def include_object(
    obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any
) -> bool:
    """DB 里有而模型里没有的对象不参与 diff（不自动生成 drop）。"""
    if reflected and compare_to is None:
        return False
    return True


def get_url() -> str:
    """
    优先级：
      1. WMS_TEST_DATABASE_URL
      2. WMS_DATABASE_URL
      3. DATABASE_URL
      4. alembic.ini 里的 sqlalchemy.url
    """
    url = (
        os.getenv("WMS_TEST_DATABASE_URL")
        or os.getenv("WMS_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError(
            "Alembic 无法确定数据库 URL：\n"
            "请设置 WMS_TEST_DATABASE_URL / WMS_DATABASE_URL / DATABASE_URL，"
            "或在 alembic.ini 里配置 sqlalchemy.url"
        )
    return normalize_sync_dsn(url)


def run_migrations_offline() -> None:
    """Offline 模式：不真实连库，只生成 SQL。"""
    init_models()
    context.configure(
        url=get_url(),
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=False,
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Online 模式：真实连库执行迁移。"""
    init_models()
    url = get_url()
    engine = create_engine(url, poolclass=NullPool, future=True)

    with engine.connect() as connection:  # type: Connection
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            compare_server_default=False,
            include_object=include_object,
            # sqlite 不支持大部分 ALTER，走 batch 模式
            render_as_batch=url.startswith("sqlite"),
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
