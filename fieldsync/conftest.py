"""全局 pytest 配置 -- 临时 SQLite 数据库与 Store 实例组 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest_asyncio


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def tmp_evidence_dir(tmp_path: Path) -> Path:
    """提供临时凭证目录"""
    evidence_dir = tmp_path / "evidence"
    evidence_dir.mkdir(parents=True, exist_ok=True)
    return evidence_dir


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from fieldsync.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path, tmp_evidence_dir: Path):
    """提供完整的 Store 实例组"""
    from fieldsync.core.store import create_store_group

    group = await create_store_group(str(tmp_db_path), tmp_evidence_dir)
    yield group
    await group.conn.close()
