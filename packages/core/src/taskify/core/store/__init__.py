"""Taskify Core Store -- 本地兜底持久化实现

提供工厂函数创建基于 SQLite 的单槽位快照存储。
"""

from pathlib import Path

import aiosqlite

from ..models.task import Task
from .local_store import SqliteFallbackStore, dump_snapshot, load_snapshot
from .sqlite_init import SCHEMA_VERSION, init_db, schema_version, verify_wal_mode


async def create_local_store(
    db_path: str,
    storage_key: str = "taskify_tasks",
    seed: list[Task] | None = None,
) -> SqliteFallbackStore:
    """创建本地兜底存储

    Args:
        db_path: SQLite 数据库文件路径
        storage_key: 快照槽位键
        seed: 没有快照时返回的种子任务

    Returns:
        SqliteFallbackStore 实例（连接由调用方通过 close_local_store 关闭）
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    await init_db(conn)

    return SqliteFallbackStore(conn, storage_key=storage_key, seed=seed)


async def close_local_store(store: SqliteFallbackStore) -> None:
    """关闭存储持有的数据库连接"""
    await store.connection.close()


__all__ = [
    "SqliteFallbackStore",
    "create_local_store",
    "close_local_store",
    "dump_snapshot",
    "load_snapshot",
    "init_db",
    "verify_wal_mode",
    "schema_version",
    "SCHEMA_VERSION",
]
