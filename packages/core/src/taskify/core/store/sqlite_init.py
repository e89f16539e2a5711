"""兜底库 schema

fallback_slots：每个槽位保存一份完整的任务列表快照，按 slot_key 整体覆盖。
schema 版本记录在 PRAGMA user_version。
"""

import aiosqlite

SCHEMA_VERSION = 1

_FALLBACK_SLOTS_DDL = """
CREATE TABLE IF NOT EXISTS fallback_slots (
    slot_key    TEXT PRIMARY KEY,
    snapshot    TEXT NOT NULL,
    saved_at    TEXT NOT NULL
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """打开 WAL、建表、写入 schema 版本（幂等）"""
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")
    await conn.execute(_FALLBACK_SLOTS_DDL)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def schema_version(conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """兜底快照依赖 WAL 保证崩溃后旧快照仍可读"""
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
