"""本地兜底存储 -- SQLite 单槽位快照

未登录或远端不可达时使用。整个规范任务列表序列化为一个 JSON 数组，
写入固定键的槽位，每次保存整体覆盖（无局部更新、无版本）。
持久化是尽力而为：load 永不抛出，save 失败只记录日志并返回 False。
"""

from datetime import UTC, datetime

import aiosqlite
import structlog
from pydantic import TypeAdapter, ValidationError

from ..models.task import Task

log = structlog.get_logger()

_TASK_LIST = TypeAdapter(list[Task])


def dump_snapshot(tasks: list[Task]) -> str:
    """序列化任务列表

    exclude_none：缺省字段保持缺省，显式空值（[]、""、False）原样保留。
    """
    return "[" + ",".join(t.model_dump_json(exclude_none=True) for t in tasks) + "]"


def load_snapshot(blob: str | bytes) -> list[Task]:
    """反序列化任务列表

    Raises:
        ValidationError: JSON 损坏或记录不合法
    """
    return _TASK_LIST.validate_json(blob)


class SqliteFallbackStore:
    """LocalTaskStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        storage_key: str = "taskify_tasks",
        seed: list[Task] | None = None,
    ) -> None:
        self._conn = conn
        self._key = storage_key
        self._seed = list(seed or [])

    @property
    def storage_key(self) -> str:
        return self._key

    @property
    def connection(self) -> aiosqlite.Connection:
        return self._conn

    async def load(self) -> list[Task]:
        """读取快照；没有存储或反序列化失败时返回种子列表"""
        try:
            cursor = await self._conn.execute(
                "SELECT snapshot FROM fallback_slots WHERE slot_key = ?",
                (self._key,),
            )
            row = await cursor.fetchone()
        except (aiosqlite.Error, ValueError) as e:
            log.warning(
                "fallback_load_failed",
                storage_key=self._key,
                error_type=type(e).__name__,
            )
            return list(self._seed)

        if row is None:
            return list(self._seed)

        try:
            return load_snapshot(row[0])
        except ValidationError as e:
            log.warning(
                "fallback_snapshot_corrupt",
                storage_key=self._key,
                error_count=e.error_count(),
            )
            return list(self._seed)

    async def save(self, tasks: list[Task]) -> bool:
        """整体覆盖写入快照

        Returns:
            True 写入成功；False 写入失败（已记录日志，不重试）
        """
        try:
            await self._conn.execute(
                """
                INSERT INTO fallback_slots (slot_key, snapshot, saved_at)
                VALUES (?, ?, ?)
                ON CONFLICT(slot_key) DO UPDATE SET
                    snapshot = excluded.snapshot,
                    saved_at = excluded.saved_at
                """,
                (self._key, dump_snapshot(tasks), datetime.now(UTC).isoformat()),
            )
            await self._conn.commit()
            return True
        except (aiosqlite.Error, ValueError) as e:
            log.error(
                "fallback_save_failed",
                storage_key=self._key,
                task_count=len(tasks),
                error_type=type(e).__name__,
            )
            return False

    async def clear(self) -> bool:
        """清空槽位"""
        try:
            await self._conn.execute(
                "DELETE FROM fallback_slots WHERE slot_key = ?", (self._key,)
            )
            await self._conn.commit()
            return True
        except (aiosqlite.Error, ValueError) as e:
            log.error(
                "fallback_clear_failed",
                storage_key=self._key,
                error_type=type(e).__name__,
            )
            return False
