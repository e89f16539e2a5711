"""PostgrestTaskStore -- RemoteTaskStore 的远端实现

fetch_all = 自有任务 ∪ 通过 task_shares 共享给我的任务。
所有写操作都带 user_id 等值过滤：远端只修改当前用户拥有的行。
失败不向上抛出，按操作降级为部分列表 / None / False。
"""

import structlog
from pydantic import ValidationError

from taskify.core.models import SharePermission, Task, TaskDraft, TaskPatch

from .exceptions import RemoteError
from .postgrest import PostgrestClient, Row, eq, in_
from .rows import draft_to_row, patch_to_row, task_from_row

log = structlog.get_logger()

TASKS_TABLE = "tasks"
SHARES_TABLE = "task_shares"

_NEWEST_FIRST = "created_at.desc"


def _share_permission(share: Row) -> SharePermission | None:
    """共享行的权限；缺省按 view，未知权限或缺 task_id 的行忽略"""
    if not share.get("task_id"):
        return None
    try:
        return SharePermission(share.get("permission") or SharePermission.VIEW)
    except ValueError:
        log.warning(
            "share_permission_unknown",
            task_id=share.get("task_id"),
            permission=share.get("permission"),
        )
        return None


def merge_task_lists(own: list[Task], shared: list[Task]) -> list[Task]:
    """按 id 去重（同 id 以自有行为准），按 created_at 倒序"""
    merged: dict[str, Task] = {}
    for task in [*own, *shared]:
        merged.setdefault(task.id, task)
    return sorted(merged.values(), key=lambda t: t.created_at, reverse=True)


def missing_draft_fields(draft: TaskDraft) -> list[str]:
    """创建前校验必填字段，返回缺失的字段名"""
    missing = []
    if not (draft.title or "").strip():
        missing.append("title")
    for name in ("priority", "status", "category"):
        if not getattr(draft, name, None):
            missing.append(name)
    return missing


class PostgrestTaskStore:
    """基于 PostgREST 的远端任务存储"""

    def __init__(self, client: PostgrestClient) -> None:
        self._client = client

    async def fetch_all(self, user_id: str) -> list[Task]:
        """获取可见任务

        两路查询相互独立：任意一路失败只记录日志，返回另一路的结果。
        """
        own: list[Task] = []
        shared: list[Task] = []

        try:
            rows = await self._client.select(
                TASKS_TABLE,
                filters={"user_id": eq(user_id)},
                order=_NEWEST_FIRST,
            )
            own = self._map_rows(rows)
        except RemoteError as e:
            log.warning("remote_fetch_own_failed", user_id=user_id, error=str(e))

        try:
            shared = await self._fetch_shared(user_id)
        except RemoteError as e:
            log.warning("remote_fetch_shared_failed", user_id=user_id, error=str(e))

        tasks = merge_task_lists(own, shared)
        log.debug(
            "remote_fetch_completed",
            user_id=user_id,
            own_count=len(own),
            shared_count=len(shared),
            total=len(tasks),
        )
        return tasks

    async def _fetch_shared(self, user_id: str) -> list[Task]:
        shares = await self._client.select(
            SHARES_TABLE,
            columns="task_id,permission",
            filters={"shared_with_id": eq(user_id)},
        )
        task_ids = sorted({str(s["task_id"]) for s in shares if _share_permission(s)})
        if not task_ids:
            return []
        rows = await self._client.select(
            TASKS_TABLE,
            filters={"id": in_(task_ids)},
            order=_NEWEST_FIRST,
        )
        return self._map_rows(rows)

    @staticmethod
    def _map_rows(rows: list[Row]) -> list[Task]:
        tasks = []
        for row in rows:
            try:
                tasks.append(task_from_row(row))
            except ValidationError as e:
                log.warning(
                    "remote_row_invalid",
                    row_id=row.get("id"),
                    error_count=e.error_count(),
                )
        return tasks

    async def create(self, user_id: str, draft: TaskDraft) -> Task | None:
        """创建任务

        Returns:
            服务端行（含服务端 id 与时间戳）；校验失败或远端失败返回 None
        """
        missing = missing_draft_fields(draft)
        if missing:
            log.error("remote_create_invalid_draft", missing=missing)
            return None

        try:
            rows = await self._client.insert(TASKS_TABLE, draft_to_row(draft, user_id))
        except RemoteError as e:
            log.error("remote_create_failed", user_id=user_id, error=str(e))
            return None

        created = self._map_rows(rows)
        if not created:
            log.error("remote_create_empty_response", user_id=user_id)
            return None
        return created[0]

    async def update(self, user_id: str, task_id: str, patch: TaskPatch) -> Task | None:
        """稀疏更新

        Returns:
            更新后的服务端行；行不存在/不属于当前用户/远端失败返回 None
        """
        values = patch_to_row(patch)
        if not values:
            return await self.get(user_id, task_id)

        try:
            rows = await self._client.update(
                TASKS_TABLE,
                values,
                filters={"id": eq(task_id), "user_id": eq(user_id)},
            )
        except RemoteError as e:
            log.error(
                "remote_update_failed",
                task_id=task_id,
                fields=sorted(values),
                error=str(e),
            )
            return None

        updated = self._map_rows(rows)
        if not updated:
            log.warning("remote_update_no_match", task_id=task_id, user_id=user_id)
            return None
        return updated[0]

    async def delete(self, user_id: str, task_id: str) -> bool:
        try:
            await self._client.delete(
                TASKS_TABLE,
                filters={"id": eq(task_id), "user_id": eq(user_id)},
            )
        except RemoteError as e:
            log.error("remote_delete_failed", task_id=task_id, error=str(e))
            return False
        return True

    async def get(self, user_id: str, task_id: str) -> Task | None:
        """按 id 读取一条自有任务"""
        try:
            rows = await self._client.select(
                TASKS_TABLE,
                filters={"id": eq(task_id), "user_id": eq(user_id)},
            )
        except RemoteError as e:
            log.warning("remote_get_failed", task_id=task_id, error=str(e))
            return None
        tasks = self._map_rows(rows)
        return tasks[0] if tasks else None
