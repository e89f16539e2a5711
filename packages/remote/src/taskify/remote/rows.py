"""行映射 -- 远端 snake_case 行 <-> 领域模型

远端行里的空字符串、false、null 一律映射为"缺省"，与远端客户端的历史行为一致；
数组原样保留。
"""

from typing import Any

from taskify.core.models import (
    ChangeKind,
    ChatMessage,
    FeedTable,
    Task,
    TaskDraft,
    TaskPatch,
)
from taskify.core.models.event import ChangeEvent

_TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "due_date",
    "due_time",
    "priority",
    "status",
    "category",
    "tags",
    "assigned_to",
    "created_at",
    "completed_at",
    "is_recurring",
    "recurring_pattern",
    "created_by_id",
    "updated_by_id",
    "updated_at",
)

# 写入远端时空字符串按 null 发送的文本列
_NULLABLE_TEXT_COLUMNS = ("description", "recurring_pattern")


def _present(value: Any) -> bool:
    if isinstance(value, list):
        return True
    return bool(value)


def task_from_row(row: dict[str, Any]) -> Task:
    """远端行 -> Task

    Raises:
        ValidationError: 行缺少必填列或值不合法
    """
    data = {col: row[col] for col in _TASK_COLUMNS if _present(row.get(col))}
    return Task.model_validate(data)


def draft_to_row(draft: TaskDraft, user_id: str) -> dict[str, Any]:
    """创建行：新任务总是 pending，归属当前用户"""
    row = draft.model_dump(mode="json")
    row["status"] = "pending"
    row["completed_at"] = None
    row["is_recurring"] = bool(draft.is_recurring)
    for col in _NULLABLE_TEXT_COLUMNS:
        row[col] = row[col] or None
    row["user_id"] = user_id
    row["created_by_id"] = user_id
    return row


def patch_to_row(patch: TaskPatch) -> dict[str, Any]:
    """补丁行：只包含补丁里出现的列"""
    row = patch.model_dump(mode="json", exclude_unset=True)
    for col in _NULLABLE_TEXT_COLUMNS:
        if col in row:
            row[col] = row[col] or None
    return row


def message_from_row(row: dict[str, Any]) -> ChatMessage:
    """chat_messages 行 -> ChatMessage"""
    return ChatMessage(
        id=str(row["id"]),
        content=row.get("content") or "",
        role=row["role"],
        timestamp=row["created_at"],
        task_id=row.get("task_id") or None,
    )


def event_from_payload(payload: dict[str, Any]) -> ChangeEvent:
    """变更流负载 {table, eventType, new, old} -> ChangeEvent

    Raises:
        KeyError / ValueError / ValidationError: 负载不完整或表/类型未知
    """
    table = FeedTable(payload["table"])
    kind = ChangeKind(str(payload["eventType"]).lower())

    if kind == ChangeKind.DELETE:
        old = payload.get("old") or {}
        return ChangeEvent(table=table, kind=kind, record_id=str(old["id"]))

    new = payload["new"]
    if table == FeedTable.TASKS:
        return ChangeEvent.for_task(kind, task_from_row(new))
    message = message_from_row(new)
    return ChangeEvent(table=table, kind=kind, record_id=message.id, message=message)
