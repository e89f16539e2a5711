"""Task Domain Model

Task 是规范列表（canonical list）中的唯一实体类型：
- Task: 完整记录（远端行或本地合成）
- TaskDraft: 创建输入，不含 id/created_at
- TaskPatch: 稀疏补丁，字段是否"出现"由 pydantic 的 model_fields_set 表达，
  未传入 = 不修改，显式传 None = 清空
"""

from datetime import UTC, date, datetime, time
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from ulid import ULID

from .enums import Priority, TaskCategory, TaskStatus

# 本地合成 ID 前缀（未经远端确认的临时标识）
LOCAL_ID_PREFIX = "local-"


def new_local_id() -> str:
    """生成本地临时 ID（ULID：时间有序、同毫秒内单调）"""
    return f"{LOCAL_ID_PREFIX}{ULID()}"


def is_local_id(task_id: str) -> bool:
    return task_id.startswith(LOCAL_ID_PREFIX)


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("title must not be blank")
    return value


class Task(BaseModel):
    """Task 数据模型

    不变量：status == completed 当且仅当 completed_at 存在。
    校验时对不一致的记录做归一化而不是报错，远端脏数据不会阻断加载。
    """

    id: str = Field(min_length=1, description="唯一标识，远端分配或 local- 前缀的本地 ULID")
    title: str = Field(description="任务标题，非空")
    description: str | None = Field(default=None)
    due_date: date | None = Field(default=None, description="截止日期")
    due_time: time | None = Field(default=None, description="截止时刻")
    priority: Priority = Field(default=Priority.MEDIUM)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    category: TaskCategory = Field(default=TaskCategory.PERSONAL)
    tags: list[str] | None = Field(default=None)
    assigned_to: list[str] | None = Field(default=None)
    created_at: datetime = Field(description="创建时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    is_recurring: bool | None = Field(default=None)
    recurring_pattern: str | None = Field(default=None)
    created_by_id: str | None = Field(default=None)
    updated_by_id: str | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    validate_title = field_validator("title")(_require_text)

    @model_validator(mode="after")
    def normalize_completion(self) -> "Task":
        if self.status == TaskStatus.COMPLETED:
            if self.completed_at is None:
                self.completed_at = self.updated_at or self.created_at
        elif self.completed_at is not None:
            self.completed_at = None
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class TaskDraft(BaseModel):
    """创建任务的输入

    title/priority/status/category 为必填语义字段，后三者带远端表的默认值。
    新任务总是以 pending 开始，见 to_task。
    """

    title: str
    description: str | None = None
    due_date: date | None = None
    due_time: time | None = None
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    category: TaskCategory = TaskCategory.PERSONAL
    tags: list[str] | None = None
    assigned_to: list[str] | None = None
    is_recurring: bool | None = None
    recurring_pattern: str | None = None

    validate_title = field_validator("title")(_require_text)

    def to_task(
        self,
        task_id: str,
        created_at: datetime | None = None,
        user_id: str | None = None,
    ) -> Task:
        """用草稿合成完整 Task（本地兜底路径）"""
        data = self.model_dump(exclude_none=True)
        data["status"] = TaskStatus.PENDING
        return Task(
            **data,
            id=task_id,
            created_at=created_at or datetime.now(UTC),
            created_by_id=user_id,
        )


# 补丁中不可清空的字段
_NON_NULLABLE_PATCH_FIELDS = ("title", "priority", "status", "category")


class TaskPatch(BaseModel):
    """稀疏补丁

    只有出现在 model_fields_set 中的字段才会被转发/应用。
    """

    title: str | None = None
    description: str | None = None
    due_date: date | None = None
    due_time: time | None = None
    priority: Priority | None = None
    status: TaskStatus | None = None
    category: TaskCategory | None = None
    tags: list[str] | None = None
    assigned_to: list[str] | None = None
    completed_at: datetime | None = None
    is_recurring: bool | None = None
    recurring_pattern: str | None = None

    @field_validator(*_NON_NULLABLE_PATCH_FIELDS)
    @classmethod
    def reject_clear(cls, value: Any, info) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be cleared")
        if info.field_name == "title":
            _require_text(value)
        return value

    def changes(self) -> dict[str, Any]:
        """出现的字段 -> 值（含显式 None）"""
        return self.model_dump(exclude_unset=True)

    @property
    def is_empty(self) -> bool:
        return not self.model_fields_set

    def normalized(self, current: Task, now: datetime | None = None) -> "TaskPatch":
        """补齐状态变化对应的 completed_at（或反之），保证应用后不变量成立"""
        changes = self.changes()
        now = now or datetime.now(UTC)

        if "status" in changes:
            if changes["status"] == TaskStatus.COMPLETED:
                if changes.get("completed_at") is None:
                    changes["completed_at"] = (
                        current.completed_at if current.is_completed else now
                    )
            else:
                changes["completed_at"] = None
        elif "completed_at" in changes:
            if changes["completed_at"] is None:
                if current.is_completed:
                    changes["status"] = TaskStatus.PENDING
            elif not current.is_completed:
                changes["status"] = TaskStatus.COMPLETED

        return TaskPatch(**changes)

    def apply_to(self, task: Task) -> Task:
        """在本地副本上应用补丁（重新走一遍 Task 校验）"""
        data = task.model_dump()
        data.update(self.changes())
        return Task.model_validate(data)
