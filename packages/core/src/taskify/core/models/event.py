"""ChangeEvent -- 变更流事件的归一化形式

远端推送的 insert/update/delete 行变更在进入 Reconciler 前
统一转换为 ChangeEvent。投递语义为至少一次，可能重复、可能乱序。
"""

from pydantic import BaseModel, Field, model_validator

from .enums import ChangeKind, FeedTable
from .message import ChatMessage
from .task import Task


class ChangeEvent(BaseModel):
    """变更流事件

    insert/update 必须携带实体；delete 只需要 record_id。
    """

    table: FeedTable = Field(description="来源表")
    kind: ChangeKind = Field(description="变更类型")
    record_id: str = Field(min_length=1, description="行 ID")
    task: Task | None = Field(default=None)
    message: ChatMessage | None = Field(default=None)

    @model_validator(mode="after")
    def check_entity(self) -> "ChangeEvent":
        if self.kind == ChangeKind.DELETE:
            return self
        entity = self.task if self.table == FeedTable.TASKS else self.message
        if entity is None:
            raise ValueError(f"{self.kind} event on {self.table} requires an entity")
        if entity.id != self.record_id:
            raise ValueError("record_id does not match entity id")
        return self

    @classmethod
    def for_task(cls, kind: ChangeKind, task: Task) -> "ChangeEvent":
        return cls(table=FeedTable.TASKS, kind=kind, record_id=task.id, task=task)

    @classmethod
    def task_deleted(cls, task_id: str) -> "ChangeEvent":
        return cls(table=FeedTable.TASKS, kind=ChangeKind.DELETE, record_id=task_id)

    @classmethod
    def for_message(cls, message: ChatMessage) -> "ChangeEvent":
        return cls(
            table=FeedTable.CHAT_MESSAGES,
            kind=ChangeKind.INSERT,
            record_id=message.id,
            message=message,
        )
