"""ChatMessage / Notification Domain Model

聊天消息 append-only，按 timestamp 升序排列，创建后不再修改。
通知只在本地维护已读状态。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .enums import ChatRole, NotificationType


class ChatMessage(BaseModel):
    """聊天消息"""

    id: str = Field(min_length=1, description="消息 ID")
    content: str = Field(description="文本内容")
    role: ChatRole = Field(description="角色")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="创建时间",
    )
    task_id: str | None = Field(default=None, description="关联任务 ID")


class Notification(BaseModel):
    """通知"""

    id: str = Field(min_length=1)
    type: NotificationType
    title: str
    message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    is_read: bool = False
    action_url: str | None = None
