"""Taskify Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    ChangeKind,
    ChatRole,
    FeedTable,
    NotificationType,
    Priority,
    SharePermission,
    TaskCategory,
    TaskStatus,
)
from .event import ChangeEvent
from .message import ChatMessage, Notification
from .session import AuthState, ChatProposal, PendingProposal
from .task import (
    LOCAL_ID_PREFIX,
    Task,
    TaskDraft,
    TaskPatch,
    is_local_id,
    new_local_id,
)

__all__ = [
    # 枚举
    "Priority",
    "TaskStatus",
    "TaskCategory",
    "ChatRole",
    "SharePermission",
    "NotificationType",
    "FeedTable",
    "ChangeKind",
    # Task
    "Task",
    "TaskDraft",
    "TaskPatch",
    "LOCAL_ID_PREFIX",
    "new_local_id",
    "is_local_id",
    # 消息/通知
    "ChatMessage",
    "Notification",
    # 变更流
    "ChangeEvent",
    # 会话/AI
    "AuthState",
    "ChatProposal",
    "PendingProposal",
]
