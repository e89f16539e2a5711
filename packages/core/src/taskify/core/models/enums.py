"""枚举定义

包含 Task 的优先级/状态/分类、聊天角色、共享权限、通知类型，
以及变更流（change feed）事件的表名与变更类型。
"""

from enum import StrEnum


class Priority(StrEnum):
    """任务优先级"""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class TaskStatus(StrEnum):
    """任务状态

    OVERDUE 是远端可能写入的存量状态值；是否逾期的判断始终以 due_date 为准，
    见 views.overdue_tasks。
    """

    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class TaskCategory(StrEnum):
    """任务分类"""

    WORK = "work"
    PERSONAL = "personal"
    HEALTH = "health"
    SHOPPING = "shopping"
    OTHER = "other"


class ChatRole(StrEnum):
    """聊天消息角色"""

    USER = "user"
    ASSISTANT = "assistant"


class SharePermission(StrEnum):
    """任务共享权限"""

    VIEW = "view"
    EDIT = "edit"


class NotificationType(StrEnum):
    """通知类型"""

    TASK_DUE = "task_due"
    FRIEND_REQUEST = "friend_request"
    TASK_SHARED = "task_shared"
    ACHIEVEMENT = "achievement"
    REMINDER = "reminder"


class FeedTable(StrEnum):
    """变更流覆盖的表"""

    TASKS = "tasks"
    CHAT_MESSAGES = "chat_messages"


class ChangeKind(StrEnum):
    """变更流事件类型"""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
