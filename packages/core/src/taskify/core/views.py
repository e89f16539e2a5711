"""派生视图计算 -- today/upcoming/overdue/completed 分区

纯函数，无状态。today 由调用方传入，测试不依赖墙钟。
completed 先按状态判断，与日期分区正交；三个日期分区互斥。
每次调用都从规范列表重新计算，不做任何缓存。
"""

from collections.abc import Iterable
from datetime import date

from pydantic import BaseModel, ConfigDict

from .models import Notification, Task, TaskStatus


def _open_with_due_date(tasks: Iterable[Task]) -> list[Task]:
    return [t for t in tasks if t.status != TaskStatus.COMPLETED and t.due_date is not None]


def today_tasks(tasks: Iterable[Task], today: date) -> list[Task]:
    """截止日为今天且未完成"""
    return [t for t in _open_with_due_date(tasks) if t.due_date == today]


def upcoming_tasks(tasks: Iterable[Task], today: date) -> list[Task]:
    """截止日在今天之后且未完成"""
    return [t for t in _open_with_due_date(tasks) if t.due_date > today]


def overdue_tasks(tasks: Iterable[Task], today: date) -> list[Task]:
    """截止日已过且未完成"""
    return [t for t in _open_with_due_date(tasks) if t.due_date < today]


def completed_tasks(tasks: Iterable[Task]) -> list[Task]:
    return [t for t in tasks if t.status == TaskStatus.COMPLETED]


def unread_notifications_count(notifications: Iterable[Notification]) -> int:
    return sum(1 for n in notifications if not n.is_read)


def newest_first(tasks: Iterable[Task]) -> list[Task]:
    """展示顺序：按 created_at 倒序"""
    return sorted(tasks, key=lambda t: t.created_at, reverse=True)


class TaskViews(BaseModel):
    """一次性计算出的全部派生视图"""

    model_config = ConfigDict(frozen=True)

    today: date
    all: list[Task]
    today_tasks: list[Task]
    upcoming: list[Task]
    overdue: list[Task]
    completed: list[Task]
    unread_notifications: int


def compute_views(
    tasks: Iterable[Task],
    notifications: Iterable[Notification],
    today: date,
) -> TaskViews:
    """从规范列表计算所有视图

    Args:
        tasks: 规范任务列表
        notifications: 通知列表
        today: 当前日期（调用方提供）

    Returns:
        TaskViews 快照
    """
    task_list = list(tasks)
    return TaskViews(
        today=today,
        all=newest_first(task_list),
        today_tasks=today_tasks(task_list, today),
        upcoming=upcoming_tasks(task_list, today),
        overdue=overdue_tasks(task_list, today),
        completed=completed_tasks(task_list),
        unread_notifications=unread_notifications_count(notifications),
    )
