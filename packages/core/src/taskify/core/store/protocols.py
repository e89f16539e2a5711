"""Store Protocol 接口定义

定义 Reconciler 消费的本地/远端存储与外部协作方的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
远端实现见 taskify.remote。
"""

from collections.abc import AsyncIterator
from datetime import date, time
from typing import Protocol

from ..models.enums import ChatRole
from ..models.event import ChangeEvent
from ..models.message import ChatMessage
from ..models.session import ChatProposal
from ..models.task import Task, TaskDraft, TaskPatch


class LocalTaskStore(Protocol):
    """本地兜底存储接口：单槽位，load 永不抛出"""

    async def load(self) -> list[Task]:
        """读取快照，失败时返回种子列表"""
        ...

    async def save(self, tasks: list[Task]) -> bool:
        """整体覆盖写入，失败返回 False"""
        ...


class RemoteTaskStore(Protocol):
    """远端任务存储接口

    所有操作都以 user_id 作为等值过滤条件（所有权约束）。
    失败不抛出：fetch_all 返回部分结果，其余返回 None/False。
    """

    async def fetch_all(self, user_id: str) -> list[Task]:
        """自有任务 ∪ 共享给我的任务，按 created_at 倒序"""
        ...

    async def create(self, user_id: str, draft: TaskDraft) -> Task | None:
        """创建任务，返回服务端行"""
        ...

    async def update(self, user_id: str, task_id: str, patch: TaskPatch) -> Task | None:
        """稀疏更新，只转发出现的字段"""
        ...

    async def delete(self, user_id: str, task_id: str) -> bool:
        """删除任务"""
        ...


class RemoteChatStore(Protocol):
    """远端聊天消息存储接口"""

    async def fetch_messages(self, user_id: str) -> list[ChatMessage]:
        """按时间升序返回全部消息"""
        ...

    async def add_message(
        self,
        user_id: str,
        content: str,
        role: ChatRole,
        task_id: str | None = None,
    ) -> ChatMessage | None:
        """追加一条消息"""
        ...


class ReminderScheduler(Protocol):
    """提醒调度接口（fire-and-forget）"""

    async def create_default_reminders(
        self,
        user_id: str,
        task_id: str,
        due_date: date | None,
        due_time: time | None = None,
    ) -> bool:
        """为任务创建默认提醒"""
        ...


class FeedSubscription(Protocol):
    """变更流订阅：事件异步迭代器 + 幂等取消句柄"""

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        ...

    async def cancel(self) -> None:
        """停止投递并释放底层通道，可重复调用"""
        ...


class ChangeFeed(Protocol):
    """变更流接口"""

    async def subscribe(self, user_id: str) -> FeedSubscription:
        """为指定用户打开订阅"""
        ...


class ProposalEngine(Protocol):
    """AI 提案引擎接口（文本进，任务草稿出）"""

    async def process_message(
        self,
        user_id: str | None,
        text: str,
        history: list[ChatMessage],
    ) -> ChatProposal:
        """处理一条用户消息"""
        ...
