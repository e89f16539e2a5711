"""StateHub -- 规范状态变化广播器

每个 SSE 订阅者持有一个 asyncio.Queue；TaskReconciler 的 listener
在每次状态变化后调用 publish，推送一个轻量的 StateEvent，客户端据此重新拉取。
"""

import asyncio
from datetime import UTC, datetime

from pydantic import BaseModel, Field
from taskify.core.views import unread_notifications_count

from .reconciler import TaskReconciler


class StateEvent(BaseModel):
    """状态变化事件"""

    revision: int = Field(description="规范状态版本号")
    task_count: int
    message_count: int
    unread_notifications: int
    ts: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StateHub:
    """状态广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        self._subscribers: set[asyncio.Queue] = set()
        self._queue_maxsize = queue_maxsize

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: StateEvent) -> None:
        """向所有订阅者广播；队列已满的订阅者被移除"""
        dead_queues = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        for q in dead_queues:
            self._subscribers.discard(q)

    def attach(self, reconciler: TaskReconciler):
        """把广播挂到 reconciler 的状态变化上，返回注销函数"""

        def _on_change() -> None:
            self.publish(snapshot_event(reconciler))

        return reconciler.add_listener(_on_change)


def snapshot_event(reconciler: TaskReconciler) -> StateEvent:
    return StateEvent(
        revision=reconciler.revision,
        task_count=len(reconciler.tasks),
        message_count=len(reconciler.chat_messages),
        unread_notifications=unread_notifications_count(reconciler.notifications),
    )
