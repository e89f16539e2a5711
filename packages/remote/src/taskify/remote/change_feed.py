"""变更流 -- 可取消的 ChangeEvent 异步迭代器

- QueueSubscription: 基于有界 asyncio.Queue 的订阅句柄，cancel 幂等
- InMemoryChangeFeed: 进程内按用户扇出的发布/订阅中心
- SSEChangeFeed: 通过 httpx 流式读取远端 text/event-stream

取消之后迭代立即结束，不再投递任何事件。断线只结束迭代，不自动重连。
"""

import asyncio
import contextlib
import json
from collections import defaultdict
from collections.abc import Awaitable, Callable

import httpx
import structlog
from pydantic import ValidationError

from taskify.core.config import FEED_QUEUE_SIZE
from taskify.core.models.event import ChangeEvent

from .rows import event_from_payload

log = structlog.get_logger()

# 流结束哨兵
_END = object()


class QueueSubscription:
    """变更流订阅句柄"""

    def __init__(
        self,
        maxsize: int = FEED_QUEUE_SIZE,
        on_cancel: Callable[["QueueSubscription"], Awaitable[None]] | None = None,
    ) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._cancelled = False
        self._finished = False
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        return self._cancelled or self._finished

    def push(self, event: ChangeEvent) -> bool:
        """入队一个事件；已关闭或队列已满返回 False"""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    def finish(self) -> None:
        """上游结束：已入队的事件投递完后迭代结束"""
        if self.closed:
            return
        self._finished = True
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_END)

    def __aiter__(self) -> "QueueSubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._cancelled or (self._finished and self._queue.empty()):
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END or self._cancelled:
            raise StopAsyncIteration
        return item

    async def cancel(self) -> None:
        """停止投递并释放底层通道（幂等）"""
        if self._cancelled:
            return
        self._cancelled = True
        # 丢弃未投递的事件，并唤醒阻塞在 get() 上的消费者
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)
        if self._on_cancel is not None:
            await self._on_cancel(self)


class InMemoryChangeFeed:
    """进程内变更流 -- 每个订阅者一个有界队列"""

    def __init__(self, queue_maxsize: int = FEED_QUEUE_SIZE) -> None:
        # user_id -> set of QueueSubscription
        self._subscribers: dict[str, set[QueueSubscription]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    async def subscribe(self, user_id: str) -> QueueSubscription:
        async def _remove(sub: QueueSubscription) -> None:
            self._discard(user_id, sub)

        sub = QueueSubscription(self._queue_maxsize, on_cancel=_remove)
        self._subscribers[user_id].add(sub)
        return sub

    def _discard(self, user_id: str, sub: QueueSubscription) -> None:
        subs = self._subscribers.get(user_id)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            del self._subscribers[user_id]

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def publish(self, user_id: str, event: ChangeEvent) -> int:
        """向用户的所有订阅者投递事件

        Returns:
            成功投递的订阅者数量
        """
        delivered = 0
        dead = []
        for sub in list(self._subscribers.get(user_id, ())):
            if sub.push(event):
                delivered += 1
            else:
                dead.append(sub)

        # 队列已满的订阅者视为死订阅：移除并结束其迭代
        for sub in dead:
            self._discard(user_id, sub)
            sub.finish()
            log.warning("feed_subscriber_dropped", user_id=user_id)
        return delivered


def parse_sse_data(data: str) -> ChangeEvent | None:
    """解析一条 data 负载；不合法时记录日志并返回 None"""
    try:
        payload = json.loads(data)
        return event_from_payload(payload)
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        log.warning("feed_payload_invalid", error_type=type(e).__name__)
        return None


class SSEChangeFeed:
    """远端 SSE 变更流

    每个订阅对应一个后台读取任务，cancel 时取消该任务并结束迭代。
    """

    def __init__(
        self,
        feed_url: str,
        api_key: str = "",
        token_provider: Callable[[], str | None] | None = None,
        http_client: httpx.AsyncClient | None = None,
        queue_maxsize: int = FEED_QUEUE_SIZE,
    ) -> None:
        self._feed_url = feed_url.rstrip("/")
        self._api_key = api_key
        self._token_provider = token_provider
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=None)
        self._queue_maxsize = queue_maxsize
        self._readers: dict[QueueSubscription, asyncio.Task] = {}

    def _headers(self) -> dict[str, str]:
        token = self._token_provider() if self._token_provider else None
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token or self._api_key}",
            "Accept": "text/event-stream",
        }

    async def subscribe(self, user_id: str) -> QueueSubscription:
        sub = QueueSubscription(self._queue_maxsize, on_cancel=self._stop_reader)
        self._readers[sub] = asyncio.create_task(self._read(user_id, sub))
        return sub

    async def _stop_reader(self, sub: QueueSubscription) -> None:
        task = self._readers.pop(sub, None)
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _read(self, user_id: str, sub: QueueSubscription) -> None:
        url = f"{self._feed_url}/changes"
        try:
            async with self._client.stream(
                "GET",
                url,
                params={"user_id": f"eq.{user_id}"},
                headers=self._headers(),
            ) as resp:
                if resp.status_code >= 400:
                    log.warning(
                        "feed_connect_rejected",
                        user_id=user_id,
                        status_code=resp.status_code,
                    )
                    return
                log.info("feed_connected", user_id=user_id)

                data_lines: list[str] = []
                async for line in resp.aiter_lines():
                    if line == "":
                        self._dispatch(sub, data_lines)
                        data_lines = []
                    elif line.startswith("data:"):
                        data_lines.append(line[5:].lstrip())
                    # 注释行（心跳）与 event/id 字段忽略
                self._dispatch(sub, data_lines)
        except httpx.HTTPError as e:
            log.warning("feed_disconnected", user_id=user_id, error_type=type(e).__name__)
        finally:
            self._readers.pop(sub, None)
            sub.finish()

    @staticmethod
    def _dispatch(sub: QueueSubscription, data_lines: list[str]) -> None:
        if not data_lines:
            return
        event = parse_sse_data("\n".join(data_lines))
        if event is not None and not sub.push(event):
            log.warning("feed_event_dropped", record_id=event.record_id)

    async def aclose(self) -> None:
        for sub in list(self._readers):
            await sub.cancel()
        if self._owns_client:
            await self._client.aclose()
