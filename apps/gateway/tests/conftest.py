"""apps/gateway 测试配置 -- 内存远端替身、可控时钟与 TaskReconciler fixture"""

import asyncio
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskify.core.models import AuthState, ChatMessage, Task
from taskify.core.store import SqliteFallbackStore
from taskify.remote import InMemoryChangeFeed, KeywordProposalEngine
from taskify.remote.exceptions import RemoteUnreachableError

START = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeRemoteTaskStore:
    """RemoteTaskStore 内存替身

    - fail: 操作名集合，命中时返回降级值（[]/None/False）
    - raises: 操作名集合，命中时抛出 RemoteUnreachableError
    - hold(op): 下一次该操作在返回前阻塞，直到 gate.set()
    """

    def __init__(self) -> None:
        self.rows: dict[str, Task] = {}
        self.owners: dict[str, str] = {}
        self.shared: dict[str, set[str]] = {}
        self.calls: list[tuple] = []
        self.fail: set[str] = set()
        self.raises: set[str] = set()
        self._gates: dict[str, asyncio.Event] = {}
        self._entered: dict[str, asyncio.Event] = {}
        self._n = 0

    def seed(self, task: Task, owner: str = "user-a") -> Task:
        self.rows[task.id] = task
        self.owners[task.id] = owner
        return task

    def share(self, task_id: str, user_id: str) -> None:
        self.shared.setdefault(user_id, set()).add(task_id)

    def hold(self, op: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[op] = gate
        self._entered[op] = asyncio.Event()
        return gate

    async def wait_entered(self, op: str) -> None:
        await asyncio.wait_for(self._entered[op].wait(), timeout=1)

    def ops(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def _checkpoint(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        gate = self._gates.pop(op, None)
        if gate is not None:
            self._entered[op].set()
            await gate.wait()
        if op in self.raises:
            raise RemoteUnreachableError("https://proj.example.com", ConnectionError(op))

    async def fetch_all(self, user_id: str) -> list[Task]:
        await self._checkpoint("fetch_all", user_id)
        if "fetch_all" in self.fail:
            return []
        visible = self.shared.get(user_id, set())
        tasks = [
            t for t in self.rows.values()
            if self.owners.get(t.id) == user_id or t.id in visible
        ]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def create(self, user_id, draft) -> Task | None:
        await self._checkpoint("create", user_id, draft.title)
        if "create" in self.fail:
            return None
        self._n += 1
        task = draft.to_task(
            f"srv-{self._n}",
            created_at=START + timedelta(hours=self._n),
            user_id=user_id,
        )
        return self.seed(task, owner=user_id)

    async def update(self, user_id, task_id, patch) -> Task | None:
        await self._checkpoint("update", user_id, task_id, patch.changes())
        if "update" in self.fail or task_id not in self.rows:
            return None
        updated = patch.apply_to(self.rows[task_id]).model_copy(
            update={"updated_by_id": user_id, "updated_at": START + timedelta(days=1)}
        )
        self.rows[task_id] = updated
        return updated

    async def delete(self, user_id, task_id) -> bool:
        await self._checkpoint("delete", user_id, task_id)
        if "delete" in self.fail:
            return False
        self.rows.pop(task_id, None)
        return True


class FakeChatStore:
    """RemoteChatStore 内存替身"""

    def __init__(self, clock: FakeClock) -> None:
        self.messages: dict[str, list[ChatMessage]] = {}
        self.fail = False
        self._clock = clock
        self._n = 0

    async def fetch_messages(self, user_id: str) -> list[ChatMessage]:
        return list(self.messages.get(user_id, []))

    async def add_message(self, user_id, content, role, task_id=None) -> ChatMessage | None:
        if self.fail:
            return None
        self._n += 1
        message = ChatMessage(
            id=f"msg-{self._n}",
            content=content,
            role=role,
            timestamp=self._clock(),
            task_id=task_id,
        )
        self.messages.setdefault(user_id, []).append(message)
        return message


async def drain() -> None:
    """让出事件循环若干次，使变更流 pump 把已发布事件处理完"""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    return drain


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote_store() -> FakeRemoteTaskStore:
    return FakeRemoteTaskStore()


@pytest.fixture
def chat_store(clock) -> FakeChatStore:
    return FakeChatStore(clock)


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def reminders() -> AsyncMock:
    scheduler = AsyncMock()
    scheduler.create_default_reminders = AsyncMock(return_value=True)
    return scheduler


@pytest_asyncio.fixture
async def local_store(db_conn) -> SqliteFallbackStore:
    return SqliteFallbackStore(db_conn)


@pytest_asyncio.fixture
async def reconciler(local_store, remote_store, chat_store, feed, reminders, clock):
    """未登录状态下启动的 TaskReconciler（远端替身已接好）"""
    from taskify.gateway.services.reconciler import TaskReconciler

    rec = TaskReconciler(
        local_store,
        remote_tasks=remote_store,
        remote_chat=chat_store,
        change_feed=feed,
        reminders=reminders,
        clock=clock,
    )
    await rec.start()
    yield rec
    await rec.close()


@pytest_asyncio.fixture
async def signed_in(reconciler):
    """以 user-a 登录后的 TaskReconciler"""
    await reconciler.set_auth(AuthState(user_id="user-a", access_token="jwt-a"))
    return reconciler


@pytest_asyncio.fixture
async def test_app(reconciler, local_store):
    """测试 app（手动初始化 app.state，绕过 lifespan）"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from taskify.gateway.main import create_app
    from taskify.gateway.services.chat_service import ChatCoordinator
    from taskify.gateway.services.state_hub import StateHub
    from taskify.remote import FallbackManager, RemoteConfig

    app = create_app()
    app.state.local_store = local_store
    app.state.remote_config = RemoteConfig()
    app.state.postgrest = None
    app.state.reconciler = reconciler
    app.state.state_hub = StateHub()
    app.state.state_hub.attach(reconciler)
    app.state.chat = ChatCoordinator(
        reconciler, FallbackManager(primary=KeywordProposalEngine(), fallback=None)
    )
    app.state.litellm_client = None

    yield app

    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
