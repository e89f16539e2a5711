"""集成测试共享 fixture

真实适配器（PostgrestTaskStore / PostgrestChatStore / PostgrestReminderScheduler）
接到内存 PostgREST 上，变更流使用 InMemoryChangeFeed，本地兜底使用真实 SQLite 文件。
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskify.remote import (
    FallbackManager,
    InMemoryChangeFeed,
    KeywordProposalEngine,
    PostgrestChatStore,
    PostgrestReminderScheduler,
    PostgrestTaskStore,
    RemoteConfig,
)


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "sqlite" / "taskify.db")


@pytest.fixture
def change_feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def build_reconciler(postgrest, change_feed):
    """用同一套远端适配器构造 TaskReconciler（模拟进程重启）"""
    from taskify.gateway.services.reconciler import TaskReconciler

    def _build(local_store) -> TaskReconciler:
        return TaskReconciler(
            local_store,
            remote_tasks=PostgrestTaskStore(postgrest),
            remote_chat=PostgrestChatStore(postgrest),
            change_feed=change_feed,
            reminders=PostgrestReminderScheduler(postgrest, ZoneInfo("UTC")),
        )

    return _build


@pytest_asyncio.fixture
async def integration_app(db_path, postgrest, build_reconciler):
    """集成测试用 FastAPI app（手动初始化 app.state）"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from taskify.core.store import close_local_store, create_local_store
    from taskify.gateway.main import create_app
    from taskify.gateway.services.chat_service import ChatCoordinator
    from taskify.gateway.services.state_hub import StateHub

    app = create_app()

    local_store = await create_local_store(db_path)
    reconciler = build_reconciler(local_store)
    state_hub = StateHub()
    state_hub.attach(reconciler)

    app.state.local_store = local_store
    app.state.remote_config = RemoteConfig(remote_url="https://proj.example.com")
    app.state.postgrest = postgrest
    app.state.reconciler = reconciler
    app.state.state_hub = state_hub
    app.state.chat = ChatCoordinator(
        reconciler, FallbackManager(primary=KeywordProposalEngine(), fallback=None)
    )
    app.state.litellm_client = None

    await reconciler.start()

    yield app

    await reconciler.close()
    await close_local_store(local_store)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def signed_in_client(client) -> AsyncClient:
    resp = await client.put("/api/session", json={"user_id": "user-a", "access_token": "jwt-a"})
    assert resp.status_code == 200
    return client
