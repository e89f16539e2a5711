"""FastAPI 应用主文件

app 创建 + lifespan 管理：本地兜底库初始化/关闭、远端适配器与 AI 引擎装配、
TaskReconciler 启动（匿名会话）、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from taskify.core.config import get_db_path, get_storage_key, get_timezone
from taskify.core.models import AuthState
from taskify.core.store import close_local_store, create_local_store
from taskify.remote import (
    FallbackManager,
    KeywordProposalEngine,
    LiteLLMClient,
    LiteLLMProposalEngine,
    PostgrestChatStore,
    PostgrestClient,
    PostgrestReminderScheduler,
    PostgrestTaskStore,
    RemoteConfig,
    SSEChangeFeed,
    load_remote_config,
)

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import chat, health, notifications, session, stream, tasks, views
from .services.chat_service import ChatCoordinator
from .services.reconciler import TaskReconciler
from .services.state_hub import StateHub

log = structlog.get_logger()


def build_proposal_engine(config: RemoteConfig, app: FastAPI) -> FallbackManager:
    """根据配置装配提案引擎（litellm 模式带关键词兜底）"""
    keyword_engine = KeywordProposalEngine()

    if config.llm_mode == "litellm":
        litellm_client = LiteLLMClient(
            proxy_base_url=config.proxy_base_url,
            proxy_api_key=config.proxy_api_key.get_secret_value(),
            timeout_s=config.llm_timeout_s,
        )
        # 保存 litellm_client 引用供健康检查使用
        app.state.litellm_client = litellm_client
        log.info(
            "proposal_engine_initialized",
            mode="litellm",
            proxy_url=config.proxy_base_url,
            timeout_s=config.llm_timeout_s,
        )
        return FallbackManager(
            primary=LiteLLMProposalEngine(litellm_client),
            fallback=keyword_engine,
        )

    app.state.litellm_client = None
    log.info("proposal_engine_initialized", mode="keyword")
    return FallbackManager(primary=keyword_engine, fallback=None)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理"""
    local_store = await create_local_store(get_db_path(), get_storage_key())
    app.state.local_store = local_store

    config = load_remote_config()
    app.state.remote_config = config

    postgrest = None
    feed = None
    remote_kwargs = {}
    if config.remote_enabled:
        anon_key = config.anon_key.get_secret_value()
        postgrest = PostgrestClient(config.remote_url, anon_key, timeout_s=config.timeout_s)
        feed = SSEChangeFeed(
            config.effective_feed_url,
            api_key=anon_key,
            token_provider=lambda: postgrest.access_token,
        )
        remote_kwargs = {
            "remote_tasks": PostgrestTaskStore(postgrest),
            "remote_chat": PostgrestChatStore(postgrest),
            "change_feed": feed,
            "reminders": PostgrestReminderScheduler(postgrest, get_timezone()),
        }
        log.info("remote_enabled", remote_url=config.remote_url)
    else:
        log.info("remote_disabled", message="会话始终走本地兜底路径")
    app.state.postgrest = postgrest

    reconciler = TaskReconciler(local_store, **remote_kwargs)
    app.state.reconciler = reconciler

    state_hub = StateHub()
    state_hub.attach(reconciler)
    app.state.state_hub = state_hub

    app.state.chat = ChatCoordinator(reconciler, build_proposal_engine(config, app))

    await reconciler.start(AuthState.anonymous())

    yield

    await reconciler.close()
    if feed is not None:
        await feed.aclose()
    if postgrest is not None:
        await postgrest.aclose()
    await close_local_store(local_store)


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Taskify Gateway",
        version="0.1.0",
        description="Taskify 任务状态协调 API",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    # 注册路由
    app.include_router(session.router, tags=["session"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(views.router, tags=["views"])
    app.include_router(chat.router, tags=["chat"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
