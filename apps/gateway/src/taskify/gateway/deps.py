"""依赖注入模块 -- 通过 FastAPI Depends 注入会话组件

组件实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from taskify.remote import PostgrestClient

from .services.chat_service import ChatCoordinator
from .services.reconciler import TaskReconciler
from .services.state_hub import StateHub


def get_reconciler(request: Request) -> TaskReconciler:
    """从 app.state 获取 TaskReconciler 实例"""
    return request.app.state.reconciler


def get_chat(request: Request) -> ChatCoordinator:
    return request.app.state.chat


def get_state_hub(request: Request) -> StateHub:
    return request.app.state.state_hub


def get_postgrest(request: Request) -> PostgrestClient | None:
    """远端未配置时为 None"""
    return getattr(request.app.state, "postgrest", None)
