"""会话路由 -- 认证提供方的写入口

PUT /api/session: 登录（切换到远端路径，重新订阅变更流并拉取）
DELETE /api/session: 登出（回到本地兜底路径）
GET /api/session: 当前会话
"""

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from taskify.core.models import AuthState

from ..deps import get_chat, get_postgrest, get_reconciler

log = structlog.get_logger()

router = APIRouter()


class SessionRequest(BaseModel):
    """登录请求体"""

    user_id: str = Field(min_length=1, description="用户 ID")
    access_token: str | None = Field(default=None, description="远端访问令牌")


class SessionResponse(BaseModel):
    authenticated: bool
    user_id: str | None
    remote: bool = Field(description="修改是否走远端路径")
    task_count: int


def _session_response(reconciler) -> SessionResponse:
    return SessionResponse(
        authenticated=reconciler.auth.is_authenticated,
        user_id=reconciler.auth.user_id,
        remote=reconciler.uses_remote,
        task_count=len(reconciler.tasks),
    )


async def _switch(request: Request, auth: AuthState) -> None:
    postgrest = get_postgrest(request)
    if postgrest is not None:
        postgrest.set_access_token(auth.access_token)
    get_chat(request).reset()
    await get_reconciler(request).set_auth(auth)
    await log.ainfo("session_switched", user_id=auth.user_id)


@router.get("/api/session", response_model=SessionResponse)
async def get_session(reconciler=Depends(get_reconciler)):
    return _session_response(reconciler)


@router.put("/api/session", response_model=SessionResponse)
async def sign_in(body: SessionRequest, request: Request):
    await _switch(request, AuthState(user_id=body.user_id, access_token=body.access_token))
    return _session_response(get_reconciler(request))


@router.delete("/api/session", response_model=SessionResponse)
async def sign_out(request: Request):
    await _switch(request, AuthState.anonymous())
    return _session_response(get_reconciler(request))
