"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含本地兜底 SQLite 连通性、磁盘空间、会话路径；
         profile=llm/full 时额外探测 LiteLLM Proxy。
"""

import shutil

import aiosqlite
import structlog
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="检查配置文件：core（默认）仅核心检查；llm/full 包含 LiteLLM Proxy 健康检查",
    ),
):
    """Readiness 检查

    检查项：
    1. sqlite: 本地兜底数据库连通性
    2. disk_space_mb: 磁盘剩余空间
    3. remote: 远端是否配置（configured/disabled）
    4. session: 当前存储路径（remote / fallback）与状态 revision
    5. litellm_proxy: 根据 profile 决定是否探测 Proxy
    """
    effective_profile = profile or "core"

    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        conn = request.app.state.local_store.connection
        cursor = await conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except (aiosqlite.Error, ValueError, AttributeError) as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 磁盘空间检查
    try:
        disk_usage = shutil.disk_usage("/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    # 3. 远端配置
    remote_config = getattr(request.app.state, "remote_config", None)
    checks["remote"] = (
        "configured" if remote_config is not None and remote_config.remote_enabled else "disabled"
    )

    # 4. 会话路径，仅供观察，不影响 ready
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is not None:
        checks["session"] = "remote" if reconciler.uses_remote else "fallback"
        checks["revision"] = reconciler.revision

    # 5. LiteLLM Proxy 健康检查
    litellm_client = getattr(request.app.state, "litellm_client", None)
    if effective_profile in ("llm", "full") and litellm_client is not None:
        if await litellm_client.health_check():
            checks["litellm_proxy"] = "ok"
        else:
            log.warning("litellm_proxy_unreachable")
            checks["litellm_proxy"] = "unreachable"
            all_ok = False
    else:
        # profile=core 或 keyword 模式：不探测 Proxy
        checks["litellm_proxy"] = "skipped"

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "profile": effective_profile,
            "checks": checks,
        },
    )
