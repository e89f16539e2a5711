"""LoggingMiddleware -- 请求级日志

request_id 沿用客户端传入的 X-Request-ID，否则生成 ULID；
同时绑定当前会话用户与存储路径（remote / fallback），便于按用户排查同步问题。
探针路径只记 debug。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

REQUEST_ID_HEADER = "X-Request-ID"
_PROBE_PATHS = frozenset({"/health", "/ready"})


def _session_context(request: Request) -> dict:
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        return {}
    return {
        "user_id": reconciler.auth.user_id,
        "store_path": "remote" if reconciler.uses_remote else "fallback",
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
            **_session_context(request),
        )

        log = structlog.get_logger()
        emit = log.adebug if path in _PROBE_PATHS else log.ainfo
        start = time.monotonic()

        response = await call_next(request)

        await emit(
            "request_completed",
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
