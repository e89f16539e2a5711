"""SSE 状态流路由

GET /api/stream: 连接时先推送一次当前状态，之后每次规范状态变化推送 StateEvent，
空闲时按 SSE_HEARTBEAT_INTERVAL 发送心跳注释。
"""

import asyncio

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse
from taskify.core.config import SSE_HEARTBEAT_INTERVAL

from ..deps import get_reconciler, get_state_hub
from ..services.state_hub import StateEvent, snapshot_event

router = APIRouter()

STATE_EVENT = "state"


def _to_sse(event: StateEvent) -> dict:
    return {
        "id": str(event.revision),
        "event": STATE_EVENT,
        "data": event.model_dump_json(),
    }


@router.get("/api/stream")
async def stream_state(
    reconciler=Depends(get_reconciler),
    state_hub=Depends(get_state_hub),
):
    """SSE 事件流端点"""

    async def event_generator():
        queue = state_hub.subscribe()
        try:
            yield _to_sse(snapshot_event(reconciler))
            while True:
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                    yield _to_sse(event)
                except TimeoutError:
                    # 心跳保活
                    yield {"comment": "heartbeat"}
        finally:
            state_hub.unsubscribe(queue)

    return EventSourceResponse(event_generator())
