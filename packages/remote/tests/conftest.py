"""Remote 包测试 fixtures"""

from datetime import UTC, datetime

import pytest
from taskify.core.models import ChatMessage, ChatRole


@pytest.fixture
def history() -> list[ChatMessage]:
    """七条交替的历史消息（只有最后五条会发给模型）"""
    return [
        ChatMessage(
            id=f"m{i}",
            content=f"message {i}",
            role=ChatRole.USER if i % 2 == 0 else ChatRole.ASSISTANT,
            timestamp=datetime(2026, 3, 10, 9, i, tzinfo=UTC),
        )
        for i in range(7)
    ]


def _sse(*payloads: str) -> bytes:
    return "".join(f"data: {p}\n\n" for p in payloads).encode()


@pytest.fixture
def sse_body():
    """把若干 data 负载拼成 text/event-stream 响应体"""
    return _sse
