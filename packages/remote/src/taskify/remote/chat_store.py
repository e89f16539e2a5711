"""PostgrestChatStore -- 聊天消息的远端存储"""

import structlog
from pydantic import ValidationError

from taskify.core.models import ChatMessage, ChatRole

from .exceptions import RemoteError
from .postgrest import PostgrestClient, eq
from .rows import message_from_row

log = structlog.get_logger()

MESSAGES_TABLE = "chat_messages"


class PostgrestChatStore:
    """基于 PostgREST 的聊天消息存储（append-only）"""

    def __init__(self, client: PostgrestClient) -> None:
        self._client = client

    async def fetch_messages(self, user_id: str) -> list[ChatMessage]:
        try:
            rows = await self._client.select(
                MESSAGES_TABLE,
                filters={"user_id": eq(user_id)},
                order="created_at.asc",
            )
        except RemoteError as e:
            log.warning("remote_fetch_messages_failed", user_id=user_id, error=str(e))
            return []

        messages = []
        for row in rows:
            try:
                messages.append(message_from_row(row))
            except (KeyError, ValidationError):
                log.warning("remote_message_row_invalid", row_id=row.get("id"))
        return messages

    async def add_message(
        self,
        user_id: str,
        content: str,
        role: ChatRole,
        task_id: str | None = None,
    ) -> ChatMessage | None:
        row = {
            "user_id": user_id,
            "content": content,
            "role": str(role),
            "task_id": task_id,
        }
        try:
            rows = await self._client.insert(MESSAGES_TABLE, row)
            return message_from_row(rows[0]) if rows else None
        except RemoteError as e:
            log.error("remote_add_message_failed", user_id=user_id, error=str(e))
        except (KeyError, ValidationError):
            log.error("remote_message_response_invalid", user_id=user_id)
        return None
