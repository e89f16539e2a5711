"""聊天路由

GET /api/chat: 消息历史 + 待确认提案
POST /api/chat: 发送消息，返回 ChatTurn
POST /api/chat/proposals/{proposal_id}/confirm: 应用提案中的草稿
POST /api/chat/proposals/{proposal_id}/dismiss: 丢弃提案
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from taskify.core.models import ChatMessage, PendingProposal, Task

from ..deps import get_chat, get_reconciler
from ..services.chat_service import ChatTurn
from .errors import error_response

router = APIRouter()


class ChatRequest(BaseModel):
    text: str = Field(min_length=1, description="用户消息文本")


class ChatHistoryResponse(BaseModel):
    messages: list[ChatMessage]
    pending: list[PendingProposal]


class ConfirmResponse(BaseModel):
    proposal_id: str
    tasks: list[Task]


def _proposal_not_found(proposal_id: str):
    return error_response(
        404,
        "PROPOSAL_NOT_FOUND",
        f"Proposal with id {proposal_id} does not exist",
    )


@router.get("/api/chat", response_model=ChatHistoryResponse)
async def chat_history(chat=Depends(get_chat), reconciler=Depends(get_reconciler)):
    return ChatHistoryResponse(messages=reconciler.chat_messages, pending=chat.pending)


@router.post("/api/chat", response_model=ChatTurn)
async def send_message(body: ChatRequest, chat=Depends(get_chat)):
    return await chat.send(body.text)


@router.post("/api/chat/proposals/{proposal_id}/confirm", response_model=ConfirmResponse)
async def confirm_proposal(proposal_id: str, chat=Depends(get_chat)):
    tasks = await chat.confirm(proposal_id)
    if tasks is None:
        return _proposal_not_found(proposal_id)
    return ConfirmResponse(proposal_id=proposal_id, tasks=tasks)


@router.post("/api/chat/proposals/{proposal_id}/dismiss")
async def dismiss_proposal(proposal_id: str, chat=Depends(get_chat)):
    if not chat.dismiss(proposal_id):
        return _proposal_not_found(proposal_id)
    return {"proposal_id": proposal_id, "dismissed": True}
