"""ChatCoordinator -- 聊天消息 -> AI 提案 -> 任务

1. 记录用户消息
2. 交给提案引擎（经 FallbackManager，不抛出）
3. 记录助手回复
4. 不需要确认的草稿直接走 TaskReconciler.add；需要确认的暂存为 PendingProposal

引擎返回时会话已切换（登出或换用户），回复、草稿与提案一律丢弃。
"""

import structlog
from pydantic import BaseModel, Field
from taskify.core.models import (
    ChatMessage,
    ChatRole,
    PendingProposal,
    Task,
    TaskDraft,
)
from taskify.core.store.protocols import ProposalEngine
from ulid import ULID

from .reconciler import TaskReconciler

log = structlog.get_logger()


class ChatTurn(BaseModel):
    """一次聊天往返的结果"""

    user_message: ChatMessage
    reply: ChatMessage | None = Field(default=None, description="会话已切换时为 None")
    proposal_id: str | None = Field(default=None, description="待确认提案 ID")
    proposed_tasks: list[TaskDraft] = Field(default_factory=list)
    applied_tasks: list[Task] = Field(default_factory=list)


class ChatCoordinator:
    """聊天协调器"""

    def __init__(self, reconciler: TaskReconciler, engine: ProposalEngine) -> None:
        self._reconciler = reconciler
        self._engine = engine
        self._pending: dict[str, PendingProposal] = {}

    @property
    def pending(self) -> list[PendingProposal]:
        return list(self._pending.values())

    def reset(self) -> None:
        """会话切换时丢弃未确认提案"""
        self._pending.clear()

    async def send(self, text: str) -> ChatTurn:
        epoch = self._reconciler.epoch
        history = self._reconciler.chat_messages
        user_message = await self._reconciler.add_message(text, ChatRole.USER)
        turn = ChatTurn(user_message=user_message)

        proposal = await self._engine.process_message(
            self._reconciler.auth.user_id,
            text,
            history,
        )
        if self._stale(epoch, "chat_reply"):
            return turn
        turn.reply = await self._reconciler.add_message(proposal.reply, ChatRole.ASSISTANT)
        if not proposal.proposed_tasks or self._stale(epoch, "chat_proposal"):
            return turn

        turn.proposed_tasks = proposal.proposed_tasks

        if proposal.requires_confirmation:
            pending = PendingProposal(
                proposal_id=str(ULID()),
                drafts=proposal.proposed_tasks,
            )
            self._pending[pending.proposal_id] = pending
            turn.proposal_id = pending.proposal_id
            log.info(
                "proposal_pending",
                proposal_id=pending.proposal_id,
                task_count=len(pending.drafts),
            )
        else:
            turn.applied_tasks = await self._apply(proposal.proposed_tasks, epoch)
        return turn

    async def confirm(self, proposal_id: str) -> list[Task] | None:
        """应用待确认提案；提案不存在返回 None"""
        pending = self._pending.pop(proposal_id, None)
        if pending is None:
            return None
        return await self._apply(pending.drafts, self._reconciler.epoch)

    def dismiss(self, proposal_id: str) -> bool:
        return self._pending.pop(proposal_id, None) is not None

    def _stale(self, epoch: int, op: str) -> bool:
        if epoch == self._reconciler.epoch:
            return False
        log.info("stale_session_result_dropped", op=op)
        return True

    async def _apply(self, drafts: list[TaskDraft], epoch: int) -> list[Task]:
        applied = []
        for draft in drafts:
            if self._stale(epoch, "proposal_apply"):
                break
            task = await self._reconciler.add(draft)
            if task is not None:
                applied.append(task)
        log.info("proposal_applied", task_count=len(applied))
        return applied
