"""FallbackManager -- 提案引擎降级管理器

Lazy probe 策略：每次调用时先尝试 primary，失败则切换到 fallback。
不维护显式的"降级状态"标记。两者都失败时返回固定的致歉回复，不抛出。
"""

import structlog

from taskify.core.models import ChatMessage, ChatProposal

log = structlog.get_logger()

APOLOGY_REPLY = "I'm having trouble processing that right now. Could you try rephrasing?"


class FallbackManager:
    """降级管理器

    降级链: LiteLLMProposalEngine -> KeywordProposalEngine
    """

    def __init__(self, primary, fallback=None) -> None:
        """
        Args:
            primary: 主提案引擎
            fallback: 降级引擎，None 表示无降级
        """
        self._primary = primary
        self._fallback = fallback

    async def process_message(
        self,
        user_id: str | None,
        text: str,
        history: list[ChatMessage],
    ) -> ChatProposal:
        """带降级的提案生成

        Returns:
            primary 的提案；primary 失败时为 fallback 的提案；全部失败时为致歉回复
        """
        try:
            return await self._primary.process_message(user_id, text, history)
        except Exception as primary_error:
            log.warning(
                "primary_failed_attempting_fallback",
                error=str(primary_error),
                error_type=type(primary_error).__name__,
            )
            if self._fallback is None:
                return ChatProposal(reply=APOLOGY_REPLY)

        try:
            proposal = await self._fallback.process_message(user_id, text, history)
        except Exception as fallback_error:
            log.error(
                "both_primary_and_fallback_failed",
                fallback_error=str(fallback_error),
            )
            return ChatProposal(reply=APOLOGY_REPLY)

        log.info("fallback_activated", task_count=len(proposal.proposed_tasks))
        return proposal
