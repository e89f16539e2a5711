"""AuthState / ChatProposal -- 外部协作方交给核心的只读输入"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .task import TaskDraft


class AuthState(BaseModel):
    """认证提供方暴露的当前会话

    核心只读此值来切换本地兜底/远端路径。
    """

    user_id: str | None = Field(default=None, description="当前用户 ID")
    access_token: str | None = Field(default=None, description="远端访问令牌")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @classmethod
    def anonymous(cls) -> "AuthState":
        return cls()


class ChatProposal(BaseModel):
    """AI 引擎的处理结果：回复 + 任务草稿"""

    reply: str
    proposed_tasks: list[TaskDraft] = Field(default_factory=list)
    requires_confirmation: bool = False


class PendingProposal(BaseModel):
    """等待用户确认的一组草稿"""

    proposal_id: str
    drafts: list[TaskDraft]
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
