"""AI 提案引擎 -- 文本进，任务草稿出

- LiteLLMProposalEngine: 系统提示 + 最近 5 条历史，经 LiteLLM Proxy 生成 JSON 提案
- KeywordProposalEngine: 关键词规则的本地兜底，抽取到任务时总是要求确认
"""

import json
import re
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from taskify.core.config import CHAT_HISTORY_WINDOW
from taskify.core.models import ChatMessage, ChatProposal, Priority, TaskDraft

from .llm_client import LiteLLMClient

log = structlog.get_logger()

SYSTEM_PROMPT = """You are a helpful task management assistant. Your job is to:
1. Understand user messages about tasks
2. Extract structured task information (title, due date, priority, etc.)
3. Generate helpful, concise responses
4. Return structured JSON with the following format:
{
  "reply": "Your helpful response to the user",
  "extractedTasks": [{
    "title": "Task title",
    "description": "Optional description",
    "dueDate": "YYYY-MM-DD format",
    "dueTime": "HH:MM format",
    "priority": "high|medium|low|none",
    "category": "work|personal|health|shopping|other",
    "isRecurring": false,
    "recurringPattern": "daily|weekly|monthly",
    "collaborators": ["email addresses or names"]
  }],
  "requiresConfirmation": true/false
}

Extract task information from natural language. Be smart about dates (today, tomorrow, next week, etc.).
Today is {today}."""

DEFAULT_REPLY = "I understand. How can I help you with your tasks?"

HELP_REPLY = (
    "I'm here to help! You can ask me to create tasks, check what's due today, "
    "or help you stay organized. How can I assist you?"
)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def draft_from_extracted(raw: Any) -> TaskDraft | None:
    """extractedTasks 条目（camelCase）-> TaskDraft；不合法返回 None"""
    if not isinstance(raw, dict):
        return None
    try:
        return TaskDraft(
            title=raw.get("title") or "",
            description=raw.get("description") or None,
            due_date=raw.get("dueDate") or None,
            due_time=raw.get("dueTime") or None,
            priority=raw.get("priority") or Priority.MEDIUM,
            category=raw.get("category") or "personal",
            is_recurring=raw.get("isRecurring"),
            recurring_pattern=raw.get("recurringPattern") or None,
            assigned_to=raw.get("collaborators") or None,
        )
    except ValidationError as e:
        log.debug("extracted_task_invalid", error_count=e.error_count())
        return None


def parse_proposal(content: str) -> ChatProposal:
    """从模型输出中提取第一个 JSON 对象；无法解析时整段作为回复"""
    match = _JSON_OBJECT.search(content)
    if match is None:
        return ChatProposal(reply=content or DEFAULT_REPLY)
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return ChatProposal(reply=content or DEFAULT_REPLY)
    if not isinstance(data, dict):
        return ChatProposal(reply=content or DEFAULT_REPLY)

    drafts = []
    for raw in data.get("extractedTasks") or []:
        draft = draft_from_extracted(raw)
        if draft is not None:
            drafts.append(draft)

    return ChatProposal(
        reply=str(data.get("reply") or DEFAULT_REPLY),
        proposed_tasks=drafts,
        requires_confirmation=bool(data.get("requiresConfirmation", False)),
    )


def _history_messages(history: list[ChatMessage]) -> list[dict[str, str]]:
    return [
        {"role": str(m.role), "content": m.content}
        for m in history[-CHAT_HISTORY_WINDOW:]
    ]


class LiteLLMProposalEngine:
    """通过 LiteLLM Proxy 生成提案"""

    def __init__(
        self,
        client: LiteLLMClient,
        model_alias: str = "main",
        today: Callable[[], date] | None = None,
    ) -> None:
        self._client = client
        self._model_alias = model_alias
        self._today = today or (lambda: datetime.now(UTC).date())

    async def process_message(
        self,
        user_id: str | None,
        text: str,
        history: list[ChatMessage],
    ) -> ChatProposal:
        """
        Raises:
            RemoteUnreachableError / ProposalEngineError: 交给 FallbackManager 处理
        """
        prompt = SYSTEM_PROMPT.replace("{today}", self._today().isoformat())
        messages = [
            {"role": "system", "content": prompt},
            *_history_messages(history),
            {"role": "user", "content": text},
        ]
        result = await self._client.complete(
            messages=messages,
            model_alias=self._model_alias,
            temperature=0.2,
            json_reply=True,
        )
        proposal = parse_proposal(result.content)
        log.info(
            "proposal_generated",
            user_id=user_id,
            model_name=result.model_name,
            truncated=result.truncated,
            task_count=len(proposal.proposed_tasks),
            requires_confirmation=proposal.requires_confirmation,
        )
        return proposal


_TASK_KEYWORDS = ("create", "add", "make", "new task", "task")

_TITLE_PATTERN = re.compile(
    r"(?:task|create|add|make).*?['\"]([^'\"]+)['\"]"
    r"|(?:task|create|add|make)\s+(.+?)(?:\s+due|\s+priority|$)",
    re.IGNORECASE,
)
_DATE_PATTERN = re.compile(
    r"(?:due|by|on)\s+(\d{4}-\d{2}-\d{2}|\w+\s+\d{1,2})",
    re.IGNORECASE,
)
_PRIORITY_PATTERN = re.compile(r"(high|medium|low)\s+priority", re.IGNORECASE)


def parse_loose_date(value: str, today: date) -> date | None:
    """解析 YYYY-MM-DD 或 "March 5" / "Mar 5"（按今年）"""
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    for fmt in ("%B %d %Y", "%b %d %Y"):
        try:
            return datetime.strptime(f"{value} {today.year}", fmt).date()
        except ValueError:
            continue
    return None


class KeywordProposalEngine:
    """关键词规则提案引擎（无外部依赖的本地兜底）"""

    def __init__(self, today: Callable[[], date] | None = None) -> None:
        self._today = today or (lambda: datetime.now(UTC).date())

    async def process_message(
        self,
        user_id: str | None,
        text: str,
        history: list[ChatMessage],
    ) -> ChatProposal:
        lowered = text.lower()
        if not any(keyword in lowered for keyword in _TASK_KEYWORDS):
            return ChatProposal(reply=HELP_REPLY)

        title_match = _TITLE_PATTERN.search(text)
        title = ""
        if title_match:
            title = (title_match.group(1) or title_match.group(2) or "").strip()
        if not title:
            return ChatProposal(reply=HELP_REPLY)

        date_match = _DATE_PATTERN.search(text)
        due_date = parse_loose_date(date_match.group(1), self._today()) if date_match else None

        priority_match = _PRIORITY_PATTERN.search(text)
        priority = Priority(priority_match.group(1).lower()) if priority_match else Priority.MEDIUM

        draft = TaskDraft(title=title, due_date=due_date, priority=priority)
        return ChatProposal(
            reply=(
                f"I'll help you create that task. "
                f'Would you like me to add "{title}" to your task list?'
            ),
            proposed_tasks=[draft],
            requires_confirmation=True,
        )
