"""Taskify Remote -- 远端存储、变更流与 AI 提案引擎适配层

packages/remote 的公开接口导出。
"""

from .change_feed import InMemoryChangeFeed, QueueSubscription, SSEChangeFeed
from .chat_store import PostgrestChatStore
from .config import RemoteConfig, load_remote_config
from .exceptions import (
    ProposalEngineError,
    RemoteError,
    RemoteStoreError,
    RemoteUnreachableError,
)
from .fallback import FallbackManager
from .llm_client import LiteLLMClient
from .models import CompletionResult
from .postgrest import PostgrestClient
from .proposal import KeywordProposalEngine, LiteLLMProposalEngine
from .reminders import PostgrestReminderScheduler, default_reminder_times
from .task_store import PostgrestTaskStore

__all__ = [
    "PostgrestClient",
    "PostgrestTaskStore",
    "PostgrestChatStore",
    "PostgrestReminderScheduler",
    "default_reminder_times",
    "InMemoryChangeFeed",
    "SSEChangeFeed",
    "QueueSubscription",
    "LiteLLMClient",
    "CompletionResult",
    "LiteLLMProposalEngine",
    "KeywordProposalEngine",
    "FallbackManager",
    "RemoteConfig",
    "load_remote_config",
    "RemoteError",
    "RemoteUnreachableError",
    "RemoteStoreError",
    "ProposalEngineError",
]
