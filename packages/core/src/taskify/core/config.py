"""配置常量模块 -- 可通过环境变量覆盖

包含本地兜底数据库路径、快照存储键、时区、SSE 心跳、变更流队列大小等可配置常量。
"""

import os
from pathlib import Path
from zoneinfo import ZoneInfo


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKIFY_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取本地兜底 SQLite 数据库路径"""
    return os.environ.get(
        "TASKIFY_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskify.db"),
    )


def get_storage_key() -> str:
    """本地快照的固定存储键"""
    return os.environ.get("TASKIFY_STORAGE_KEY", "taskify_tasks")


def get_timezone() -> ZoneInfo:
    """本地时区，用于计算"今天"和提醒时刻"""
    return ZoneInfo(os.environ.get("TASKIFY_TIMEZONE", "UTC"))


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("TASKIFY_SSE_HEARTBEAT_INTERVAL", "15")
)

# 单个变更流订阅者的队列上限，超出视为死订阅
FEED_QUEUE_SIZE: int = int(os.environ.get("TASKIFY_FEED_QUEUE_SIZE", "256"))

# 发送给 AI 引擎的历史消息条数
CHAT_HISTORY_WINDOW: int = 5

# 没有截止时刻时，默认提醒在当天 09:00
DEFAULT_REMINDER_HOUR: int = 9
