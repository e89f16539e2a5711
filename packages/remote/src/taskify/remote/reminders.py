"""PostgrestReminderScheduler -- 默认提醒

任务带截止日期时，在以下时刻各写入一条提醒：
- 截止前 1 天
- 截止前 1 小时（仅当有截止时刻）
- 截止时刻（没有截止时刻时按当天 09:00）
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import structlog

from taskify.core.config import DEFAULT_REMINDER_HOUR

from .exceptions import RemoteError
from .postgrest import PostgrestClient

log = structlog.get_logger()

REMINDERS_TABLE = "reminders"
REMINDER_TYPE_DUE_DATE = "due_date"


def default_reminder_times(
    due_date: date,
    due_time: time | None,
    tz: ZoneInfo,
) -> list[datetime]:
    """计算默认提醒时刻（带时区，升序）"""
    at = due_time or time(hour=DEFAULT_REMINDER_HOUR)
    due = datetime.combine(due_date, at, tzinfo=tz)

    times = [due - timedelta(days=1)]
    if due_time is not None:
        times.append(due - timedelta(hours=1))
    times.append(due)
    return times


class PostgrestReminderScheduler:
    """ReminderScheduler 的远端实现"""

    def __init__(self, client: PostgrestClient, tz: ZoneInfo) -> None:
        self._client = client
        self._tz = tz

    async def create_default_reminders(
        self,
        user_id: str,
        task_id: str,
        due_date: date | None,
        due_time: time | None = None,
    ) -> bool:
        if due_date is None:
            return True

        rows = [
            {
                "user_id": user_id,
                "task_id": task_id,
                "reminder_time": moment.isoformat(),
                "reminder_type": REMINDER_TYPE_DUE_DATE,
                "is_sent": False,
            }
            for moment in default_reminder_times(due_date, due_time, self._tz)
        ]
        try:
            await self._client.insert(REMINDERS_TABLE, rows)
        except RemoteError as e:
            log.warning("reminder_create_failed", task_id=task_id, error=str(e))
            return False

        log.info("reminders_created", task_id=task_id, count=len(rows))
        return True
