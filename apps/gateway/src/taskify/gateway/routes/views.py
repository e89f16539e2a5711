"""派生视图路由

GET /api/views?today=YYYY-MM-DD: today/upcoming/overdue/completed + 未读通知数。
today 缺省时按 TASKIFY_TIMEZONE 计算当天日期。
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from taskify.core.config import get_timezone
from taskify.core.views import TaskViews

from ..deps import get_reconciler

router = APIRouter()


@router.get("/api/views", response_model=TaskViews)
async def get_views(
    today: date | None = Query(default=None, description="视图计算使用的当天日期"),
    reconciler=Depends(get_reconciler),
):
    effective_today = today or datetime.now(get_timezone()).date()
    return reconciler.views(effective_today)
