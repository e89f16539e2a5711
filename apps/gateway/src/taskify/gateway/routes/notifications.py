"""通知路由

GET /api/notifications: 通知列表（最新在前）
POST /api/notifications: 接收一条通知（按 id 幂等）
POST /api/notifications/{notification_id}/read: 标记已读
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from taskify.core.models import Notification
from taskify.core.views import unread_notifications_count

from ..deps import get_reconciler
from .errors import error_response

router = APIRouter()


class NotificationListResponse(BaseModel):
    notifications: list[Notification]
    unread_count: int


@router.get("/api/notifications", response_model=NotificationListResponse)
async def list_notifications(reconciler=Depends(get_reconciler)):
    notifications = reconciler.notifications
    return NotificationListResponse(
        notifications=notifications,
        unread_count=unread_notifications_count(notifications),
    )


@router.post("/api/notifications")
async def receive_notification(body: Notification, reconciler=Depends(get_reconciler)):
    created = reconciler.receive_notification(body)
    return {"notification_id": body.id, "created": created}


@router.post("/api/notifications/{notification_id}/read")
async def mark_read(notification_id: str, reconciler=Depends(get_reconciler)):
    if not reconciler.mark_notification_read(notification_id):
        return error_response(
            404,
            "NOTIFICATION_NOT_FOUND",
            f"Notification with id {notification_id} does not exist",
        )
    return {"notification_id": notification_id, "is_read": True}
