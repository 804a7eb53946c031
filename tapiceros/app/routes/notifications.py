"""API routes for notification interactions."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...push.templates import NotificationType
from ..identity import get_current_user
from ..schemas.common import ApiResponse, Pagination, ok
from ..schemas.notifications import NotificationSendRequest, NotificationUnreadCount
from ..schemas.users import FcmTokenUpdate, User

_DEFAULT_PAGE_SIZE = 20
_MAX_PAGE_SIZE = 100

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=ApiResponse)
def list_notifications(
    *,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
    type: Optional[NotificationType] = Query(default=None),
    is_read: Optional[bool] = Query(default=None, alias="isRead"),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    """Return paginated notifications for the authenticated user."""
    from ..services import notifications as notifications_service

    notifications, total = notifications_service.list_notifications(
        current_user.id, page=page, limit=limit, type=type, is_read=is_read
    )
    return ok(notifications, pagination=Pagination.build(page=page, limit=limit, total=total))


@router.get("/unread-count", response_model=ApiResponse)
def get_unread_count(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import notifications as notifications_service

    count = notifications_service.unread_count(current_user.id)
    return ok(NotificationUnreadCount(unread_count=count))


@router.get("/stats", response_model=ApiResponse)
def get_stats(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import notifications as notifications_service

    return ok(notifications_service.notification_stats(current_user.id))


@router.put("/mark-all-read", response_model=ApiResponse)
def mark_all_read(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import notifications as notifications_service

    updated = notifications_service.mark_all_read(current_user.id)
    return ok({"updated": updated}, message="All notifications marked as read")


@router.put("/fcm-token", response_model=ApiResponse)
def update_fcm_token(
    payload: FcmTokenUpdate,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import users as users_service

    users_service.set_fcm_token(current_user.id, payload.fcm_token)
    return ok(message="FCM token updated successfully")


@router.put("/{notification_id}/read", response_model=ApiResponse)
def mark_read(notification_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import notifications as notifications_service

    notification = notifications_service.mark_read(notification_id, current_user.id)
    return ok(notification, message="Notification marked as read")


@router.delete("/{notification_id}", response_model=ApiResponse)
def delete_notification(
    notification_id: str,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import notifications as notifications_service

    notifications_service.delete_notification(notification_id, current_user.id)
    return ok(message="Notification deleted successfully")


@router.delete("", response_model=ApiResponse)
def delete_all_notifications(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import notifications as notifications_service

    deleted = notifications_service.delete_all(current_user.id)
    return ok({"deleted": deleted}, message="All notifications deleted successfully")


@router.post("/test", response_model=ApiResponse)
def send_test_notification(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import notifications as notifications_service

    notification = notifications_service.send_test(current_user)
    return ok(notification, message="Test notification sent successfully")


@router.post("/send", response_model=ApiResponse)
def send_to_users(
    payload: NotificationSendRequest,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    """Broadcast a notification to several users (administrators only)."""
    from ..services import notifications as notifications_service

    result = notifications_service.send_to_users(current_user, payload)
    return ok(result, message="Notifications sent successfully")
