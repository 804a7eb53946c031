from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from psycopg2.extras import Json
from psycopg2.extensions import connection as PgConnection

from ... import app_context
from ...db import dict_cursor, managed_connection, require_row
from ...push import templates
from ...push.providers import PushNotification, PushProvider
from ...push.templates import NotificationType
from ..billing.reconciler import NotificationIntent
from ..errors import AuthorizationError, UpstreamServiceError, ValidationError
from ..schemas.notifications import (
    Notification,
    NotificationCreate,
    NotificationSendRequest,
    NotificationSendResult,
    NotificationStats,
    TypeCount,
)
from ..schemas.users import User

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

TEST_NOTIFICATION_TITLE = "Test Notification"


def _row_to_notification(row: Mapping[str, Any]) -> Notification:
    return Notification(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=row["title"],
        body=row["body"],
        type=row["type"],
        data=row.get("data") or {},
        is_read=bool(row.get("is_read")),
        sent_at=row.get("sent_at"),
        created_at=row["created_at"],
    )


def create_notification(
    event: NotificationCreate | Mapping[str, Any],
    *,
    conn: Optional[PgConnection] = None,
) -> Notification:
    if not isinstance(event, NotificationCreate):
        event = NotificationCreate.model_validate(event)

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                INSERT INTO notifications (user_id, title, body, type, data, sent_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    event.user_id,
                    event.title,
                    event.body,
                    event.type.value,
                    Json(event.data),
                    event.sent_at,
                ),
            )
            row = cur.fetchone()
    if row is None:
        raise RuntimeError("Failed to insert notification")
    return _row_to_notification(row)


def list_notifications(
    user_id: str,
    *,
    page: int,
    limit: int,
    type: Optional[NotificationType] = None,
    is_read: Optional[bool] = None,
    conn: Optional[PgConnection] = None,
) -> Tuple[List[Notification], int]:
    where = ["user_id = %s"]
    params: List[object] = [user_id]
    if type is not None:
        where.append("type = %s")
        params.append(type.value)
    if is_read is not None:
        where.append("is_read = %s")
        params.append(is_read)
    where_sql = " AND ".join(where)

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                SELECT *
                FROM notifications
                WHERE {where_sql}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*params, limit, (page - 1) * limit],
            )
            rows = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS total FROM notifications WHERE {where_sql}", params)
            total = int(cur.fetchone()["total"])
    return [_row_to_notification(row) for row in rows], total


def unread_count(user_id: str, *, conn: Optional[PgConnection] = None) -> int:
    with managed_connection(conn) as (connection, _):
        with connection.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM notifications WHERE user_id = %s AND is_read = FALSE",
                (user_id,),
            )
            row = cur.fetchone()
    return int(row[0]) if row else 0


def mark_read(notification_id: str, user_id: str, *, conn: Optional[PgConnection] = None) -> Notification:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                UPDATE notifications
                SET is_read = TRUE
                WHERE id = %s AND user_id = %s
                RETURNING *
                """,
                (notification_id, user_id),
            )
            row = require_row(cur.fetchone(), "Notification not found")
    return _row_to_notification(row)


def mark_all_read(user_id: str, *, conn: Optional[PgConnection] = None) -> int:
    with managed_connection(conn) as (connection, _):
        with connection.cursor() as cur:
            cur.execute(
                "UPDATE notifications SET is_read = TRUE WHERE user_id = %s AND is_read = FALSE",
                (user_id,),
            )
            return cur.rowcount


def delete_notification(notification_id: str, user_id: str, *, conn: Optional[PgConnection] = None) -> None:
    with managed_connection(conn) as (connection, _):
        with connection.cursor() as cur:
            cur.execute(
                "DELETE FROM notifications WHERE id = %s AND user_id = %s",
                (notification_id, user_id),
            )
            if cur.rowcount == 0:
                require_row(None, "Notification not found")


def delete_all(user_id: str, *, conn: Optional[PgConnection] = None) -> int:
    with managed_connection(conn) as (connection, _):
        with connection.cursor() as cur:
            cur.execute("DELETE FROM notifications WHERE user_id = %s", (user_id,))
            return cur.rowcount


def notification_stats(user_id: str, *, conn: Optional[PgConnection] = None) -> NotificationStats:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(*) FILTER (WHERE NOT is_read) AS unread,
                    COUNT(*) FILTER (WHERE created_at >= date_trunc('day', NOW())) AS today
                FROM notifications
                WHERE user_id = %s
                """,
                (user_id,),
            )
            totals = cur.fetchone()
            cur.execute(
                """
                SELECT type, COUNT(*) AS count
                FROM notifications
                WHERE user_id = %s
                GROUP BY type
                ORDER BY type
                """,
                (user_id,),
            )
            by_type = cur.fetchall()
    return NotificationStats(
        total=int(totals["total"]),
        unread=int(totals["unread"]),
        today=int(totals["today"]),
        by_type=[TypeCount(type=row["type"], count=int(row["count"])) for row in by_type],
    )


def _retry_settings() -> Tuple[int, float]:
    config = app_context.get_push_config()
    return max(1, config.max_attempts), max(0.0, config.backoff_seconds)


def deliver_push(
    token: str,
    notification: PushNotification,
    data: Optional[Mapping[str, Any]] = None,
    *,
    provider: Optional[PushProvider] = None,
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
) -> Optional[str]:
    """Push to one device with bounded retry and linear backoff.

    Returns the provider message id, or ``None`` when the provider is not
    configured or every attempt failed. Never raises for transport errors.
    """

    if provider is None:
        provider = app_context.get_push_provider()
    if max_attempts is None or backoff_seconds is None:
        default_attempts, default_backoff = _retry_settings()
        max_attempts = default_attempts if max_attempts is None else max_attempts
        backoff_seconds = default_backoff if backoff_seconds is None else backoff_seconds
    attempts = max(1, max_attempts)
    backoff = max(0.0, backoff_seconds)

    for attempt in range(1, attempts + 1):
        try:
            message_id = provider.send_to_device(token, notification, data)
        except Exception:
            logger.exception(
                "Failed to send push notification",
                extra={
                    "push_attempt": attempt,
                    "push_attempts": attempts,
                    "push_provider": provider.describe(),
                },
            )
            if attempt >= attempts:
                break
            if backoff > 0:
                time.sleep(backoff * attempt)
            continue

        if message_id is not None:
            logger.info(
                "Push notification dispatched",
                extra={"push_message_id": message_id, "push_provider": provider.describe()},
            )
        return message_id
    return None


def dispatch_intent(intent: NotificationIntent, *, conn: Optional[PgConnection] = None) -> None:
    """Persist the notification and push it to the recipient's device.

    Runs after the originating transaction has committed; failures are logged
    and never propagated.
    """

    from . import users as users_service

    try:
        token = users_service.get_fcm_token(intent.user_id, conn=conn)
        message_id = None
        if token:
            message_id = deliver_push(token, intent.notification, intent.data)
        create_notification(
            NotificationCreate(
                user_id=intent.user_id,
                title=intent.notification.title,
                body=intent.notification.body,
                type=intent.type,
                data=dict(intent.data),
                sent_at=datetime.now(timezone.utc) if message_id else None,
            ),
            conn=conn,
        )
    except Exception:
        logger.exception(
            "Failed to dispatch notification",
            extra={"user_id": intent.user_id, "notification_type": intent.type.value},
        )


def dispatch_intents(intents: Iterable[NotificationIntent]) -> None:
    for intent in intents:
        dispatch_intent(intent)


def send_test(user: User, *, conn: Optional[PgConnection] = None) -> Notification:
    """Push a test message to the caller's own device and record it."""

    from . import users as users_service

    token = users_service.get_fcm_token(user.id, conn=conn)
    if not token:
        raise ValidationError("No FCM token registered for this user")

    notification = templates.system(
        TEST_NOTIFICATION_TITLE,
        f"Hello {user.name}! This is a test notification from Tapiceros del Mundo.",
    )
    data = {"type": NotificationType.SYSTEM.value, "test": "true"}
    provider = app_context.get_push_provider()
    try:
        message_id = provider.send_to_device(token, notification, data)
    except Exception as exc:
        logger.exception("Test notification failed", extra={"user_id": user.id})
        raise UpstreamServiceError("Failed to send test notification", service="push") from exc

    return create_notification(
        NotificationCreate(
            user_id=user.id,
            title=notification.title,
            body=notification.body,
            type=NotificationType.SYSTEM,
            data=data,
            sent_at=datetime.now(timezone.utc) if message_id else None,
        ),
        conn=conn,
    )


def send_to_users(
    sender: User,
    request: NotificationSendRequest,
    *,
    conn: Optional[PgConnection] = None,
) -> NotificationSendResult:
    """Broadcast a notification to the listed users that registered a device."""

    from . import users as users_service

    if not sender.is_admin:
        raise AuthorizationError("Only admins can send notifications to multiple users")

    targets = users_service.list_push_targets(request.user_ids, conn=conn)
    if not targets:
        raise ValidationError("No users found with FCM tokens")

    notification = PushNotification(title=request.title, body=request.body)
    data = {**(request.data or {}), "type": request.type.value}
    provider = app_context.get_push_provider()
    try:
        counts = provider.send_to_many([token for _, token in targets], notification, data)
    except Exception as exc:
        logger.exception("Multicast notification failed", extra={"target_count": len(targets)})
        raise UpstreamServiceError("Failed to send notifications", service="push") from exc

    sent_at = datetime.now(timezone.utc) if counts is not None else None
    with managed_connection(conn) as (connection, _):
        for user_id, _token in targets:
            create_notification(
                NotificationCreate(
                    user_id=user_id,
                    title=request.title,
                    body=request.body,
                    type=request.type,
                    data=data,
                    sent_at=sent_at,
                ),
                conn=connection,
            )

    logger.info(
        "Notifications sent to users",
        extra={
            "sender_id": sender.id,
            "target_count": len(targets),
            "success_count": counts.success_count if counts else 0,
        },
    )
    return NotificationSendResult(
        success_count=counts.success_count if counts else 0,
        failure_count=counts.failure_count if counts else len(targets),
        total_users=len(targets),
    )
