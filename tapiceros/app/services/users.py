from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from psycopg2.extensions import connection as PgConnection

from ...db import dict_cursor, managed_connection, require_row
from ..errors import ConflictError, ValidationError
from ..schemas.users import (
    AccountStats,
    ActivityItem,
    ProfileUpdate,
    PublicUser,
    RegisterRequest,
    User,
    UserActivity,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
LOCATION_RESULT_LIMIT = 50

_ACTIVE_ORDER_STATUSES = ("PENDING", "IN_PROGRESS")


def _row_to_user(row: Mapping[str, Any]) -> User:
    counts = None
    if "post_count" in row:
        counts = {
            "posts": int(row["post_count"]),
            "orders": int(row["order_count"]),
            "payments": int(row["payment_count"]),
            "memberships": int(row["membership_count"]),
        }
    return User(
        id=str(row["id"]),
        auth0_id=row["auth0_id"],
        email=row["email"],
        name=row["name"],
        picture=row.get("picture"),
        phone=row.get("phone"),
        address=row.get("address"),
        city=row.get("city"),
        state=row.get("state"),
        country=row.get("country"),
        postal_code=row.get("postal_code"),
        bio=row.get("bio"),
        role=row.get("role") or "USER",
        is_verified=bool(row.get("is_verified")),
        is_active=bool(row.get("is_active", True)),
        fcm_token=row.get("fcm_token"),
        stripe_customer_id=row.get("stripe_customer_id"),
        counts=counts,
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_public_user(row: Mapping[str, Any]) -> PublicUser:
    counts = None
    if "post_count" in row:
        counts = {"posts": int(row["post_count"]), "orders": int(row["order_count"])}
    return PublicUser(
        id=str(row["id"]),
        name=row["name"],
        picture=row.get("picture"),
        city=row.get("city"),
        state=row.get("state"),
        country=row.get("country"),
        bio=row.get("bio"),
        is_verified=bool(row.get("is_verified")),
        counts=counts,
        created_at=row.get("created_at"),
    )


_USER_COUNTS_SQL = """
    (SELECT COUNT(*) FROM posts p WHERE p.user_id = u.id) AS post_count,
    (SELECT COUNT(*) FROM orders o WHERE o.user_id = u.id) AS order_count,
    (SELECT COUNT(*) FROM payments pay WHERE pay.user_id = u.id) AS payment_count,
    (SELECT COUNT(*) FROM memberships m WHERE m.user_id = u.id) AS membership_count
"""


def get_user_by_auth0_id(auth0_id: str, *, conn: Optional[PgConnection] = None) -> Optional[User]:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute("SELECT * FROM users WHERE auth0_id = %s LIMIT 1", (auth0_id,))
            row = cur.fetchone()
    return _row_to_user(row) if row else None


def get_user(user_id: str, *, conn: Optional[PgConnection] = None) -> User:
    """Return the full profile of an active user, including relation counts."""

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                SELECT u.*, {_USER_COUNTS_SQL}
                FROM users u
                WHERE u.id = %s AND u.is_active
                LIMIT 1
                """,
                (user_id,),
            )
            row = require_row(cur.fetchone(), "User not found")
    return _row_to_user(row)


def register_user(
    auth0_id: str,
    payload: RegisterRequest,
    *,
    email_verified: bool = False,
    conn: Optional[PgConnection] = None,
) -> User:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "SELECT id FROM users WHERE auth0_id = %s OR LOWER(email) = LOWER(%s) LIMIT 1",
                (auth0_id, payload.email),
            )
            if cur.fetchone():
                raise ConflictError("User already exists")

            cur.execute(
                """
                INSERT INTO users (auth0_id, email, name, picture, is_verified)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (auth0_id, payload.email, payload.name, payload.picture, email_verified),
            )
            row = cur.fetchone()

    user = _row_to_user(row)
    logger.info("User registered", extra={"user_id": user.id})
    return user


def update_profile(
    user_id: str,
    payload: ProfileUpdate,
    *,
    conn: Optional[PgConnection] = None,
) -> User:
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise ValidationError("No changes provided")

    set_clauses = [f"{field} = %s" for field in updates]
    values: List[object] = list(updates.values())

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                UPDATE users
                SET {', '.join(set_clauses)}, updated_at = NOW()
                WHERE id = %s AND is_active
                RETURNING *
                """,
                [*values, user_id],
            )
            row = require_row(cur.fetchone(), "User not found")
    return _row_to_user(row)


def update_picture(user_id: str, picture: str, *, conn: Optional[PgConnection] = None) -> User:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                UPDATE users
                SET picture = %s, updated_at = NOW()
                WHERE id = %s AND is_active
                RETURNING *
                """,
                (picture, user_id),
            )
            row = require_row(cur.fetchone(), "User not found")
    return _row_to_user(row)


def set_fcm_token(user_id: str, fcm_token: str, *, conn: Optional[PgConnection] = None) -> None:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "UPDATE users SET fcm_token = %s, updated_at = NOW() WHERE id = %s",
                (fcm_token, user_id),
            )
            if cur.rowcount == 0:
                require_row(None, "User not found")


def get_fcm_token(user_id: str, *, conn: Optional[PgConnection] = None) -> Optional[str]:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "SELECT fcm_token FROM users WHERE id = %s AND is_active LIMIT 1",
                (user_id,),
            )
            row = cur.fetchone()
    return row["fcm_token"] if row else None


def list_push_targets(
    user_ids: Sequence[str], *, conn: Optional[PgConnection] = None
) -> List[Tuple[str, str]]:
    """Return ``(user_id, fcm_token)`` for the active users that registered a device."""

    if not user_ids:
        return []
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                SELECT id, fcm_token
                FROM users
                WHERE id = ANY(%s::uuid[])
                  AND fcm_token IS NOT NULL
                  AND is_active
                """,
                (list(user_ids),),
            )
            rows = cur.fetchall()
    return [(str(row["id"]), row["fcm_token"]) for row in rows]


def deactivate_account(user_id: str, *, conn: Optional[PgConnection] = None) -> None:
    """Soft-delete an account; refused while the user has orders in flight."""

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                SELECT COUNT(*) AS active_orders
                FROM orders
                WHERE user_id = %s AND status IN %s
                """,
                (user_id, _ACTIVE_ORDER_STATUSES),
            )
            if int(cur.fetchone()["active_orders"]) > 0:
                raise ConflictError("Cannot delete account with active orders")

            cur.execute(
                """
                UPDATE users
                SET is_active = FALSE, fcm_token = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (user_id,),
            )
    logger.info("Account deactivated", extra={"user_id": user_id})


def _aggregate_stats(cur, user_id: str) -> Dict[str, Any]:
    cur.execute(
        """
        SELECT
            (SELECT COUNT(*) FROM posts WHERE user_id = %(uid)s) AS total_posts,
            (SELECT COUNT(*) FROM orders WHERE user_id = %(uid)s) AS total_orders,
            (SELECT COUNT(*) FROM payments WHERE user_id = %(uid)s) AS total_payments,
            (SELECT COUNT(*) FROM memberships WHERE user_id = %(uid)s) AS total_memberships,
            (SELECT COUNT(*) FROM comments WHERE user_id = %(uid)s) AS total_comments,
            (SELECT COALESCE(SUM(amount), 0) FROM payments
                WHERE user_id = %(uid)s AND status = 'COMPLETED') AS total_revenue,
            (SELECT COUNT(*) FROM orders
                WHERE user_id = %(uid)s AND status = 'COMPLETED') AS completed_orders,
            (SELECT COALESCE(SUM(budget), 0) FROM orders
                WHERE user_id = %(uid)s AND budget IS NOT NULL) AS total_budget
        """,
        {"uid": user_id},
    )
    return dict(cur.fetchone())


def _stats_from_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    total_revenue = Decimal(row["total_revenue"])
    completed = int(row["completed_orders"])
    average = (total_revenue / completed).quantize(Decimal("0.01")) if completed else Decimal("0")
    return {
        "total_posts": int(row["total_posts"]),
        "total_orders": int(row["total_orders"]),
        "total_payments": int(row["total_payments"]),
        "total_revenue": total_revenue,
        "completed_orders": completed,
        "total_budget": Decimal(row["total_budget"]),
        "average_order_value": average,
    }


def account_stats(user_id: str, *, conn: Optional[PgConnection] = None) -> AccountStats:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            row = _aggregate_stats(cur, user_id)
    return AccountStats(
        **_stats_from_row(row),
        total_memberships=int(row["total_memberships"]),
    )


def _require_user_summary(cur, user_id: str) -> Dict[str, str]:
    cur.execute(
        "SELECT id, name FROM users WHERE id = %s AND is_active LIMIT 1",
        (user_id,),
    )
    row = require_row(cur.fetchone(), "User not found")
    return {"id": str(row["id"]), "name": row["name"]}


def user_stats(user_id: str, *, conn: Optional[PgConnection] = None) -> AccountStats:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            summary = _require_user_summary(cur, user_id)
            row = _aggregate_stats(cur, user_id)
    return AccountStats(
        **_stats_from_row(row),
        total_comments=int(row["total_comments"]),
        user=summary,
    )


def list_users(
    *,
    page: int,
    limit: int,
    search: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    country: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> Tuple[List[PublicUser], int]:
    where = ["u.is_active"]
    params: List[object] = []
    if search:
        where.append(
            "(u.name ILIKE %s OR u.email ILIKE %s OR u.city ILIKE %s"
            " OR u.state ILIKE %s OR u.country ILIKE %s)"
        )
        params.extend([f"%{search}%"] * 5)
    for column, value in (("city", city), ("state", state), ("country", country)):
        if value:
            where.append(f"u.{column} ILIKE %s")
            params.append(f"%{value}%")
    where_sql = " AND ".join(where)

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                SELECT
                    u.*,
                    (SELECT COUNT(*) FROM posts p WHERE p.user_id = u.id) AS post_count,
                    (SELECT COUNT(*) FROM orders o WHERE o.user_id = u.id) AS order_count
                FROM users u
                WHERE {where_sql}
                ORDER BY u.created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*params, limit, (page - 1) * limit],
            )
            rows = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS total FROM users u WHERE {where_sql}", params)
            total = int(cur.fetchone()["total"])
    return [_row_to_public_user(row) for row in rows], total


def get_public_profile(user_id: str, *, conn: Optional[PgConnection] = None) -> PublicUser:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                SELECT
                    u.*,
                    (SELECT COUNT(*) FROM posts p
                        WHERE p.user_id = u.id AND p.is_published) AS post_count,
                    (SELECT COUNT(*) FROM orders o WHERE o.user_id = u.id) AS order_count
                FROM users u
                WHERE u.id = %s AND u.is_active
                LIMIT 1
                """,
                (user_id,),
            )
            row = require_row(cur.fetchone(), "User not found")
    return _row_to_public_user(row)


def search_by_location(
    *,
    city: Optional[str] = None,
    state: Optional[str] = None,
    country: Optional[str] = None,
    conn: Optional[PgConnection] = None,
) -> List[PublicUser]:
    where = ["is_active"]
    params: List[object] = []
    for column, value in (("city", city), ("state", state), ("country", country)):
        if value:
            where.append(f"{column} ILIKE %s")
            params.append(f"%{value}%")

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                SELECT *
                FROM users
                WHERE {' AND '.join(where)}
                ORDER BY name ASC
                LIMIT %s
                """,
                [*params, LOCATION_RESULT_LIMIT],
            )
            rows = cur.fetchall()
    return [_row_to_public_user(row) for row in rows]


def _excerpt(content: str, width: int = 100) -> str:
    return content if len(content) <= width else f"{content[:width]}..."


def user_activity(user_id: str, *, limit: int, conn: Optional[PgConnection] = None) -> UserActivity:
    """Merge the user's latest published posts and orders into one timeline."""

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            summary = _require_user_summary(cur, user_id)
            cur.execute(
                """
                SELECT
                    p.id, p.content, p.images, p.likes, p.views, p.created_at,
                    (SELECT COUNT(*) FROM comments c WHERE c.post_id = p.id) AS comment_count
                FROM posts p
                WHERE p.user_id = %s AND p.is_published
                ORDER BY p.created_at DESC
                LIMIT %s
                """,
                (user_id, limit),
            )
            posts = cur.fetchall()
            cur.execute(
                """
                SELECT id, title, status, priority, created_at, completed_at
                FROM orders
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, limit),
            )
            orders = cur.fetchall()

    activities = [
        ActivityItem(
            type="post",
            id=str(row["id"]),
            title=_excerpt(row["content"]),
            data={
                "id": str(row["id"]),
                "content": row["content"],
                "images": list(row.get("images") or []),
                "likes": row["likes"],
                "views": row["views"],
                "commentCount": int(row["comment_count"]),
            },
            created_at=row["created_at"],
        )
        for row in posts
    ] + [
        ActivityItem(
            type="order",
            id=str(row["id"]),
            title=row["title"],
            data={
                "id": str(row["id"]),
                "title": row["title"],
                "status": row["status"],
                "priority": row["priority"],
                "completedAt": row.get("completed_at"),
            },
            created_at=row["created_at"],
        )
        for row in orders
    ]
    activities.sort(key=lambda item: item.created_at, reverse=True)
    return UserActivity(user=summary, activities=activities[:limit])
