from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from psycopg2.extensions import connection as PgConnection

from ...db import dict_cursor, managed_connection, require_row
from ...push import templates
from ...push.templates import NotificationType
from ..billing.reconciler import NotificationIntent
from ..errors import ValidationError
from ..schemas.orders import (
    Order,
    OrderCreate,
    OrderPriority,
    OrderStats,
    OrderStatus,
    OrderUpdate,
    StatusCount,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

_ORDER_COLUMNS = (
    "title",
    "description",
    "client_name",
    "client_email",
    "client_phone",
    "address",
    "city",
    "state",
    "country",
    "postal_code",
    "budget",
    "priority",
    "start_date",
    "end_date",
)


def _plain(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _row_to_order(row: Mapping[str, Any]) -> Order:
    counts = None
    if "payment_count" in row:
        counts = {"payments": int(row["payment_count"]), "invoices": int(row["invoice_count"])}
    return Order(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=row["title"],
        description=row.get("description"),
        client_name=row["client_name"],
        client_email=row.get("client_email"),
        client_phone=row.get("client_phone"),
        address=row.get("address"),
        city=row.get("city"),
        state=row.get("state"),
        country=row.get("country"),
        postal_code=row.get("postal_code"),
        budget=row.get("budget"),
        priority=row["priority"],
        status=row["status"],
        start_date=row.get("start_date"),
        end_date=row.get("end_date"),
        completed_at=row.get("completed_at"),
        payments=row.get("payments"),
        invoices=row.get("invoices"),
        counts=counts,
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def list_orders(
    user_id: str,
    *,
    page: int,
    limit: int,
    status: Optional[OrderStatus] = None,
    priority: Optional[OrderPriority] = None,
    conn: Optional[PgConnection] = None,
) -> Tuple[List[Order], int]:
    where = ["o.user_id = %s"]
    params: List[object] = [user_id]
    if status:
        where.append("o.status = %s")
        params.append(status.value)
    if priority:
        where.append("o.priority = %s")
        params.append(priority.value)
    where_sql = " AND ".join(where)

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                SELECT
                    o.*,
                    COALESCE((
                        SELECT json_agg(json_build_object(
                            'id', p.id, 'amount', p.amount,
                            'status', p.status, 'createdAt', p.created_at
                        ) ORDER BY p.created_at DESC)
                        FROM payments p WHERE p.order_id = o.id
                    ), '[]'::json) AS payments,
                    COALESCE((
                        SELECT json_agg(json_build_object(
                            'id', i.id, 'invoiceNumber', i.invoice_number,
                            'amount', i.amount, 'status', i.status
                        ) ORDER BY i.created_at DESC)
                        FROM invoices i WHERE i.order_id = o.id
                    ), '[]'::json) AS invoices,
                    (SELECT COUNT(*) FROM payments p WHERE p.order_id = o.id) AS payment_count,
                    (SELECT COUNT(*) FROM invoices i WHERE i.order_id = o.id) AS invoice_count
                FROM orders o
                WHERE {where_sql}
                ORDER BY o.created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*params, limit, (page - 1) * limit],
            )
            rows = cur.fetchall()
            cur.execute(f"SELECT COUNT(*) AS total FROM orders o WHERE {where_sql}", params)
            total = int(cur.fetchone()["total"])
    return [_row_to_order(row) for row in rows], total


def get_order(order_id: str, user_id: str, *, conn: Optional[PgConnection] = None) -> Order:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                SELECT
                    o.*,
                    COALESCE((
                        SELECT json_agg(row_to_json(p) ORDER BY p.created_at DESC)
                        FROM payments p WHERE p.order_id = o.id
                    ), '[]'::json) AS payments,
                    COALESCE((
                        SELECT json_agg(row_to_json(i) ORDER BY i.created_at DESC)
                        FROM invoices i WHERE i.order_id = o.id
                    ), '[]'::json) AS invoices
                FROM orders o
                WHERE o.id = %s AND o.user_id = %s
                LIMIT 1
                """,
                (order_id, user_id),
            )
            row = require_row(cur.fetchone(), "Order not found")
    return _row_to_order(row)


def create_order(user_id: str, payload: OrderCreate, *, conn: Optional[PgConnection] = None) -> Order:
    values = payload.model_dump()
    columns = ["user_id", *_ORDER_COLUMNS]
    params = [user_id, *(_plain(values.get(column)) for column in _ORDER_COLUMNS)]

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                f"""
                INSERT INTO orders ({', '.join(columns)})
                VALUES ({', '.join(['%s'] * len(columns))})
                RETURNING *
                """,
                params,
            )
            row = cur.fetchone()

    order = _row_to_order(row)
    logger.info("Order created", extra={"order_id": order.id, "user_id": user_id})
    return order


def update_order(
    order_id: str,
    user_id: str,
    payload: OrderUpdate,
    *,
    conn: Optional[PgConnection] = None,
) -> Tuple[Order, Optional[NotificationIntent]]:
    """Apply a partial update to an owned order.

    ``completed_at`` is stamped only the first time the order reaches
    COMPLETED. When the status changes, an ORDER_UPDATE notification intent
    is returned for delivery after the transaction commits.
    """

    updates = payload.model_dump(exclude_unset=True)
    new_status = updates.pop("status", None)
    set_clauses: List[str] = []
    values: List[object] = []
    for field, value in updates.items():
        if field not in _ORDER_COLUMNS:
            continue
        if field in ("title", "client_name", "priority") and value is None:
            continue
        set_clauses.append(f"{field} = %s")
        values.append(_plain(value))
    if new_status is not None:
        set_clauses.append("status = %s")
        values.append(new_status.value)
        set_clauses.append(
            "completed_at = CASE WHEN %s = 'COMPLETED' "
            "THEN COALESCE(completed_at, NOW()) ELSE completed_at END"
        )
        values.append(new_status.value)

    if not set_clauses:
        raise ValidationError("No changes provided")

    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "SELECT status FROM orders WHERE id = %s AND user_id = %s FOR UPDATE",
                (order_id, user_id),
            )
            previous = require_row(cur.fetchone(), "Order not found")

            cur.execute(
                f"""
                UPDATE orders
                SET {', '.join(set_clauses)}, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                [*values, order_id],
            )
            row = cur.fetchone()

    order = _row_to_order(row)
    intent = None
    if new_status is not None and new_status.value != previous["status"]:
        intent = NotificationIntent(
            user_id=user_id,
            type=NotificationType.ORDER_UPDATE,
            notification=templates.order_update(order.title, new_status.value),
            data={
                "orderId": order.id,
                "status": new_status.value,
                "type": NotificationType.ORDER_UPDATE.value,
            },
        )
        logger.info(
            "Order status changed",
            extra={"order_id": order.id, "from_status": previous["status"], "to_status": new_status.value},
        )
    return order, intent


def delete_order(order_id: str, user_id: str, *, conn: Optional[PgConnection] = None) -> None:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                "SELECT status FROM orders WHERE id = %s AND user_id = %s FOR UPDATE",
                (order_id, user_id),
            )
            row = require_row(cur.fetchone(), "Order not found")
            if row["status"] == OrderStatus.IN_PROGRESS.value:
                raise ValidationError("Cannot delete order in progress")
            cur.execute("DELETE FROM orders WHERE id = %s", (order_id,))


def order_stats(user_id: str, *, conn: Optional[PgConnection] = None) -> OrderStats:
    with managed_connection(conn) as (connection, _):
        with dict_cursor(connection) as cur:
            cur.execute(
                """
                SELECT status, COUNT(*) AS count, SUM(budget) AS budget
                FROM orders
                WHERE user_id = %s
                GROUP BY status
                ORDER BY status
                """,
                (user_id,),
            )
            breakdown = cur.fetchall()
            cur.execute(
                """
                SELECT status, COUNT(*) AS count
                FROM orders
                WHERE user_id = %s AND created_at >= date_trunc('month', NOW())
                GROUP BY status
                ORDER BY status
                """,
                (user_id,),
            )
            monthly = cur.fetchall()
            cur.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM orders WHERE user_id = %(uid)s) AS total_orders,
                    (SELECT COALESCE(SUM(amount), 0) FROM payments
                        WHERE user_id = %(uid)s AND status = 'COMPLETED'
                          AND order_id IS NOT NULL) AS total_revenue
                """,
                {"uid": user_id},
            )
            totals: Dict[str, Any] = cur.fetchone()

    return OrderStats(
        total_orders=int(totals["total_orders"]),
        total_revenue=Decimal(totals["total_revenue"]),
        status_breakdown=[
            StatusCount(status=row["status"], count=int(row["count"]), budget=row.get("budget"))
            for row in breakdown
        ],
        monthly_stats=[
            StatusCount(status=row["status"], count=int(row["count"])) for row in monthly
        ],
    )
