"""Persistence layer for billing domain objects."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple

import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...db import dict_cursor, managed_connection
from .events import WebhookEvent
from .models import (
    Invoice,
    InvoiceStatus,
    Membership,
    MembershipStatus,
    MembershipType,
    NewMembership,
    NewPayment,
    Payment,
    PaymentStatus,
)


def _row_to_payment(row: dict) -> Payment:
    return Payment(
        id=str(row["id"]),
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        status=PaymentStatus(row["status"]),
        stripe_payment_id=row["stripe_payment_id"],
        description=row.get("description"),
        user_id=str(row["user_id"]),
        order_id=str(row["order_id"]) if row.get("order_id") else None,
        membership_id=str(row["membership_id"]) if row.get("membership_id") else None,
        order=row.get("order_summary"),
        membership=row.get("membership_summary"),
        created_at=row["created_at"],
    )


def _row_to_invoice(row: dict) -> Invoice:
    return Invoice(
        id=str(row["id"]),
        invoice_number=row["invoice_number"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        status=InvoiceStatus(row["status"]),
        order_id=str(row["order_id"]),
        stripe_invoice_id=row.get("stripe_invoice_id"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_membership(row: dict) -> Membership:
    return Membership(
        id=str(row["id"]),
        type=MembershipType(row["type"]),
        status=MembershipStatus(row["status"]),
        stripe_subscription_id=row["stripe_subscription_id"],
        stripe_price_id=row.get("stripe_price_id"),
        user_id=str(row["user_id"]),
        start_date=row.get("start_date"),
        end_date=row.get("end_date"),
        created_at=row["created_at"],
    )


class PostgresBillingRepository:
    """Concrete repository persisting billing models in PostgreSQL.

    When constructed with a connection every call joins that connection's
    transaction; otherwise each call runs in its own transaction.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, _managed):
            with dict_cursor(connection) as cursor:
                yield cursor

    @contextmanager
    def transaction(self) -> Iterator["PostgresBillingRepository"]:
        """Yield a repository whose calls share one transaction."""

        if self._conn is not None:
            yield self
            return
        with managed_connection() as (connection, _managed):
            yield PostgresBillingRepository(conn=connection)

    # Webhook reconciliation

    def record_webhook_event(self, event: WebhookEvent) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO stripe_webhook_events (
                    event_id,
                    event_type,
                    payload,
                    received_at,
                    processed_at
                )
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (event_id) DO NOTHING
                """,
                (
                    event.event_id,
                    event.event_type,
                    psycopg2.extras.Json(event.payload),
                    event.received_at,
                ),
            )
            return cursor.rowcount > 0

    def insert_payment(self, payment: NewPayment) -> Optional[Payment]:
        """Insert a payment; returns ``None`` when the processor reference is already recorded."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO payments (
                    amount,
                    currency,
                    status,
                    stripe_payment_id,
                    description,
                    user_id,
                    order_id
                )
                VALUES (%(amount)s, %(currency)s, %(status)s, %(stripe_payment_id)s,
                        %(description)s, %(user_id)s, %(order_id)s)
                ON CONFLICT (stripe_payment_id) DO NOTHING
                RETURNING *
                """,
                {
                    "amount": payment.amount,
                    "currency": payment.currency,
                    "status": payment.status.value,
                    "stripe_payment_id": payment.stripe_payment_id,
                    "description": payment.description or "Payment",
                    "user_id": payment.user_id,
                    "order_id": payment.order_id,
                },
            )
            row = cursor.fetchone()
            return _row_to_payment(row) if row else None

    def mark_invoice_paid(self, stripe_invoice_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE invoices
                SET status = %s, updated_at = NOW()
                WHERE stripe_invoice_id = %s
                  AND status IN (%s, %s)
                """,
                (
                    InvoiceStatus.PAID.value,
                    stripe_invoice_id,
                    InvoiceStatus.DRAFT.value,
                    InvoiceStatus.SENT.value,
                ),
            )
            return cursor.rowcount

    def insert_membership(self, membership: NewMembership) -> Optional[Membership]:
        """Insert a membership; returns ``None`` when the subscription is already recorded."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO memberships (
                    type,
                    status,
                    stripe_subscription_id,
                    stripe_price_id,
                    user_id,
                    start_date
                )
                VALUES (%s, %s, %s, %s, %s, NOW())
                ON CONFLICT (stripe_subscription_id) DO NOTHING
                RETURNING *
                """,
                (
                    membership.type.value,
                    MembershipStatus.ACTIVE.value,
                    membership.stripe_subscription_id,
                    membership.stripe_price_id,
                    membership.user_id,
                ),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def update_membership_status(
        self,
        stripe_subscription_id: str,
        *,
        status: MembershipStatus,
        end_date: Optional[datetime],
    ) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET status = %s, end_date = %s, updated_at = NOW()
                WHERE stripe_subscription_id = %s
                """,
                (status.value, end_date, stripe_subscription_id),
            )
            return cursor.rowcount

    # Account-facing queries

    def get_customer_profile(self, user_id: str, *, for_update: bool = False) -> Optional[Dict[str, Any]]:
        query = """
            SELECT id, email, name, stripe_customer_id
            FROM users
            WHERE id = %s AND is_active
            LIMIT 1
        """
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cursor:
            cursor.execute(query, (user_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def set_stripe_customer_id(self, user_id: str, customer_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET stripe_customer_id = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (customer_id, user_id),
            )

    def list_payments(self, user_id: str, *, limit: int, offset: int) -> Tuple[List[Payment], int]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT
                    p.*,
                    CASE WHEN o.id IS NULL THEN NULL ELSE json_build_object(
                        'id', o.id, 'title', o.title, 'clientName', o.client_name
                    ) END AS order_summary,
                    CASE WHEN m.id IS NULL THEN NULL ELSE json_build_object(
                        'id', m.id, 'type', m.type, 'status', m.status
                    ) END AS membership_summary
                FROM payments p
                LEFT JOIN orders o ON o.id = p.order_id
                LEFT JOIN memberships m ON m.id = p.membership_id
                WHERE p.user_id = %s
                ORDER BY p.created_at DESC
                LIMIT %s OFFSET %s
                """,
                (user_id, limit, offset),
            )
            rows = cursor.fetchall()
            cursor.execute("SELECT COUNT(*) AS total FROM payments WHERE user_id = %s", (user_id,))
            total = cursor.fetchone()["total"]
        return [_row_to_payment(row) for row in rows], int(total)

    def get_active_membership(self, user_id: str) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE user_id = %s AND status = %s
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (user_id, MembershipStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def get_membership_for_user(self, stripe_subscription_id: str, user_id: str) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM memberships
                WHERE stripe_subscription_id = %s AND user_id = %s
                LIMIT 1
                """,
                (stripe_subscription_id, user_id),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def cancel_membership(self, membership_id: str, *, end_date: datetime) -> Optional[Membership]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE memberships
                SET status = %s, end_date = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (MembershipStatus.CANCELLED.value, end_date, membership_id),
            )
            row = cursor.fetchone()
            return _row_to_membership(row) if row else None

    def order_belongs_to_user(self, order_id: str, user_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM orders WHERE id = %s AND user_id = %s LIMIT 1",
                (order_id, user_id),
            )
            return cursor.fetchone() is not None

    def insert_invoice(
        self,
        *,
        invoice_number: str,
        amount: Decimal,
        currency: str,
        order_id: str,
        stripe_invoice_id: Optional[str],
    ) -> Invoice:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO invoices (
                    invoice_number,
                    amount,
                    currency,
                    status,
                    order_id,
                    stripe_invoice_id
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    invoice_number,
                    amount,
                    currency,
                    InvoiceStatus.DRAFT.value,
                    order_id,
                    stripe_invoice_id,
                ),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist invoice")
            return _row_to_invoice(row)

    def get_invoice_for_user(self, invoice_id: str, user_id: str) -> Optional[Invoice]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT i.*
                FROM invoices i
                JOIN orders o ON o.id = i.order_id
                WHERE i.id = %s AND o.user_id = %s
                LIMIT 1
                """,
                (invoice_id, user_id),
            )
            row = cursor.fetchone()
            return _row_to_invoice(row) if row else None

    def mark_invoice_sent(self, invoice_id: str) -> Optional[Invoice]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE invoices
                SET status = %s, updated_at = NOW()
                WHERE id = %s AND status = %s
                RETURNING *
                """,
                (InvoiceStatus.SENT.value, invoice_id, InvoiceStatus.DRAFT.value),
            )
            row = cursor.fetchone()
            return _row_to_invoice(row) if row else None


@contextmanager
def postgres_unit_of_work() -> Iterator[PostgresBillingRepository]:
    """Repository bound to a single transaction that commits on clean exit."""

    with managed_connection() as (connection, _managed):
        yield PostgresBillingRepository(conn=connection)
