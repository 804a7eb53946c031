from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tapiceros.app.errors import NotFoundError, ValidationError
from tapiceros.app.schemas.orders import OrderCreate, OrderStatus, OrderUpdate
from tapiceros.app.services import orders
from tapiceros.push.templates import NotificationType


class FakeCursor:
    def __init__(self, *, fetchone_results=None, fetchall_results=None, rowcount=1):
        self.fetchone_results = list(fetchone_results or [])
        self.fetchall_results = list(fetchall_results or [])
        self.rowcount = rowcount
        self.execute_calls = []

    def execute(self, query, params=None):
        self.execute_calls.append((" ".join(query.split()), params))

    def fetchone(self):
        return self.fetchone_results.pop(0) if self.fetchone_results else None

    def fetchall(self):
        return self.fetchall_results.pop(0) if self.fetchall_results else []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    def __init__(self, *cursors):
        self._cursors = list(cursors)
        self.cursor_calls = []

    def cursor(self, *args, **kwargs):
        self.cursor_calls.append((args, kwargs))
        if not self._cursors:
            raise AssertionError("No cursors configured")
        return self._cursors.pop(0)


def _order_row(**overrides):
    row = {
        "id": "order-1",
        "user_id": "user-1",
        "title": "Reupholster armchair",
        "description": None,
        "client_name": "Ana",
        "priority": "MEDIUM",
        "status": "PENDING",
        "budget": Decimal("150.00"),
        "completed_at": None,
        "created_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


def test_create_order_inserts_owned_row():
    cursor = FakeCursor(fetchone_results=[_order_row()])
    conn = FakeConnection(cursor)

    payload = OrderCreate(title="Reupholster armchair", clientName="Ana", budget=Decimal("150"))
    order = orders.create_order("user-1", payload, conn=conn)

    assert order.id == "order-1"
    query, params = cursor.execute_calls[0]
    assert query.startswith("INSERT INTO orders (user_id, title, description, client_name")
    assert params[0] == "user-1"
    assert params[1] == "Reupholster armchair"
    assert "MEDIUM" in params


def test_update_order_to_completed_stamps_completed_at_once_and_notifies():
    completed_at = datetime(2024, 5, 2, tzinfo=timezone.utc)
    cursor = FakeCursor(
        fetchone_results=[
            {"status": "IN_PROGRESS"},
            _order_row(status="COMPLETED", completed_at=completed_at),
        ]
    )
    conn = FakeConnection(cursor)

    order, intent = orders.update_order(
        "order-1", "user-1", OrderUpdate(status=OrderStatus.COMPLETED), conn=conn
    )

    assert order.status == OrderStatus.COMPLETED
    assert order.completed_at == completed_at

    select_query, select_params = cursor.execute_calls[0]
    assert "FOR UPDATE" in select_query
    assert select_params == ("order-1", "user-1")

    update_query, update_params = cursor.execute_calls[1]
    assert "status = %s" in update_query
    assert (
        "completed_at = CASE WHEN %s = 'COMPLETED' THEN COALESCE(completed_at, NOW()) "
        "ELSE completed_at END"
    ) in update_query
    assert update_params == ["COMPLETED", "COMPLETED", "order-1"]

    assert intent is not None
    assert intent.user_id == "user-1"
    assert intent.type == NotificationType.ORDER_UPDATE
    assert intent.notification.body == (
        'Tu orden "Reupholster armchair" ha sido actualizada a: COMPLETED'
    )
    assert intent.data == {"orderId": "order-1", "status": "COMPLETED", "type": "ORDER_UPDATE"}


def test_update_order_without_status_change_has_no_notification():
    cursor = FakeCursor(
        fetchone_results=[{"status": "PENDING"}, _order_row(title="New title")]
    )
    conn = FakeConnection(cursor)

    order, intent = orders.update_order(
        "order-1", "user-1", OrderUpdate(title="New title"), conn=conn
    )

    assert order.title == "New title"
    assert intent is None
    update_query, update_params = cursor.execute_calls[1]
    assert "completed_at" not in update_query
    assert update_params == ["New title", "order-1"]


def test_update_order_same_status_does_not_notify():
    cursor = FakeCursor(fetchone_results=[{"status": "PENDING"}, _order_row()])
    conn = FakeConnection(cursor)

    _, intent = orders.update_order(
        "order-1", "user-1", OrderUpdate(status=OrderStatus.PENDING), conn=conn
    )

    assert intent is None


def test_update_order_requires_changes():
    with pytest.raises(ValidationError):
        orders.update_order("order-1", "user-1", OrderUpdate(), conn=FakeConnection())


def test_update_missing_order_is_not_found():
    cursor = FakeCursor(fetchone_results=[None])
    conn = FakeConnection(cursor)

    with pytest.raises(NotFoundError):
        orders.update_order("missing", "user-1", OrderUpdate(title="x"), conn=conn)
    assert len(cursor.execute_calls) == 1


def test_delete_order_in_progress_is_refused():
    cursor = FakeCursor(fetchone_results=[{"status": "IN_PROGRESS"}])
    conn = FakeConnection(cursor)

    with pytest.raises(ValidationError) as excinfo:
        orders.delete_order("order-1", "user-1", conn=conn)

    assert excinfo.value.message == "Cannot delete order in progress"
    assert not any(query.startswith("DELETE") for query, _ in cursor.execute_calls)


def test_delete_pending_order():
    cursor = FakeCursor(fetchone_results=[{"status": "PENDING"}])
    conn = FakeConnection(cursor)

    orders.delete_order("order-1", "user-1", conn=conn)

    assert cursor.execute_calls[-1] == ("DELETE FROM orders WHERE id = %s", ("order-1",))


def test_list_orders_applies_filters_and_counts():
    cursor = FakeCursor(
        fetchall_results=[[_order_row(payments=[], invoices=[], payment_count=0, invoice_count=0)]],
        fetchone_results=[{"total": 11}],
    )
    conn = FakeConnection(cursor)

    items, total = orders.list_orders(
        "user-1", page=2, limit=10, status=OrderStatus.PENDING, conn=conn
    )

    assert total == 11
    assert items[0].counts == {"payments": 0, "invoices": 0}
    _, params = cursor.execute_calls[0]
    assert params == ["user-1", "PENDING", 10, 10]
    count_query, count_params = cursor.execute_calls[1]
    assert count_query.endswith("WHERE o.user_id = %s AND o.status = %s")
    assert count_params == ["user-1", "PENDING"]


def test_order_stats_shapes_breakdown():
    cursor = FakeCursor(
        fetchall_results=[
            [
                {"status": "COMPLETED", "count": 2, "budget": Decimal("300")},
                {"status": "PENDING", "count": 1, "budget": None},
            ],
            [{"status": "PENDING", "count": 1}],
        ],
        fetchone_results=[{"total_orders": 3, "total_revenue": Decimal("250.00")}],
    )
    conn = FakeConnection(cursor)

    stats = orders.order_stats("user-1", conn=conn)

    assert stats.total_orders == 3
    assert stats.total_revenue == Decimal("250.00")
    assert [item.status for item in stats.status_breakdown] == [
        OrderStatus.COMPLETED,
        OrderStatus.PENDING,
    ]
    assert stats.monthly_stats[0].count == 1
