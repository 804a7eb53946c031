from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from tapiceros import app_context
from tapiceros.app.billing import NotificationIntent
from tapiceros.app.errors import AuthorizationError, ValidationError
from tapiceros.app.schemas.notifications import NotificationCreate, NotificationSendRequest
from tapiceros.app.schemas.users import User
from tapiceros.app.services import notifications
from tapiceros.app.services import users as users_service
from tapiceros.push import DeliveryCounts, PushNotification, PushProvider
from tapiceros.push.templates import NotificationType


class FakeCursor:
    def __init__(self, *, fetchone_result=None, fetchall_result=None, rowcount=1):
        self.fetchone_result = fetchone_result
        self.fetchall_result = list(fetchall_result or [])
        self.rowcount = rowcount
        self.execute_calls = []

    def execute(self, query, params=None):
        self.execute_calls.append((" ".join(query.split()), params))

    def fetchone(self):
        return self.fetchone_result

    def fetchall(self):
        return list(self.fetchall_result)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    def __init__(self, *cursors):
        self._cursors = list(cursors)

    def cursor(self, *args, **kwargs):
        if not self._cursors:
            raise AssertionError("No cursors configured")
        return self._cursors.pop(0)


class RecordingPushProvider(PushProvider):
    name = "recording"

    def __init__(self, *, failures=0, result="msg-1"):
        self.failures = failures
        self.result = result
        self.calls = []
        self.multicast_calls = []

    def send_to_device(self, token, notification, data=None):
        self.calls.append((token, notification, data))
        if len(self.calls) <= self.failures:
            raise RuntimeError("transport down")
        return self.result

    def send_to_many(self, tokens, notification, data=None):
        self.multicast_calls.append((list(tokens), notification, data))
        return DeliveryCounts(success_count=len(tokens), failure_count=0)


def _user(**overrides) -> User:
    values = {
        "id": "user-1",
        "auth0_id": "auth0|1",
        "email": "ana@example.com",
        "name": "Ana",
        "role": "USER",
    }
    values.update(overrides)
    return User(**values)


@pytest.fixture
def push_context():
    provider = RecordingPushProvider()
    app_context.configure(
        config=SimpleNamespace(),
        push_config=SimpleNamespace(max_attempts=3, backoff_seconds=0.0),
        payment_gateway=object(),
        push_provider=provider,
        identity_verifier=object(),
    )
    yield provider
    app_context.reset()


def test_create_notification_inserts_row():
    row = {
        "id": "n-1",
        "user_id": "user-1",
        "title": "Pago Recibido",
        "body": "Se ha recibido un pago de $10.00",
        "type": "PAYMENT_RECEIVED",
        "data": {"paymentId": "p-1"},
        "is_read": False,
        "sent_at": None,
        "created_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
    }
    cursor = FakeCursor(fetchone_result=row)
    conn = FakeConnection(cursor)

    notification = notifications.create_notification(
        NotificationCreate(
            userId="user-1",
            title=row["title"],
            body=row["body"],
            type=NotificationType.PAYMENT_RECEIVED,
            data={"paymentId": "p-1"},
        ),
        conn=conn,
    )

    assert notification.id == "n-1"
    assert notification.type == NotificationType.PAYMENT_RECEIVED
    query, params = cursor.execute_calls[0]
    assert query.startswith("INSERT INTO notifications")
    assert params[0] == "user-1"
    assert params[3] == "PAYMENT_RECEIVED"


def test_unread_count_reads_first_column():
    cursor = FakeCursor(fetchone_result=(4,))

    assert notifications.unread_count("user-1", conn=FakeConnection(cursor)) == 4


def test_list_notifications_filters_by_type_and_read_state():
    cursor = FakeCursor(fetchall_result=[], fetchone_result={"total": 0})
    conn = FakeConnection(cursor)

    items, total = notifications.list_notifications(
        "user-1",
        page=1,
        limit=20,
        type=NotificationType.SYSTEM,
        is_read=False,
        conn=conn,
    )

    assert items == []
    assert total == 0
    query, params = cursor.execute_calls[0]
    assert "WHERE user_id = %s AND type = %s AND is_read = %s" in query
    assert params == ["user-1", "SYSTEM", False, 20, 0]


def test_deliver_push_retries_with_linear_backoff(monkeypatch):
    sleeps = []
    monkeypatch.setattr(notifications.time, "sleep", sleeps.append)
    provider = RecordingPushProvider(failures=2)

    message_id = notifications.deliver_push(
        "token",
        PushNotification(title="t", body="b"),
        provider=provider,
        max_attempts=3,
        backoff_seconds=0.5,
    )

    assert message_id == "msg-1"
    assert len(provider.calls) == 3
    assert sleeps == [0.5, 1.0]


def test_deliver_push_gives_up_after_max_attempts(monkeypatch):
    monkeypatch.setattr(notifications.time, "sleep", lambda _: None)
    provider = RecordingPushProvider(failures=5)

    message_id = notifications.deliver_push(
        "token",
        PushNotification(title="t", body="b"),
        provider=provider,
        max_attempts=2,
        backoff_seconds=1.0,
    )

    assert message_id is None
    assert len(provider.calls) == 2


def test_dispatch_intent_pushes_and_persists(monkeypatch, push_context):
    created = []
    monkeypatch.setattr(users_service, "get_fcm_token", lambda user_id, conn=None: "device-1")
    monkeypatch.setattr(
        notifications,
        "create_notification",
        lambda event, conn=None: created.append(event),
    )
    intent = NotificationIntent(
        user_id="user-1",
        type=NotificationType.PAYMENT_RECEIVED,
        notification=PushNotification(title="Pago Recibido", body="Se ha recibido un pago de $5.00"),
        data={"paymentId": "p-1", "amount": "5.00", "type": "PAYMENT_RECEIVED"},
    )

    notifications.dispatch_intent(intent)

    assert push_context.calls[0][0] == "device-1"
    assert push_context.calls[0][2] == intent.data
    assert created[0].user_id == "user-1"
    assert created[0].type == NotificationType.PAYMENT_RECEIVED
    assert created[0].sent_at is not None


def test_dispatch_intent_without_token_still_persists(monkeypatch, push_context):
    created = []
    monkeypatch.setattr(users_service, "get_fcm_token", lambda user_id, conn=None: None)
    monkeypatch.setattr(
        notifications,
        "create_notification",
        lambda event, conn=None: created.append(event),
    )
    intent = NotificationIntent(
        user_id="user-1",
        type=NotificationType.ORDER_UPDATE,
        notification=PushNotification(title="t", body="b"),
    )

    notifications.dispatch_intent(intent)

    assert push_context.calls == []
    assert created[0].sent_at is None


def test_dispatch_intent_never_propagates_failures(monkeypatch, push_context, caplog):
    def broken_lookup(user_id, conn=None):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(users_service, "get_fcm_token", broken_lookup)
    intent = NotificationIntent(
        user_id="user-1",
        type=NotificationType.SYSTEM,
        notification=PushNotification(title="t", body="b"),
    )

    notifications.dispatch_intent(intent)

    assert "Failed to dispatch notification" in caplog.text


def test_send_to_users_requires_admin(push_context):
    request = NotificationSendRequest(
        userIds=["user-2"], title="Hola", body="Mundo", type=NotificationType.PROMOTIONAL
    )

    with pytest.raises(AuthorizationError) as excinfo:
        notifications.send_to_users(_user(), request)

    assert excinfo.value.message == "Only admins can send notifications to multiple users"
    assert push_context.multicast_calls == []


def test_send_to_users_without_tokens_is_rejected(monkeypatch, push_context):
    monkeypatch.setattr(users_service, "list_push_targets", lambda user_ids, conn=None: [])
    request = NotificationSendRequest(
        userIds=["user-2"], title="Hola", body="Mundo", type=NotificationType.PROMOTIONAL
    )

    with pytest.raises(ValidationError) as excinfo:
        notifications.send_to_users(_user(role="ADMIN"), request)

    assert excinfo.value.message == "No users found with FCM tokens"


def test_send_to_users_multicasts_and_records(monkeypatch, push_context):
    created = []
    monkeypatch.setattr(
        users_service,
        "list_push_targets",
        lambda user_ids, conn=None: [("user-2", "tok-2"), ("user-3", "tok-3")],
    )
    monkeypatch.setattr(
        notifications,
        "create_notification",
        lambda event, conn=None: created.append(event),
    )
    connection = object()
    monkeypatch.setattr(
        notifications, "managed_connection", _fake_managed_connection(connection)
    )
    request = NotificationSendRequest(
        userIds=["user-2", "user-3"],
        title="Hola",
        body="Mundo",
        type=NotificationType.PROMOTIONAL,
        data={"campaign": "spring"},
    )

    result = notifications.send_to_users(_user(role="ADMIN"), request)

    assert result.success_count == 2
    assert result.failure_count == 0
    assert result.total_users == 2
    tokens, _, data = push_context.multicast_calls[0]
    assert tokens == ["tok-2", "tok-3"]
    assert data == {"campaign": "spring", "type": "PROMOTIONAL"}
    assert [event.user_id for event in created] == ["user-2", "user-3"]


def test_send_test_requires_registered_device(monkeypatch, push_context):
    monkeypatch.setattr(users_service, "get_fcm_token", lambda user_id, conn=None: None)

    with pytest.raises(ValidationError):
        notifications.send_test(_user())

    assert push_context.calls == []


def test_send_test_pushes_greeting(monkeypatch, push_context):
    created = []
    monkeypatch.setattr(users_service, "get_fcm_token", lambda user_id, conn=None: "device-1")
    monkeypatch.setattr(
        notifications,
        "create_notification",
        lambda event, conn=None: created.append(event) or event,
    )

    notifications.send_test(_user())

    _, notification, _ = push_context.calls[0]
    assert notification.title == "Test Notification"
    assert notification.body == (
        "Hello Ana! This is a test notification from Tapiceros del Mundo."
    )
    assert created[0].type == NotificationType.SYSTEM


def _fake_managed_connection(connection):
    from contextlib import contextmanager

    @contextmanager
    def managed(conn=None):
        yield connection, True

    return managed
