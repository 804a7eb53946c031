from types import SimpleNamespace

from tapiceros.app.routes import notifications as notifications_routes
from tapiceros.app.routes import posts as posts_routes
from tapiceros.app.schemas.common import ApiResponse
from tapiceros.app.schemas.users import FcmTokenUpdate
from tapiceros.app.services import notifications as notifications_service
from tapiceros.app.services import posts as posts_service
from tapiceros.app.services import users as users_service
from tapiceros.push.templates import NotificationType


def test_list_notifications_passes_filters_and_paginates(monkeypatch):
    user = SimpleNamespace(id="user-1")
    captured = {}

    def fake_list_notifications(user_id, *, page, limit, type, is_read, conn=None):
        captured.update(user_id=user_id, page=page, limit=limit, type=type, is_read=is_read)
        return [], 45

    monkeypatch.setattr(notifications_service, "list_notifications", fake_list_notifications)

    response = notifications_routes.list_notifications(
        page=3,
        limit=20,
        type=NotificationType.ORDER_UPDATE,
        is_read=False,
        current_user=user,
    )

    assert isinstance(response, ApiResponse)
    assert response.pagination.pages == 3
    assert captured == {
        "user_id": "user-1",
        "page": 3,
        "limit": 20,
        "type": NotificationType.ORDER_UPDATE,
        "is_read": False,
    }


def test_unread_count_is_wrapped(monkeypatch):
    monkeypatch.setattr(notifications_service, "unread_count", lambda user_id, conn=None: 7)

    response = notifications_routes.get_unread_count(current_user=SimpleNamespace(id="user-1"))

    assert response.data.unread_count == 7
    assert response.model_dump(by_alias=True)["data"] == {"unreadCount": 7}


def test_fcm_token_is_stored(monkeypatch):
    stored = []
    monkeypatch.setattr(
        users_service, "set_fcm_token", lambda user_id, token, conn=None: stored.append((user_id, token))
    )

    response = notifications_routes.update_fcm_token(
        FcmTokenUpdate(fcmToken="device-token"), current_user=SimpleNamespace(id="user-1")
    )

    assert stored == [("user-1", "device-token")]
    assert response.message == "FCM token updated successfully"


def test_toggle_like_reports_new_state(monkeypatch):
    monkeypatch.setattr(posts_service, "toggle_like", lambda post_id, user_id, conn=None: False)

    response = posts_routes.toggle_like("post-1", current_user=SimpleNamespace(id="user-1"))

    assert response.data.liked is False
    assert response.message == "Post unliked successfully"
