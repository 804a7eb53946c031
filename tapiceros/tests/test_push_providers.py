from decimal import Decimal

from firebase_admin import messaging

from tapiceros.push import (
    DeliveryCounts,
    DisabledPushProvider,
    FirebasePushProvider,
    PushConfig,
    PushNotification,
    create_push_provider,
)
from tapiceros.push import templates


def _config(**overrides) -> PushConfig:
    values = {
        "provider_name": "firebase",
        "firebase_project_id": None,
        "firebase_client_email": None,
        "firebase_private_key": None,
        "firebase_credentials_path": None,
        "max_attempts": 3,
        "backoff_seconds": 0.0,
    }
    values.update(overrides)
    return PushConfig(**values)


def _firebase_provider() -> FirebasePushProvider:
    provider = FirebasePushProvider(
        project_id="tapiceros",
        client_email="push@tapiceros.iam.gserviceaccount.com",
        private_key="key",
    )
    provider._app = object()
    return provider


def test_factory_without_credentials_returns_disabled_provider():
    provider = create_push_provider(_config())

    assert isinstance(provider, DisabledPushProvider)
    assert provider.enabled is False


def test_factory_with_credentials_returns_firebase_provider():
    provider = create_push_provider(
        _config(
            firebase_project_id="tapiceros",
            firebase_client_email="push@tapiceros.iam.gserviceaccount.com",
            firebase_private_key="key",
        )
    )

    assert isinstance(provider, FirebasePushProvider)
    assert provider.describe()["firebase_project_id"] == "tapiceros"


def test_disabled_provider_returns_none_without_raising(caplog):
    provider = DisabledPushProvider()
    notification = PushNotification(title="Hola", body="Mundo")

    assert provider.send_to_device("token", notification) is None
    assert provider.send_to_many(["a", "b"], notification) is None
    assert provider.send_to_topic("news", notification) is None
    assert provider.subscribe_to_topic(["a"], "news") is None
    assert provider.unsubscribe_from_topic(["a"], "news") is None
    assert "Push service not configured" in caplog.text


def test_send_to_device_sets_platform_options(monkeypatch):
    sent = []

    def fake_send(message, app=None):
        sent.append(message)
        return "projects/tapiceros/messages/1"

    monkeypatch.setattr(messaging, "send", fake_send)
    provider = _firebase_provider()

    message_id = provider.send_to_device(
        "device-token",
        PushNotification(title="Pago Recibido", body="Se ha recibido un pago de $10.00"),
        {"amount": Decimal("10.00"), "orderId": None},
    )

    assert message_id == "projects/tapiceros/messages/1"
    message = sent[0]
    assert message.token == "device-token"
    assert message.data == {"amount": "10.00", "orderId": ""}
    assert message.android.priority == "high"
    assert message.android.notification.sound == "default"
    assert message.apns.payload.aps.sound == "default"
    assert message.apns.payload.aps.badge == 1


def test_send_to_many_reports_counts(monkeypatch):
    class FakeBatchResponse:
        success_count = 2
        failure_count = 1

    captured = []

    def fake_send_each_for_multicast(message, app=None):
        captured.append(message)
        return FakeBatchResponse()

    monkeypatch.setattr(messaging, "send_each_for_multicast", fake_send_each_for_multicast)
    provider = _firebase_provider()

    counts = provider.send_to_many(["a", "b", "c"], PushNotification(title="t", body="b"))

    assert counts == DeliveryCounts(success_count=2, failure_count=1)
    assert captured[0].tokens == ["a", "b", "c"]


def test_send_to_many_with_no_tokens_skips_transport(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("transport should not be called")

    monkeypatch.setattr(messaging, "send_each_for_multicast", fail)

    counts = _firebase_provider().send_to_many([], PushNotification(title="t", body="b"))

    assert counts.success_count == 0
    assert counts.failure_count == 0


def test_templates_render_spanish_texts():
    assert templates.order_update("Sofá", "IN_PROGRESS").title == "Actualización de Orden"
    assert templates.order_update("Sofá", "IN_PROGRESS").body == (
        'Tu orden "Sofá" ha sido actualizada a: IN_PROGRESS'
    )
    assert templates.payment_received(Decimal("12.5")).body == "Se ha recibido un pago de $12.50"
    assert templates.new_message("Luis").body == "Tienes un nuevo mensaje de Luis"
    assert templates.promotional("Oferta", "20% off").title == "Oferta"
