"""Tests for applying payment processor webhooks to local billing records."""
from __future__ import annotations

import copy
import hashlib
import hmac
import json
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

import pytest

from tapiceros.app.billing import (
    Invoice,
    InvoiceStatus,
    Membership,
    MembershipStatus,
    MembershipType,
    NewMembership,
    NewPayment,
    Payment,
    PaymentStatus,
    StripePaymentGateway,
    WebhookEvent,
    WebhookReconciler,
)
from tapiceros.app.errors import (
    ConfigurationError,
    SignatureError,
    WebhookPayloadError,
    WebhookProcessingError,
)
from tapiceros.push.templates import NotificationType

SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryStore:
    def __init__(self) -> None:
        self.webhook_events: Dict[str, WebhookEvent] = {}
        self.payments: Dict[str, Payment] = {}
        self.invoices: Dict[str, Invoice] = {}
        self.memberships: Dict[str, Membership] = {}
        self.fail_on: Optional[str] = None

    def snapshot(self):
        return copy.deepcopy(
            (self.webhook_events, self.payments, self.invoices, self.memberships)
        )

    def restore(self, state) -> None:
        self.webhook_events, self.payments, self.invoices, self.memberships = state


class InMemoryBillingRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def _maybe_fail(self, operation: str) -> None:
        if self.store.fail_on == operation:
            raise RuntimeError(f"{operation} failed")

    def record_webhook_event(self, event: WebhookEvent) -> bool:
        if event.event_id in self.store.webhook_events:
            return False
        self.store.webhook_events[event.event_id] = event
        return True

    def insert_payment(self, payment: NewPayment) -> Optional[Payment]:
        self._maybe_fail("insert_payment")
        if payment.stripe_payment_id in self.store.payments:
            return None
        stored = Payment(
            id=f"pay-{len(self.store.payments) + 1}",
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status,
            stripe_payment_id=payment.stripe_payment_id,
            description=payment.description,
            user_id=payment.user_id,
            order_id=payment.order_id,
        )
        self.store.payments[payment.stripe_payment_id] = stored
        return stored

    def mark_invoice_paid(self, stripe_invoice_id: str) -> int:
        invoice = self.store.invoices.get(stripe_invoice_id)
        if invoice is None or invoice.status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            return 0
        self.store.invoices[stripe_invoice_id] = invoice.model_copy(update={"status": InvoiceStatus.PAID})
        return 1

    def insert_membership(self, membership: NewMembership) -> Optional[Membership]:
        if membership.stripe_subscription_id in self.store.memberships:
            return None
        stored = Membership(
            id=f"mem-{len(self.store.memberships) + 1}",
            type=membership.type,
            status=MembershipStatus.ACTIVE,
            stripe_subscription_id=membership.stripe_subscription_id,
            stripe_price_id=membership.stripe_price_id,
            user_id=membership.user_id,
            start_date=FIXED_NOW,
        )
        self.store.memberships[membership.stripe_subscription_id] = stored
        return stored

    def update_membership_status(self, stripe_subscription_id, *, status, end_date) -> int:
        membership = self.store.memberships.get(stripe_subscription_id)
        if membership is None:
            return 0
        self.store.memberships[stripe_subscription_id] = membership.model_copy(
            update={"status": status, "end_date": end_date}
        )
        return 1


def _unit_of_work_for(store: InMemoryStore):
    @contextmanager
    def unit_of_work():
        state = store.snapshot()
        try:
            yield InMemoryBillingRepository(store)
        except Exception:
            store.restore(state)
            raise

    return unit_of_work


def _sign(payload: bytes, secret: str = SECRET, *, timestamp: Optional[int] = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _event(event_id: str, event_type: str, obj: Dict[str, object]) -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    ).encode("utf-8")


def _payment_event(event_id: str = "evt_pay_1", **overrides) -> bytes:
    obj = {
        "id": "pi_123",
        "object": "payment_intent",
        "amount": 2550,
        "currency": "usd",
        "metadata": {"userId": "user-1", "orderId": "order-9", "description": "Sofa repair"},
    }
    obj.update(overrides)
    return _event(event_id, "payment_intent.succeeded", obj)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def reconciler(store: InMemoryStore) -> WebhookReconciler:
    return WebhookReconciler(
        gateway=StripePaymentGateway(api_key=None),
        webhook_secret=SECRET,
        unit_of_work=_unit_of_work_for(store),
        clock=lambda: FIXED_NOW,
    )


def test_payment_intent_succeeded_records_payment_and_notifies(reconciler, store):
    payload = _payment_event()

    result = reconciler.handle(payload, _sign(payload))

    assert result.duplicate is False
    assert result.rows_affected == 1
    payment = store.payments["pi_123"]
    assert payment.amount == Decimal("25.50")
    assert payment.currency == "USD"
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.user_id == "user-1"
    assert payment.order_id == "order-9"
    assert payment.description == "Sofa repair"

    assert len(result.notifications) == 1
    intent = result.notifications[0]
    assert intent.user_id == "user-1"
    assert intent.type == NotificationType.PAYMENT_RECEIVED
    assert intent.notification.title == "Pago Recibido"
    assert intent.notification.body == "Se ha recibido un pago de $25.50"
    assert intent.data == {
        "paymentId": payment.id,
        "amount": "25.50",
        "type": "PAYMENT_RECEIVED",
    }


def test_duplicate_delivery_is_applied_once(reconciler, store):
    payload = _payment_event()

    first = reconciler.handle(payload, _sign(payload))
    second = reconciler.handle(payload, _sign(payload))

    assert first.duplicate is False
    assert second.duplicate is True
    assert second.rows_affected == 0
    assert second.notifications == []
    assert len(store.payments) == 1
    assert list(store.webhook_events) == ["evt_pay_1"]


def test_distinct_events_for_same_payment_insert_once(reconciler, store):
    first = _payment_event("evt_a")
    second = _payment_event("evt_b")

    reconciler.handle(first, _sign(first))
    result = reconciler.handle(second, _sign(second))

    assert result.duplicate is False
    assert result.rows_affected == 0
    assert result.notifications == []
    assert len(store.payments) == 1


def test_zero_decimal_currency_amount_is_not_divided(reconciler, store):
    payload = _payment_event(currency="jpy", amount=5000)

    reconciler.handle(payload, _sign(payload))

    assert store.payments["pi_123"].amount == Decimal("5000")


def test_tampered_body_is_rejected_without_writes(reconciler, store):
    payload = _payment_event()
    signature = _sign(payload)
    tampered = payload.replace(b"2550", b"9999")

    with pytest.raises(SignatureError):
        reconciler.handle(tampered, signature)

    assert store.payments == {}
    assert store.webhook_events == {}


def test_wrong_secret_is_rejected(reconciler, store):
    payload = _payment_event()

    with pytest.raises(SignatureError):
        reconciler.handle(payload, _sign(payload, "whsec_other"))

    assert store.webhook_events == {}


def test_missing_signature_header_is_rejected(reconciler, store):
    with pytest.raises(SignatureError):
        reconciler.handle(_payment_event(), None)


def test_missing_webhook_secret_is_configuration_error(store):
    reconciler = WebhookReconciler(
        gateway=StripePaymentGateway(api_key=None),
        webhook_secret=None,
        unit_of_work=_unit_of_work_for(store),
    )
    payload = _payment_event()

    with pytest.raises(ConfigurationError):
        reconciler.handle(payload, _sign(payload))
    assert store.webhook_events == {}


def test_missing_user_metadata_is_a_processing_error(reconciler, store):
    payload = _payment_event(metadata={"orderId": "order-9"})

    with pytest.raises(WebhookPayloadError) as excinfo:
        reconciler.handle(payload, _sign(payload))

    assert excinfo.value.status_code == 500
    assert excinfo.value.event_id == "evt_pay_1"
    assert store.payments == {}
    assert store.webhook_events == {}


def test_failed_transition_rolls_back_ledger_so_redelivery_applies(reconciler, store):
    payload = _payment_event()
    store.fail_on = "insert_payment"

    with pytest.raises(WebhookProcessingError) as excinfo:
        reconciler.handle(payload, _sign(payload))

    assert excinfo.value.event_type == "payment_intent.succeeded"
    assert store.webhook_events == {}
    assert store.payments == {}

    store.fail_on = None
    result = reconciler.handle(payload, _sign(payload))
    assert result.rows_affected == 1
    assert "pi_123" in store.payments


def test_invoice_payment_marks_sent_invoice_paid(reconciler, store):
    store.invoices["in_1"] = Invoice(
        id="inv-1",
        invoice_number="INV-1",
        amount=Decimal("100.00"),
        currency="USD",
        status=InvoiceStatus.SENT,
        order_id="order-1",
        stripe_invoice_id="in_1",
    )
    payload = _event("evt_inv", "invoice.payment_succeeded", {"id": "in_1", "object": "invoice"})

    result = reconciler.handle(payload, _sign(payload))

    assert result.rows_affected == 1
    assert store.invoices["in_1"].status == InvoiceStatus.PAID


def test_invoice_payment_never_regresses_void_invoice(reconciler, store):
    store.invoices["in_2"] = Invoice(
        id="inv-2",
        invoice_number="INV-2",
        amount=Decimal("10.00"),
        currency="USD",
        status=InvoiceStatus.VOID,
        order_id="order-1",
        stripe_invoice_id="in_2",
    )
    payload = _event("evt_inv2", "invoice.payment_succeeded", {"id": "in_2", "object": "invoice"})

    result = reconciler.handle(payload, _sign(payload))

    assert result.rows_affected == 0
    assert store.invoices["in_2"].status == InvoiceStatus.VOID


def test_invoice_payment_for_unknown_invoice_is_acknowledged(reconciler, store):
    payload = _event(
        "evt_inv_missing", "invoice.payment_succeeded", {"id": "in_missing", "object": "invoice"}
    )

    result = reconciler.handle(payload, _sign(payload))

    assert result.rows_affected == 0
    assert result.duplicate is False
    assert result.notifications == []
    assert store.invoices == {}
    assert "evt_inv_missing" in store.webhook_events


def _subscription(status: str = "active", **metadata) -> Dict[str, object]:
    return {
        "id": "sub_1",
        "object": "subscription",
        "status": status,
        "items": {"data": [{"price": {"id": "price_premium_monthly"}}]},
        "metadata": metadata,
    }


def test_subscription_lifecycle(reconciler, store):
    created = _event(
        "evt_sub_created",
        "customer.subscription.created",
        _subscription(userId="user-1", membershipType="PREMIUM"),
    )
    reconciler.handle(created, _sign(created))

    membership = store.memberships["sub_1"]
    assert membership.type == MembershipType.PREMIUM
    assert membership.status == MembershipStatus.ACTIVE
    assert membership.stripe_price_id == "price_premium_monthly"

    past_due = _event("evt_sub_upd", "customer.subscription.updated", _subscription("past_due"))
    reconciler.handle(past_due, _sign(past_due))
    assert store.memberships["sub_1"].status == MembershipStatus.CANCELLED
    assert store.memberships["sub_1"].end_date == FIXED_NOW

    active = _event("evt_sub_upd2", "customer.subscription.updated", _subscription("active"))
    reconciler.handle(active, _sign(active))
    assert store.memberships["sub_1"].status == MembershipStatus.ACTIVE
    assert store.memberships["sub_1"].end_date is None

    deleted = _event("evt_sub_del", "customer.subscription.deleted", _subscription("canceled"))
    result = reconciler.handle(deleted, _sign(deleted))
    assert result.rows_affected == 1
    assert store.memberships["sub_1"].status == MembershipStatus.CANCELLED
    assert store.memberships["sub_1"].end_date == FIXED_NOW


def test_subscription_created_without_membership_type_writes_nothing(reconciler, store):
    payload = _event(
        "evt_sub_bad",
        "customer.subscription.created",
        _subscription(userId="user-1"),
    )

    with pytest.raises(WebhookPayloadError):
        reconciler.handle(payload, _sign(payload))
    assert store.memberships == {}


def test_subscription_deleted_without_match_is_acknowledged(reconciler, store):
    payload = _event("evt_sub_gone", "customer.subscription.deleted", _subscription("canceled"))

    result = reconciler.handle(payload, _sign(payload))

    assert result.duplicate is False
    assert result.rows_affected == 0
    assert "evt_sub_gone" in store.webhook_events


def test_unhandled_event_type_is_acknowledged(reconciler, store):
    payload = _event("evt_other", "charge.refunded", {"id": "ch_1", "object": "charge"})

    result = reconciler.handle(payload, _sign(payload))

    assert result.event_type == "charge.refunded"
    assert result.rows_affected == 0
    assert result.notifications == []
