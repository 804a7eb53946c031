"""Typed payment processor webhook events.

Verified payloads are parsed into one variant per event type the application
reacts to, plus :class:`UnhandledEvent` for everything else. Recognized events
missing the data their transition needs are rejected here, before any write.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import WebhookPayloadError
from .models import MembershipType, from_minor_units


class WebhookEventType(str, Enum):
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class WebhookEvent(BaseModel):
    """Raw event stored in the idempotency ledger."""

    event_id: str
    event_type: str
    payload: Dict[str, Any]
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentIntentSucceeded(BaseModel):
    kind: Literal["payment_intent.succeeded"] = "payment_intent.succeeded"
    event_id: str
    payment_intent_id: str
    amount_minor: int = Field(ge=0)
    currency: str
    user_id: str
    order_id: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def amount(self) -> Decimal:
        return from_minor_units(self.amount_minor, self.currency)


class InvoicePaymentSucceeded(BaseModel):
    kind: Literal["invoice.payment_succeeded"] = "invoice.payment_succeeded"
    event_id: str
    stripe_invoice_id: str

    model_config = ConfigDict(frozen=True)


class SubscriptionCreated(BaseModel):
    kind: Literal["customer.subscription.created"] = "customer.subscription.created"
    event_id: str
    subscription_id: str
    price_id: str
    user_id: str
    membership_type: MembershipType

    model_config = ConfigDict(frozen=True)


class SubscriptionUpdated(BaseModel):
    kind: Literal["customer.subscription.updated"] = "customer.subscription.updated"
    event_id: str
    subscription_id: str
    provider_status: str

    model_config = ConfigDict(frozen=True)


class SubscriptionDeleted(BaseModel):
    kind: Literal["customer.subscription.deleted"] = "customer.subscription.deleted"
    event_id: str
    subscription_id: str

    model_config = ConfigDict(frozen=True)


class UnhandledEvent(BaseModel):
    kind: Literal["unhandled"] = "unhandled"
    event_id: str
    event_type: str

    model_config = ConfigDict(frozen=True)


ReconcilerEvent = Union[
    PaymentIntentSucceeded,
    InvoicePaymentSucceeded,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    UnhandledEvent,
]


def _required(source: Mapping[str, Any], key: str, *, event_id: str, event_type: str) -> Any:
    value = source.get(key)
    if value is None or value == "":
        raise WebhookPayloadError(
            f"Webhook event {event_type} is missing required field {key!r}",
            event_id=event_id,
            event_type=event_type,
        )
    return value


def _optional(source: Mapping[str, Any], key: str) -> Optional[str]:
    value = source.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _first_price_id(subscription: Mapping[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return price.get("id")


def parse_event(raw: Mapping[str, Any]) -> ReconcilerEvent:
    """Build the typed variant for a verified webhook payload."""

    event_id = raw.get("id")
    event_type = raw.get("type")
    if not event_id or not event_type:
        raise WebhookPayloadError("Webhook event is missing its id or type")

    try:
        known_type = WebhookEventType(event_type)
    except ValueError:
        return UnhandledEvent(event_id=event_id, event_type=event_type)

    obj = (raw.get("data") or {}).get("object")
    if not isinstance(obj, Mapping):
        raise WebhookPayloadError(
            f"Webhook event {event_type} has no data object",
            event_id=event_id,
            event_type=event_type,
        )
    metadata = obj.get("metadata") or {}
    context = {"event_id": event_id, "event_type": event_type}

    if known_type is WebhookEventType.PAYMENT_INTENT_SUCCEEDED:
        amount = _required(obj, "amount", **context)
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise WebhookPayloadError(f"Invalid payment amount {amount!r}", **context)
        return PaymentIntentSucceeded(
            event_id=event_id,
            payment_intent_id=_required(obj, "id", **context),
            amount_minor=amount,
            currency=str(_required(obj, "currency", **context)).upper(),
            user_id=str(_required(metadata, "userId", **context)),
            order_id=_optional(metadata, "orderId"),
            description=_optional(metadata, "description") or _optional(obj, "description"),
        )

    if known_type is WebhookEventType.INVOICE_PAYMENT_SUCCEEDED:
        return InvoicePaymentSucceeded(
            event_id=event_id,
            stripe_invoice_id=_required(obj, "id", **context),
        )

    if known_type is WebhookEventType.SUBSCRIPTION_CREATED:
        raw_type = str(_required(metadata, "membershipType", **context)).upper()
        try:
            membership_type = MembershipType(raw_type)
        except ValueError as exc:
            raise WebhookPayloadError(f"Unknown membership type {raw_type!r}", **context) from exc
        price_id = _first_price_id(obj)
        if not price_id:
            raise WebhookPayloadError("Subscription event has no price id", **context)
        return SubscriptionCreated(
            event_id=event_id,
            subscription_id=_required(obj, "id", **context),
            price_id=price_id,
            user_id=str(_required(metadata, "userId", **context)),
            membership_type=membership_type,
        )

    if known_type is WebhookEventType.SUBSCRIPTION_UPDATED:
        return SubscriptionUpdated(
            event_id=event_id,
            subscription_id=_required(obj, "id", **context),
            provider_status=str(_required(obj, "status", **context)),
        )

    return SubscriptionDeleted(
        event_id=event_id,
        subscription_id=_required(obj, "id", **context),
    )


__all__ = [
    "InvoicePaymentSucceeded",
    "PaymentIntentSucceeded",
    "ReconcilerEvent",
    "SubscriptionCreated",
    "SubscriptionDeleted",
    "SubscriptionUpdated",
    "UnhandledEvent",
    "WebhookEvent",
    "WebhookEventType",
    "parse_event",
]
