"""Applies verified payment processor webhook events to local billing records."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, ContextManager, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ...push import templates
from ...push.providers import PushNotification
from ...push.templates import NotificationType
from ..errors import ConfigurationError, SignatureError, WebhookProcessingError
from .events import (
    InvoicePaymentSucceeded,
    PaymentIntentSucceeded,
    ReconcilerEvent,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
    WebhookEvent,
    parse_event,
)
from .gateway import PaymentGateway
from .models import (
    Membership,
    MembershipStatus,
    NewMembership,
    NewPayment,
    Payment,
)

logger = logging.getLogger(__name__)


class ReconcilerRepository(Protocol):
    """Persistence operations the reconciler performs inside one transaction."""

    def record_webhook_event(self, event: WebhookEvent) -> bool:
        ...

    def insert_payment(self, payment: NewPayment) -> Optional[Payment]:
        ...

    def mark_invoice_paid(self, stripe_invoice_id: str) -> int:
        ...

    def insert_membership(self, membership: NewMembership) -> Optional[Membership]:
        ...

    def update_membership_status(
        self,
        stripe_subscription_id: str,
        *,
        status: MembershipStatus,
        end_date: Optional[datetime],
    ) -> int:
        ...


class NotificationIntent(BaseModel):
    """A notification to persist and push once the transaction has committed."""

    user_id: str
    type: NotificationType
    notification: PushNotification
    data: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class ReconciliationResult(BaseModel):
    event_id: str
    event_type: str
    duplicate: bool = False
    rows_affected: int = 0
    notifications: List[NotificationIntent] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


@dataclass
class WebhookReconciler:
    """Verifies webhook deliveries and applies exactly one transition per event.

    The idempotency ledger row and the transition are written in the same
    transaction, so a failed transition leaves the event eligible for
    re-delivery while a completed one is never applied twice.
    """

    gateway: PaymentGateway
    webhook_secret: Optional[str]
    unit_of_work: Callable[[], ContextManager[ReconcilerRepository]]
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def handle(self, payload: bytes, signature: Optional[str]) -> ReconciliationResult:
        if not self.webhook_secret:
            raise ConfigurationError("Webhook secret not configured")
        if not signature:
            raise SignatureError("Missing signature header")

        raw = self.gateway.construct_event(payload, signature, self.webhook_secret)
        event = parse_event(raw)
        event_type = event.event_type if isinstance(event, UnhandledEvent) else event.kind

        try:
            with self.unit_of_work() as repository:
                stored = repository.record_webhook_event(
                    WebhookEvent(event_id=event.event_id, event_type=event_type, payload=dict(raw))
                )
                if not stored:
                    logger.info(
                        "Duplicate webhook delivery ignored",
                        extra={"stripe_event_id": event.event_id, "stripe_event_type": event_type},
                    )
                    return ReconciliationResult(
                        event_id=event.event_id, event_type=event_type, duplicate=True
                    )
                rows, intents = self._apply(repository, event)
        except WebhookProcessingError:
            raise
        except Exception as exc:
            logger.exception(
                "Failed to apply webhook event",
                extra={"stripe_event_id": event.event_id, "stripe_event_type": event_type},
            )
            raise WebhookProcessingError(
                "Error processing webhook",
                event_id=event.event_id,
                event_type=event_type,
            ) from exc

        logger.info(
            "Webhook event applied",
            extra={
                "stripe_event_id": event.event_id,
                "stripe_event_type": event_type,
                "rows_affected": rows,
            },
        )
        return ReconciliationResult(
            event_id=event.event_id,
            event_type=event_type,
            rows_affected=rows,
            notifications=intents,
        )

    def _apply(self, repository: ReconcilerRepository, event: ReconcilerEvent):
        if isinstance(event, PaymentIntentSucceeded):
            return self._payment_succeeded(repository, event)
        if isinstance(event, InvoicePaymentSucceeded):
            return repository.mark_invoice_paid(event.stripe_invoice_id), []
        if isinstance(event, SubscriptionCreated):
            return self._subscription_created(repository, event)
        if isinstance(event, SubscriptionUpdated):
            if event.provider_status == "active":
                status, end_date = MembershipStatus.ACTIVE, None
            else:
                status, end_date = MembershipStatus.CANCELLED, self.clock()
            rows = repository.update_membership_status(
                event.subscription_id, status=status, end_date=end_date
            )
            return rows, []
        if isinstance(event, SubscriptionDeleted):
            rows = repository.update_membership_status(
                event.subscription_id,
                status=MembershipStatus.CANCELLED,
                end_date=self.clock(),
            )
            return rows, []

        logger.info(
            "Unhandled webhook event type",
            extra={"stripe_event_id": event.event_id, "stripe_event_type": event.event_type},
        )
        return 0, []

    def _payment_succeeded(self, repository: ReconcilerRepository, event: PaymentIntentSucceeded):
        payment = repository.insert_payment(
            NewPayment(
                stripe_payment_id=event.payment_intent_id,
                amount=event.amount,
                currency=event.currency,
                user_id=event.user_id,
                order_id=event.order_id,
                description=event.description,
            )
        )
        if payment is None:
            logger.info(
                "Payment already recorded",
                extra={"stripe_payment_id": event.payment_intent_id},
            )
            return 0, []

        intent = NotificationIntent(
            user_id=payment.user_id,
            type=NotificationType.PAYMENT_RECEIVED,
            notification=templates.payment_received(payment.amount),
            data={
                "paymentId": payment.id,
                "amount": str(payment.amount),
                "type": NotificationType.PAYMENT_RECEIVED.value,
            },
        )
        return 1, [intent]

    def _subscription_created(self, repository: ReconcilerRepository, event: SubscriptionCreated):
        membership = repository.insert_membership(
            NewMembership(
                stripe_subscription_id=event.subscription_id,
                stripe_price_id=event.price_id,
                user_id=event.user_id,
                type=event.membership_type,
            )
        )
        if membership is None:
            logger.info(
                "Membership already recorded",
                extra={"stripe_subscription_id": event.subscription_id},
            )
            return 0, []
        return 1, []


__all__ = [
    "NotificationIntent",
    "ReconcilerRepository",
    "ReconciliationResult",
    "WebhookReconciler",
]
