"""Checkout, subscription and invoice flows, plus wiring for the webhook reconciler."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from ... import app_context
from ..billing import (
    CheckoutSessionResult,
    Invoice,
    Membership,
    MembershipType,
    Payment,
    PaymentGateway,
    WebhookReconciler,
)
from ..billing.repository import PostgresBillingRepository, postgres_unit_of_work
from ..errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from ..schemas.billing import CheckoutSessionRequest, InvoiceCreateRequest, InvoiceCreated
from ..schemas.users import User

logger = logging.getLogger(__name__)

INVOICE_CURRENCY = "USD"


def get_webhook_reconciler() -> WebhookReconciler:
    config = app_context.get_config()
    return WebhookReconciler(
        gateway=app_context.get_payment_gateway(),
        webhook_secret=config.stripe_webhook_secret,
        unit_of_work=postgres_unit_of_work,
    )


def _frontend_url(path: str) -> str:
    return f"{app_context.get_config().frontend_url.rstrip('/')}{path}"


def _ensure_customer(
    repository: PostgresBillingRepository,
    gateway: PaymentGateway,
    user_id: str,
) -> str:
    """Return the user's processor customer id, creating the customer on first use."""

    # The row lock serialises concurrent first checkouts for the same user.
    with repository.transaction() as tx:
        profile = tx.get_customer_profile(user_id, for_update=True)
        if not profile:
            raise NotFoundError("User not found")
        if profile.get("stripe_customer_id"):
            return profile["stripe_customer_id"]

        customer_id = gateway.create_customer(
            email=profile["email"],
            name=profile.get("name"),
            metadata={"userId": user_id},
        )
        tx.set_stripe_customer_id(user_id, customer_id)
    logger.info("Stripe customer created", extra={"user_id": user_id})
    return customer_id


def create_checkout_session(
    user: User,
    payload: CheckoutSessionRequest,
    *,
    gateway: Optional[PaymentGateway] = None,
    repository: Optional[PostgresBillingRepository] = None,
) -> CheckoutSessionResult:
    gateway = gateway or app_context.get_payment_gateway()
    repository = repository or PostgresBillingRepository()

    order_id = str(payload.order_id) if payload.order_id else None
    if order_id and not repository.order_belongs_to_user(order_id, user.id):
        raise NotFoundError("Order not found")

    customer_id = _ensure_customer(repository, gateway, user.id)
    metadata = {"userId": user.id}
    if order_id:
        metadata["orderId"] = order_id

    session = gateway.create_checkout_session(
        customer_id=customer_id,
        amount=payload.amount,
        currency=payload.currency,
        description=payload.description,
        success_url=_frontend_url("/payment/success?session_id={CHECKOUT_SESSION_ID}"),
        cancel_url=_frontend_url("/payment/cancel"),
        metadata=metadata,
    )
    logger.info(
        "Checkout session created",
        extra={"user_id": user.id, "order_id": order_id, "currency": payload.currency},
    )
    return session


def create_subscription(
    user: User,
    membership_type: MembershipType,
    *,
    gateway: Optional[PaymentGateway] = None,
    repository: Optional[PostgresBillingRepository] = None,
) -> CheckoutSessionResult:
    gateway = gateway or app_context.get_payment_gateway()
    repository = repository or PostgresBillingRepository()

    price_id = app_context.get_config().stripe_price_ids.get(membership_type.value)
    if not price_id:
        raise ConfigurationError(f"No price configured for {membership_type.value} membership")

    customer_id = _ensure_customer(repository, gateway, user.id)
    session = gateway.create_subscription_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=_frontend_url("/subscription/success?session_id={CHECKOUT_SESSION_ID}"),
        cancel_url=_frontend_url("/subscription/cancel"),
        metadata={"userId": user.id, "membershipType": membership_type.value},
    )
    logger.info(
        "Subscription session created",
        extra={"user_id": user.id, "membership_type": membership_type.value},
    )
    return session


def cancel_subscription(
    user: User,
    subscription_id: str,
    *,
    gateway: Optional[PaymentGateway] = None,
    repository: Optional[PostgresBillingRepository] = None,
) -> Membership:
    gateway = gateway or app_context.get_payment_gateway()
    repository = repository or PostgresBillingRepository()

    membership = repository.get_membership_for_user(subscription_id, user.id)
    if membership is None:
        raise NotFoundError("Subscription not found")

    gateway.cancel_subscription(subscription_id)
    cancelled = repository.cancel_membership(membership.id, end_date=datetime.now(timezone.utc))
    logger.info(
        "Subscription cancelled",
        extra={"user_id": user.id, "stripe_subscription_id": subscription_id},
    )
    return cancelled or membership


def create_invoice(
    user: User,
    payload: InvoiceCreateRequest,
    *,
    gateway: Optional[PaymentGateway] = None,
    repository: Optional[PostgresBillingRepository] = None,
) -> InvoiceCreated:
    gateway = gateway or app_context.get_payment_gateway()
    repository = repository or PostgresBillingRepository()

    order_id = str(payload.order_id)
    if not repository.order_belongs_to_user(order_id, user.id):
        raise NotFoundError("Order not found")

    profile = repository.get_customer_profile(user.id)
    customer_id = profile.get("stripe_customer_id") if profile else None
    if not customer_id:
        raise ValidationError("User does not have a Stripe customer account")

    provider_invoice = gateway.create_invoice(
        customer_id=customer_id,
        amount=payload.amount,
        currency=INVOICE_CURRENCY,
        description=payload.description,
        metadata={"orderId": order_id, "userId": user.id},
    )
    invoice = repository.insert_invoice(
        invoice_number=provider_invoice.number or f"INV-{int(time.time() * 1000)}",
        amount=payload.amount,
        currency=INVOICE_CURRENCY,
        order_id=order_id,
        stripe_invoice_id=provider_invoice.invoice_id,
    )
    logger.info(
        "Invoice created",
        extra={"invoice_id": invoice.id, "order_id": order_id, "user_id": user.id},
    )
    return InvoiceCreated(
        invoice_id=invoice.id,
        stripe_invoice_id=provider_invoice.invoice_id,
        invoice_number=invoice.invoice_number,
    )


def send_invoice(
    user: User,
    invoice_id: str,
    *,
    gateway: Optional[PaymentGateway] = None,
    repository: Optional[PostgresBillingRepository] = None,
) -> Invoice:
    """Email a DRAFT invoice through the processor and advance it to SENT."""

    gateway = gateway or app_context.get_payment_gateway()
    repository = repository or PostgresBillingRepository()

    invoice = repository.get_invoice_for_user(invoice_id, user.id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if invoice.status.value != "DRAFT":
        raise ConflictError(f"Invoice is already {invoice.status.value}")
    if not invoice.stripe_invoice_id:
        raise ValidationError("Invoice has no Stripe counterpart")

    gateway.send_invoice(invoice.stripe_invoice_id)
    sent = repository.mark_invoice_sent(invoice.id)
    if sent is None:
        # Paid or voided by a webhook between the read and the update.
        raise ConflictError("Invoice status changed while sending")
    logger.info("Invoice sent", extra={"invoice_id": invoice.id, "user_id": user.id})
    return sent


def list_payments(
    user_id: str,
    *,
    page: int,
    limit: int,
    repository: Optional[PostgresBillingRepository] = None,
) -> Tuple[List[Payment], int]:
    repository = repository or PostgresBillingRepository()
    return repository.list_payments(user_id, limit=limit, offset=(page - 1) * limit)


def get_active_subscription(
    user_id: str,
    *,
    repository: Optional[PostgresBillingRepository] = None,
) -> Optional[Membership]:
    repository = repository or PostgresBillingRepository()
    return repository.get_active_membership(user_id)
