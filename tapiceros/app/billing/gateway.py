"""Payment processor client."""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import stripe

from ..errors import SignatureError, UpstreamServiceError
from .models import CheckoutSessionResult, ProviderInvoice, to_minor_units

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """External payment processor integration."""

    def create_customer(self, *, email: str, name: Optional[str], metadata: Mapping[str, str]) -> str:
        """Create a processor customer and return its id."""

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
    ) -> CheckoutSessionResult:
        """Create a hosted one-time payment session."""

    def create_subscription_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
    ) -> CheckoutSessionResult:
        """Create a hosted subscription signup session."""

    def cancel_subscription(self, subscription_id: str) -> str:
        """Cancel a subscription and return the processor's resulting status."""

    def create_invoice(
        self,
        *,
        customer_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        metadata: Mapping[str, str],
    ) -> ProviderInvoice:
        """Create a draft invoice with a single line item."""

    def send_invoice(self, stripe_invoice_id: str) -> None:
        """Finalize and email an invoice."""

    def construct_event(self, payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        """Verify a webhook signature and return the decoded event."""


class StripePaymentGateway:
    """:class:`PaymentGateway` backed by the Stripe API."""

    name = "stripe"

    def __init__(self, *, api_key: Optional[str], invoice_days_until_due: int = 30) -> None:
        self.api_key = api_key
        self.invoice_days_until_due = invoice_days_until_due

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if not self.api_key:
            raise UpstreamServiceError("Payment processor is not configured", service=self.name)
        try:
            return func(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as exc:
            logger.exception(
                "Stripe request failed",
                extra={"stripe_operation": operation, "stripe_error_code": getattr(exc, "code", None)},
            )
            raise UpstreamServiceError(
                f"Payment processor error during {operation}", service=self.name
            ) from exc

    def create_customer(self, *, email, name, metadata):
        customer = self._call(
            "create_customer",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=dict(metadata),
        )
        return customer.id

    def create_checkout_session(
        self,
        *,
        customer_id,
        amount,
        currency,
        description,
        success_url,
        cancel_url,
        metadata,
    ):
        metadata = dict(metadata)
        session = self._call(
            "create_checkout_session",
            stripe.checkout.Session.create,
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {"name": description},
                        "unit_amount": to_minor_units(amount, currency),
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            # payment_intent.succeeded only carries the intent's own metadata
            payment_intent_data={"metadata": {**metadata, "description": description}},
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    def create_subscription_session(self, *, customer_id, price_id, success_url, cancel_url, metadata):
        metadata = dict(metadata)
        session = self._call(
            "create_subscription_session",
            stripe.checkout.Session.create,
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    def cancel_subscription(self, subscription_id):
        subscription = self._call("cancel_subscription", stripe.Subscription.cancel, subscription_id)
        return subscription.status

    def create_invoice(self, *, customer_id, amount, currency, description, metadata):
        invoice = self._call(
            "create_invoice",
            stripe.Invoice.create,
            customer=customer_id,
            collection_method="send_invoice",
            days_until_due=self.invoice_days_until_due,
            description=description,
            metadata=dict(metadata),
        )
        self._call(
            "create_invoice_item",
            stripe.InvoiceItem.create,
            customer=customer_id,
            invoice=invoice.id,
            amount=to_minor_units(amount, currency),
            currency=currency.lower(),
            description=description,
        )
        return ProviderInvoice(invoice_id=invoice.id, number=getattr(invoice, "number", None))

    def send_invoice(self, stripe_invoice_id):
        self._call("send_invoice", stripe.Invoice.send_invoice, stripe_invoice_id)

    def construct_event(self, payload, signature, secret):
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as exc:
            raise SignatureError("Invalid signature") from exc
        except ValueError as exc:
            raise SignatureError("Invalid webhook payload") from exc
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return json.loads(payload)
