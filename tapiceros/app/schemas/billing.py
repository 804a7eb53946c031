from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..billing import CheckoutSessionResult, MembershipType
from ..billing.models import SUPPORTED_CHECKOUT_CURRENCIES


class CheckoutSessionRequest(BaseModel):
    amount: Decimal = Field(ge=Decimal("0.01"))
    currency: str = "USD"
    description: str = Field(min_length=1, max_length=500)
    order_id: Optional[UUID] = Field(default=None, alias="orderId")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    @field_validator("currency")
    @classmethod
    def _supported_currency(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in SUPPORTED_CHECKOUT_CURRENCIES:
            raise ValueError(f"Currency must be one of {', '.join(SUPPORTED_CHECKOUT_CURRENCIES)}")
        return normalized


class SubscriptionRequest(BaseModel):
    membership_type: MembershipType = Field(alias="membershipType")

    model_config = ConfigDict(populate_by_name=True)


class CancelSubscriptionRequest(BaseModel):
    subscription_id: str = Field(alias="subscriptionId", min_length=1)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class InvoiceCreateRequest(BaseModel):
    order_id: UUID = Field(alias="orderId")
    amount: Decimal = Field(ge=Decimal("0.01"))
    description: str = Field(min_length=1, max_length=500)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    url: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_session(cls, session: CheckoutSessionResult) -> "CheckoutSessionResponse":
        return cls(session_id=session.session_id, url=session.url)


class InvoiceCreated(BaseModel):
    invoice_id: str = Field(alias="invoiceId")
    stripe_invoice_id: str = Field(alias="stripeInvoiceId")
    invoice_number: str = Field(alias="invoiceNumber")

    model_config = ConfigDict(populate_by_name=True)


class WebhookAck(BaseModel):
    received: bool = True
