"""Domain models for payments, invoices and memberships."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Currencies Stripe charges in whole units.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)

# Currencies Stripe charges in thousandths.
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "JOD", "KWD", "OMR", "TND"})

SUPPORTED_CHECKOUT_CURRENCIES = ("USD", "EUR", "MXN")


def minor_unit_factor(currency: str) -> int:
    code = currency.upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 1
    if code in THREE_DECIMAL_CURRENCIES:
        return 1000
    return 100


def from_minor_units(amount: int, currency: str) -> Decimal:
    factor = minor_unit_factor(currency)
    if factor == 1:
        return Decimal(amount)
    exponent = Decimal(1).scaleb(-(len(str(factor)) - 1))
    return (Decimal(amount) / Decimal(factor)).quantize(exponent)


def to_minor_units(amount: Decimal, currency: str) -> int:
    scaled = Decimal(str(amount)) * minor_unit_factor(currency)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle; only ever advances DRAFT -> SENT -> PAID."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    VOID = "VOID"


class MembershipType(str, Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class Payment(BaseModel):
    """A charge recorded locally from the payment processor."""

    id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    stripe_payment_id: str = Field(alias="stripePaymentId")
    description: Optional[str] = None
    user_id: str = Field(alias="userId")
    order_id: Optional[str] = Field(default=None, alias="orderId")
    membership_id: Optional[str] = Field(default=None, alias="membershipId")
    order: Optional[Dict[str, Any]] = None
    membership: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class NewPayment(BaseModel):
    """Payment values captured from a succeeded payment intent."""

    stripe_payment_id: str
    amount: Decimal
    currency: str
    user_id: str
    order_id: Optional[str] = None
    description: Optional[str] = None
    status: PaymentStatus = PaymentStatus.COMPLETED

    model_config = ConfigDict(frozen=True)


class Invoice(BaseModel):
    id: str
    invoice_number: str = Field(alias="invoiceNumber")
    amount: Decimal
    currency: str
    status: InvoiceStatus
    order_id: str = Field(alias="orderId")
    stripe_invoice_id: Optional[str] = Field(default=None, alias="stripeInvoiceId")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="updatedAt"
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Membership(BaseModel):
    """Local mirror of a processor subscription."""

    id: str
    type: MembershipType
    status: MembershipStatus
    stripe_subscription_id: str = Field(alias="stripeSubscriptionId")
    stripe_price_id: Optional[str] = Field(default=None, alias="stripePriceId")
    user_id: str = Field(alias="userId")
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class NewMembership(BaseModel):
    stripe_subscription_id: str
    stripe_price_id: str
    user_id: str
    type: MembershipType

    model_config = ConfigDict(frozen=True)


class CheckoutSessionResult(BaseModel):
    """Hosted checkout session returned by the gateway."""

    session_id: str = Field(alias="sessionId")
    url: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProviderInvoice(BaseModel):
    invoice_id: str
    number: Optional[str] = None

    model_config = ConfigDict(frozen=True)
