"""Billing domain package: payments, invoices, memberships and webhook reconciliation."""

from .events import (
    InvoicePaymentSucceeded,
    PaymentIntentSucceeded,
    ReconcilerEvent,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
    WebhookEvent,
    WebhookEventType,
    parse_event,
)
from .gateway import PaymentGateway, StripePaymentGateway
from .models import (
    CheckoutSessionResult,
    Invoice,
    InvoiceStatus,
    Membership,
    MembershipStatus,
    MembershipType,
    NewMembership,
    NewPayment,
    Payment,
    PaymentStatus,
    ProviderInvoice,
)
from .reconciler import (
    NotificationIntent,
    ReconcilerRepository,
    ReconciliationResult,
    WebhookReconciler,
)

__all__ = [
    "CheckoutSessionResult",
    "Invoice",
    "InvoicePaymentSucceeded",
    "InvoiceStatus",
    "Membership",
    "MembershipStatus",
    "MembershipType",
    "NewMembership",
    "NewPayment",
    "NotificationIntent",
    "Payment",
    "PaymentGateway",
    "PaymentIntentSucceeded",
    "PaymentStatus",
    "ProviderInvoice",
    "ReconcilerEvent",
    "ReconcilerRepository",
    "ReconciliationResult",
    "StripePaymentGateway",
    "SubscriptionCreated",
    "SubscriptionDeleted",
    "SubscriptionUpdated",
    "UnhandledEvent",
    "WebhookEvent",
    "WebhookEventType",
    "WebhookReconciler",
    "parse_event",
]
