"""API routes exposing billing functionality."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from starlette.concurrency import run_in_threadpool

from ..identity import get_current_user
from ..schemas.billing import (
    CancelSubscriptionRequest,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    InvoiceCreateRequest,
    SubscriptionRequest,
    WebhookAck,
)
from ..schemas.common import ApiResponse, Pagination, ok
from ..schemas.users import User

logger = logging.getLogger(__name__)

_DEFAULT_PAGE_SIZE = 10
_MAX_PAGE_SIZE = 100

router = APIRouter(prefix="/api/stripe", tags=["payments"])


@router.post("/create-checkout-session", response_model=ApiResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import billing as billing_service

    session = billing_service.create_checkout_session(current_user, payload)
    return ok(CheckoutSessionResponse.from_session(session))


@router.post("/create-subscription", response_model=ApiResponse)
def create_subscription(
    payload: SubscriptionRequest,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import billing as billing_service

    session = billing_service.create_subscription(current_user, payload.membership_type)
    return ok(CheckoutSessionResponse.from_session(session))


@router.post("/cancel-subscription", response_model=ApiResponse)
def cancel_subscription(
    payload: CancelSubscriptionRequest,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import billing as billing_service

    membership = billing_service.cancel_subscription(current_user, payload.subscription_id)
    return ok(membership, message="Subscription cancelled successfully")


@router.post("/create-invoice", response_model=ApiResponse)
def create_invoice(
    payload: InvoiceCreateRequest,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import billing as billing_service

    created = billing_service.create_invoice(current_user, payload)
    return ok(created, message="Invoice created successfully")


@router.post("/send-invoice/{invoice_id}", response_model=ApiResponse)
def send_invoice(invoice_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import billing as billing_service

    invoice = billing_service.send_invoice(current_user, invoice_id)
    return ok(invoice, message="Invoice sent successfully")


@router.get("/payments", response_model=ApiResponse)
def list_payments(
    *,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import billing as billing_service

    payments, total = billing_service.list_payments(current_user.id, page=page, limit=limit)
    return ok(payments, pagination=Pagination.build(page=page, limit=limit, total=total))


@router.get("/subscription", response_model=ApiResponse)
def get_subscription(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import billing as billing_service

    return ok(billing_service.get_active_subscription(current_user.id))


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request, background_tasks: BackgroundTasks) -> WebhookAck:
    """Verify and apply a payment processor event.

    Notifications raised by the event are delivered after the response,
    outside the transaction that recorded it.
    """
    from ..services import billing as billing_service
    from ..services import notifications as notifications_service

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    reconciler = billing_service.get_webhook_reconciler()
    result = await run_in_threadpool(reconciler.handle, payload, signature)

    if result.notifications:
        background_tasks.add_task(notifications_service.dispatch_intents, list(result.notifications))
    logger.info(
        "Webhook acknowledged",
        extra={
            "stripe_event_id": result.event_id,
            "stripe_event_type": result.event_type,
            "duplicate": result.duplicate,
        },
    )
    return WebhookAck(received=True)
