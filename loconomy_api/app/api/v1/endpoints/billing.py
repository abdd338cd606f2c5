"""
API endpoints for subscription plans and Stripe billing.

Plans are public.  Checkout creates a Stripe Checkout session; the
resulting subscription reaches the database through the Stripe
webhook, which authenticates itself with the ``Stripe-Signature``
header rather than a user token.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from loconomy_api.app.core.errors import to_http_exception
from loconomy_api.app.core.security import get_current_user
from loconomy_api.app.schemas.billing import (
    CheckoutRequest,
    CheckoutSession,
    InvoiceRead,
    PaymentMethodRead,
    PlanList,
    SubscriptionRead,
    WebhookAck,
)
from loconomy_api.app.services.billing_service import BillingService, WebhookProcessingError
from loconomy_api.app.services.subscription_service import SubscriptionService


router = APIRouter()


def _user_id(current_user: Dict[str, Any]) -> int:
    if current_user.get("user_id") is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Billing requires a user account")
    return current_user["user_id"]


@router.get("/plans", response_model=PlanList)
async def list_plans() -> PlanList:
    return PlanList(plans=await SubscriptionService.list_plans())


@router.get("/subscription", response_model=SubscriptionRead)
async def my_subscription(current_user: Dict[str, Any] = Depends(get_current_user)) -> SubscriptionRead:
    """Current plan (free when nothing is active) with this month's usage."""
    return await SubscriptionService.get_subscription(_user_id(current_user))


@router.post("/checkout", response_model=CheckoutSession)
async def checkout(data: CheckoutRequest, current_user: Dict[str, Any] = Depends(get_current_user)) -> CheckoutSession:
    _user_id(current_user)
    try:
        return await BillingService.create_checkout_session(data, current_user)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/subscription/cancel")
async def cancel_subscription(current_user: Dict[str, Any] = Depends(get_current_user)) -> dict:
    try:
        return await BillingService.cancel_subscription(_user_id(current_user))
    except ValueError as e:
        raise to_http_exception(e)


@router.get("/invoices", response_model=List[InvoiceRead])
async def list_invoices(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> List[InvoiceRead]:
    return await BillingService.list_invoices(_user_id(current_user), limit=limit, offset=offset)


@router.get("/payment-methods", response_model=List[PaymentMethodRead])
async def list_payment_methods(current_user: Dict[str, Any] = Depends(get_current_user)) -> List[PaymentMethodRead]:
    return await BillingService.list_payment_methods(_user_id(current_user))


@router.put("/payment-methods/{payment_method_id}/default", response_model=List[PaymentMethodRead])
async def set_default_payment_method(
    payment_method_id: int, current_user: Dict[str, Any] = Depends(get_current_user)
) -> List[PaymentMethodRead]:
    try:
        return await BillingService.set_default_payment_method(_user_id(current_user), payment_method_id)
    except ValueError as e:
        raise to_http_exception(e)


@router.delete("/payment-methods/{payment_method_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_payment_method(payment_method_id: int, current_user: Dict[str, Any] = Depends(get_current_user)) -> None:
    try:
        await BillingService.remove_payment_method(_user_id(current_user), payment_method_id)
    except ValueError as e:
        raise to_http_exception(e)


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
) -> WebhookAck:
    """Receive Stripe events.

    The raw body is needed for signature verification.  Events that
    verify but fail to apply answer 500 so that Stripe retries them.
    """
    payload = await request.body()
    try:
        return await BillingService.handle_webhook(payload, stripe_signature)
    except WebhookProcessingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except ValueError as e:
        raise to_http_exception(e)
