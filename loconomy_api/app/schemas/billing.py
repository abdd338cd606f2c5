"""
Pydantic models for subscription plans and billing.

Subscription state is mirrored from Stripe by the webhook handler; the
API never charges cards itself.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


BillingCycle = Literal["monthly", "yearly"]
PlanId = Literal["free", "starter", "professional", "enterprise"]


class PlanRead(BaseModel):
    plan_id: str
    name: str
    description: Optional[str] = None
    price_monthly: float
    price_yearly: float
    features: Dict[str, bool]
    limits: Dict[str, int]
    display_order: int
    is_featured: bool
    monthly_display: str
    yearly_display: str
    yearly_savings_percent: int


class UsageItem(BaseModel):
    current: int
    limit: int
    limit_display: str
    percentage: int
    status: Literal["safe", "warning", "danger"]


class SubscriptionRead(BaseModel):
    plan_id: str
    plan_name: str
    status: str
    billing_cycle: str
    is_active: bool
    cancel_at_period_end: bool = False
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    features: Dict[str, bool]
    limits: Dict[str, int]
    usage: Dict[str, UsageItem]
    upgrade_recommendation: Optional[str] = None


class CheckoutRequest(BaseModel):
    plan_id: PlanId
    billing_cycle: BillingCycle = "monthly"
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSession(BaseModel):
    session_id: str
    url: str


class InvoiceRead(BaseModel):
    id: int
    stripe_invoice_id: str
    status: str
    amount_due: float
    amount_paid: float
    currency: str
    paid_at: Optional[datetime] = None
    hosted_invoice_url: Optional[str] = None
    invoice_pdf: Optional[str] = None
    created_at: Optional[datetime] = None


class PaymentMethodRead(BaseModel):
    id: int
    stripe_payment_method_id: str
    type: str
    card_brand: Optional[str] = None
    card_last4: Optional[str] = None
    card_exp_month: Optional[int] = None
    card_exp_year: Optional[int] = None
    is_default: bool


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    duplicate: bool = Field(False, description="True when the event id was already processed")


class PlanList(BaseModel):
    plans: List[PlanRead]
