"""
Stripe billing integration.

Checkout sessions and cancellations are requested from the Stripe REST
API over HTTPS with ``httpx``; Stripe then reports the resulting state
through signed webhook events, which :meth:`BillingService.handle_webhook`
mirrors into ``user_subscriptions``, ``invoices`` and
``payment_methods``.  Every received event is recorded in
``subscription_events``; an event id that was processed successfully
once is acknowledged without being applied again.
"""

import hashlib
import hmac
import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from loconomy_api.app.core.config import settings
from loconomy_api.app.core.db import get_connection
from loconomy_api.app.core.errors import IntegrationError, NotFoundError
from loconomy_api.app.schemas.billing import (
    CheckoutRequest,
    CheckoutSession,
    InvoiceRead,
    PaymentMethodRead,
    WebhookAck,
)
from loconomy_api.app.services.audit_service import AuditService
from loconomy_api.app.services.subscription_service import FREE_PLAN, SubscriptionService


logger = logging.getLogger(__name__)


class WebhookProcessingError(Exception):
    """A verified webhook event could not be applied; Stripe should retry."""


def verify_stripe_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = 300,
    now: Optional[float] = None,
) -> None:
    """Check a ``Stripe-Signature`` header.

    The header carries a timestamp ``t`` and one or more ``v1``
    signatures, each an HMAC‑SHA256 of ``"{t}.{payload}"`` keyed with
    the endpoint secret.  Raises ``ValueError`` when the header is
    malformed, no signature matches or the timestamp is outside the
    tolerance window.
    """
    if not signature_header:
        raise ValueError("Missing Stripe-Signature header")
    timestamp: Optional[int] = None
    signatures: List[str] = []
    for item in signature_header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise ValueError("Invalid timestamp in Stripe-Signature header")
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise ValueError("Malformed Stripe-Signature header")

    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise ValueError("No matching signature found")
    now = time.time() if now is None else now
    if tolerance and abs(now - timestamp) > tolerance:
        raise ValueError("Timestamp outside the tolerance zone")


def _ts(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc).isoformat()


def _stripe_headers() -> Dict[str, str]:
    if not settings.stripe_secret_key:
        raise IntegrationError("Stripe is not configured")
    return {"Authorization": f"Bearer {settings.stripe_secret_key}"}


def _stripe_post(path: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """POST form data to the Stripe API and return the decoded JSON body."""
    headers = _stripe_headers()
    url = f"{settings.stripe_api_base.rstrip('/')}/{path.lstrip('/')}"
    try:
        response = httpx.post(url, headers=headers, data=data, timeout=30)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as exc:
        logger.exception("Stripe request to %s failed", path)
        raise IntegrationError(f"Stripe request failed: {exc}", upstream=True)


class BillingService:

    @classmethod
    async def create_checkout_session(cls, data: CheckoutRequest, current_user: Dict[str, Any]) -> CheckoutSession:
        """Start a Stripe Checkout flow for a paid plan.

        Plan metadata travels on the subscription so the webhook can
        attribute it to the user.
        """
        if data.plan_id == FREE_PLAN:
            raise ValueError("The free plan does not require checkout")
        plan = await SubscriptionService.get_plan(data.plan_id)
        yearly = data.billing_cycle == "yearly"
        amount = plan.price_yearly if yearly else plan.price_monthly
        user_id = current_user["user_id"]

        conn = get_connection()
        try:
            price_row = conn.execute(
                "SELECT stripe_price_id_monthly, stripe_price_id_yearly FROM subscription_plans WHERE plan_id = ?",
                (plan.plan_id,),
            ).fetchone()
            existing = SubscriptionService.current_subscription_row(user_id, conn)
        finally:
            conn.close()

        base_url = settings.app_base_url.rstrip("/")
        form: Dict[str, Any] = {
            "mode": "subscription",
            "success_url": data.success_url or f"{base_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": data.cancel_url or f"{base_url}/billing",
            "client_reference_id": str(user_id),
            "line_items[0][quantity]": "1",
            "subscription_data[metadata][user_id]": str(user_id),
            "subscription_data[metadata][plan_id]": plan.plan_id,
            "subscription_data[metadata][billing_cycle]": data.billing_cycle,
            "metadata[user_id]": str(user_id),
            "metadata[plan_id]": plan.plan_id,
        }
        price_id = price_row["stripe_price_id_yearly" if yearly else "stripe_price_id_monthly"] if price_row else None
        if price_id:
            form["line_items[0][price]"] = price_id
        else:
            form.update(
                {
                    "line_items[0][price_data][currency]": settings.default_currency.lower(),
                    "line_items[0][price_data][unit_amount]": str(int(round(amount * 100))),
                    "line_items[0][price_data][recurring][interval]": "year" if yearly else "month",
                    "line_items[0][price_data][product_data][name]": f"Loconomy {plan.name}",
                }
            )
        if existing is not None and existing["stripe_customer_id"]:
            form["customer"] = existing["stripe_customer_id"]
        else:
            form["customer_email"] = current_user.get("sub")

        session = _stripe_post("checkout/sessions", form)
        logger.info("Checkout session %s created for user %s (%s)", session.get("id"), user_id, plan.plan_id)
        await AuditService.log(user_id, "checkout", "subscription", None, {"plan_id": plan.plan_id, "cycle": data.billing_cycle})
        return CheckoutSession(session_id=session["id"], url=session["url"])

    @classmethod
    async def cancel_subscription(cls, user_id: int) -> Dict[str, Any]:
        """Cancel the active paid subscription at the end of its period."""
        conn = get_connection()
        try:
            row = conn.execute(
                """
                SELECT * FROM user_subscriptions
                WHERE user_id = ? AND status IN ('trialing', 'active')
                ORDER BY created_at DESC, id DESC LIMIT 1
                """,
                (user_id,),
            ).fetchone()
            if not row:
                raise NotFoundError("No active paid subscription")
            if row["stripe_subscription_id"] and settings.stripe_secret_key:
                _stripe_post(f"subscriptions/{row['stripe_subscription_id']}", {"cancel_at_period_end": "true"})
            conn.execute(
                "UPDATE user_subscriptions SET cancel_at_period_end = 1, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (row["id"],),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Subscription %s of user %s set to cancel at period end", row["id"], user_id)
        await AuditService.log(user_id, "cancel", "subscription", row["id"])
        return {"plan_id": row["plan_id"], "cancel_at_period_end": True, "current_period_end": row["current_period_end"]}

    @classmethod
    async def list_invoices(cls, user_id: int, limit: int = 50, offset: int = 0) -> List[InvoiceRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM invoices WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (user_id, limit, offset),
            ).fetchall()
        finally:
            conn.close()
        return [
            InvoiceRead(
                id=row["id"],
                stripe_invoice_id=row["stripe_invoice_id"],
                status=row["status"],
                amount_due=row["amount_due"],
                amount_paid=row["amount_paid"],
                currency=row["currency"],
                paid_at=row["paid_at"],
                hosted_invoice_url=row["hosted_invoice_url"],
                invoice_pdf=row["invoice_pdf"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    @classmethod
    async def list_payment_methods(cls, user_id: int) -> List[PaymentMethodRead]:
        conn = get_connection()
        try:
            rows = conn.execute(
                """
                SELECT * FROM payment_methods WHERE user_id = ? AND is_active = 1
                ORDER BY is_default DESC, created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [
            PaymentMethodRead(
                id=row["id"],
                stripe_payment_method_id=row["stripe_payment_method_id"],
                type=row["type"],
                card_brand=row["card_brand"],
                card_last4=row["card_last4"],
                card_exp_month=row["card_exp_month"],
                card_exp_year=row["card_exp_year"],
                is_default=bool(row["is_default"]),
            )
            for row in rows
        ]

    @classmethod
    async def set_default_payment_method(cls, user_id: int, payment_method_id: int) -> List[PaymentMethodRead]:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT id FROM payment_methods WHERE id = ? AND user_id = ? AND is_active = 1",
                (payment_method_id, user_id),
            ).fetchone()
            if not row:
                raise NotFoundError("Payment method not found")
            conn.execute("UPDATE payment_methods SET is_default = 0 WHERE user_id = ?", (user_id,))
            conn.execute("UPDATE payment_methods SET is_default = 1 WHERE id = ?", (payment_method_id,))
            conn.commit()
        finally:
            conn.close()
        return await cls.list_payment_methods(user_id)

    @classmethod
    async def remove_payment_method(cls, user_id: int, payment_method_id: int) -> None:
        conn = get_connection()
        try:
            cursor = conn.execute(
                "UPDATE payment_methods SET is_active = 0, is_default = 0 WHERE id = ? AND user_id = ? AND is_active = 1",
                (payment_method_id, user_id),
            )
            conn.commit()
        finally:
            conn.close()
        if cursor.rowcount == 0:
            raise NotFoundError("Payment method not found")

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    @classmethod
    async def handle_webhook(cls, payload: bytes, signature_header: Optional[str]) -> WebhookAck:
        """Verify and apply a Stripe webhook event.

        Raises ``IntegrationError`` when no webhook secret is configured,
        ``ValueError`` for bad signatures or payloads and
        ``WebhookProcessingError`` when a verified event fails to apply.
        """
        if not settings.stripe_webhook_secret:
            raise IntegrationError("Stripe webhooks are not configured")
        verify_stripe_signature(
            payload, signature_header, settings.stripe_webhook_secret, settings.stripe_webhook_tolerance
        )
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValueError("Invalid webhook payload")
        event_id = event.get("id")
        event_type = event.get("type") or "unknown"
        obj = (event.get("data") or {}).get("object") or {}

        conn = get_connection()
        try:
            if event_id and conn.execute(
                "SELECT 1 FROM subscription_events WHERE stripe_event_id = ? AND processed = 1", (event_id,)
            ).fetchone():
                logger.info("Stripe event %s already processed", event_id)
                return WebhookAck(event_type=event_type, duplicate=True)

            handler = cls._HANDLERS.get(event_type)
            user_id: Optional[int] = None
            try:
                if handler is None:
                    logger.info("Unhandled Stripe event type %s", event_type)
                else:
                    user_id = handler(conn, obj)
                conn.execute(
                    "INSERT INTO subscription_events (stripe_event_id, event_type, user_id, processed) VALUES (?, ?, ?, 1)",
                    (event_id, event_type, user_id),
                )
                conn.commit()
            except (KeyError, TypeError, ValueError, sqlite3.Error) as exc:
                conn.rollback()
                logger.exception("Failed to process Stripe event %s (%s)", event_id, event_type)
                conn.execute(
                    "INSERT INTO subscription_events (stripe_event_id, event_type, processed, error_message) VALUES (?, ?, 0, ?)",
                    (event_id, event_type, str(exc)),
                )
                conn.commit()
                raise WebhookProcessingError(str(exc))
        finally:
            conn.close()
        return WebhookAck(event_type=event_type)

    @staticmethod
    def _user_for_customer(conn: sqlite3.Connection, customer_id: Optional[str]) -> Optional[int]:
        if not customer_id:
            return None
        row = conn.execute(
            "SELECT user_id FROM user_subscriptions WHERE stripe_customer_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (customer_id,),
        ).fetchone()
        return row["user_id"] if row else None

    @staticmethod
    def _plan_for_price(conn: sqlite3.Connection, price_id: Optional[str]) -> Optional[str]:
        if not price_id:
            return None
        row = conn.execute(
            "SELECT plan_id FROM subscription_plans WHERE stripe_price_id_monthly = ? OR stripe_price_id_yearly = ?",
            (price_id, price_id),
        ).fetchone()
        return row["plan_id"] if row else None

    @classmethod
    def _on_subscription_updated(cls, conn: sqlite3.Connection, sub: Dict[str, Any]) -> Optional[int]:
        metadata = sub.get("metadata") or {}
        stripe_id = sub["id"]
        existing = conn.execute(
            "SELECT * FROM user_subscriptions WHERE stripe_subscription_id = ?", (stripe_id,)
        ).fetchone()
        items = (sub.get("items") or {}).get("data") or []
        price_id = items[0]["price"]["id"] if items and items[0].get("price") else None

        user_id = metadata.get("user_id") or (existing["user_id"] if existing else None)
        if user_id is None:
            user_id = cls._user_for_customer(conn, sub.get("customer"))
        if user_id is None:
            raise ValueError("No user_id in subscription metadata")
        plan_id = (
            metadata.get("plan_id")
            or cls._plan_for_price(conn, price_id)
            or (existing["plan_id"] if existing else None)
        )
        if not plan_id:
            raise ValueError("Cannot determine the plan of the subscription")

        values = (
            int(user_id),
            plan_id,
            sub.get("status", "incomplete"),
            metadata.get("billing_cycle") or (existing["billing_cycle"] if existing else "monthly"),
            sub.get("customer"),
            price_id,
            _ts(sub.get("current_period_start")),
            _ts(sub.get("current_period_end")),
            _ts(sub.get("trial_end")),
            1 if sub.get("cancel_at_period_end") else 0,
            _ts(sub.get("canceled_at")),
            _ts(sub.get("ended_at")),
        )
        if existing:
            conn.execute(
                """
                UPDATE user_subscriptions SET user_id = ?, plan_id = ?, status = ?, billing_cycle = ?,
                    stripe_customer_id = ?, stripe_price_id = ?, current_period_start = ?, current_period_end = ?,
                    trial_end = ?, cancel_at_period_end = ?, canceled_at = ?, ended_at = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE stripe_subscription_id = ?
                """,
                (*values, stripe_id),
            )
        else:
            conn.execute(
                """
                INSERT INTO user_subscriptions (user_id, plan_id, status, billing_cycle, stripe_customer_id,
                    stripe_price_id, current_period_start, current_period_end, trial_end, cancel_at_period_end,
                    canceled_at, ended_at, stripe_subscription_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (*values, stripe_id),
            )
        logger.info("Subscription %s of user %s is now %s on %s", stripe_id, user_id, values[2], plan_id)
        conn.execute(
            "INSERT INTO notifications (user_id, type, title, message) VALUES (?, 'subscription_updated', ?, ?)",
            (int(user_id), "Subscription updated", f"Your {plan_id} subscription is {values[2]}."),
        )
        return int(user_id)

    @classmethod
    def _on_subscription_deleted(cls, conn: sqlite3.Connection, sub: Dict[str, Any]) -> Optional[int]:
        row = conn.execute(
            "SELECT user_id FROM user_subscriptions WHERE stripe_subscription_id = ?", (sub["id"],)
        ).fetchone()
        conn.execute(
            """
            UPDATE user_subscriptions SET status = 'canceled', ended_at = ?, updated_at = CURRENT_TIMESTAMP
            WHERE stripe_subscription_id = ?
            """,
            (datetime.now(timezone.utc).isoformat(), sub["id"]),
        )
        if row:
            conn.execute(
                "INSERT INTO notifications (user_id, type, title, message) VALUES (?, 'subscription_updated', ?, ?)",
                (row["user_id"], "Subscription ended", "Your subscription has ended; you are now on the free plan."),
            )
        return row["user_id"] if row else None

    @classmethod
    def _upsert_invoice(cls, conn: sqlite3.Connection, invoice: Dict[str, Any], paid: bool) -> Optional[int]:
        sub_row = None
        if invoice.get("subscription"):
            sub_row = conn.execute(
                "SELECT id, user_id FROM user_subscriptions WHERE stripe_subscription_id = ?",
                (invoice["subscription"],),
            ).fetchone()
        user_id = sub_row["user_id"] if sub_row else cls._user_for_customer(conn, invoice.get("customer"))
        if user_id is None:
            logger.warning("Could not find user for invoice %s", invoice.get("id"))
            return None
        conn.execute(
            """
            INSERT INTO invoices (user_id, subscription_id, stripe_invoice_id, status, amount_due, amount_paid,
                currency, paid_at, hosted_invoice_url, invoice_pdf)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(stripe_invoice_id) DO UPDATE SET status = excluded.status,
                amount_due = excluded.amount_due, amount_paid = excluded.amount_paid,
                paid_at = excluded.paid_at, hosted_invoice_url = excluded.hosted_invoice_url,
                invoice_pdf = excluded.invoice_pdf
            """,
            (
                user_id,
                sub_row["id"] if sub_row else None,
                invoice["id"],
                "paid" if paid else "open",
                (invoice.get("amount_due") or 0) / 100,
                (invoice.get("amount_paid") or 0) / 100,
                invoice.get("currency") or settings.default_currency.lower(),
                datetime.now(timezone.utc).isoformat() if paid else None,
                invoice.get("hosted_invoice_url"),
                invoice.get("invoice_pdf"),
            ),
        )
        if paid:
            amount = (invoice.get("amount_paid") or 0) / 100
            conn.execute(
                "INSERT INTO notifications (user_id, type, title, message) VALUES (?, 'payment_received', ?, ?)",
                (user_id, "Payment received", f"We received your payment of {amount:.2f} {(invoice.get('currency') or '').upper()}."),
            )
        return user_id

    @classmethod
    def _on_invoice_paid(cls, conn: sqlite3.Connection, invoice: Dict[str, Any]) -> Optional[int]:
        return cls._upsert_invoice(conn, invoice, paid=True)

    @classmethod
    def _on_invoice_failed(cls, conn: sqlite3.Connection, invoice: Dict[str, Any]) -> Optional[int]:
        return cls._upsert_invoice(conn, invoice, paid=False)

    @classmethod
    def _on_payment_method_attached(cls, conn: sqlite3.Connection, pm: Dict[str, Any]) -> Optional[int]:
        user_id = cls._user_for_customer(conn, pm.get("customer"))
        if user_id is None:
            logger.warning("Payment method %s attached to unknown customer", pm.get("id"))
            return None
        card = pm.get("card") or {}
        has_default = conn.execute(
            "SELECT 1 FROM payment_methods WHERE user_id = ? AND is_default = 1 AND is_active = 1", (user_id,)
        ).fetchone()
        conn.execute(
            """
            INSERT INTO payment_methods (user_id, stripe_payment_method_id, stripe_customer_id, type, card_brand,
                card_last4, card_exp_month, card_exp_year, is_default, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            ON CONFLICT(stripe_payment_method_id) DO UPDATE SET is_active = 1, card_brand = excluded.card_brand,
                card_last4 = excluded.card_last4, card_exp_month = excluded.card_exp_month,
                card_exp_year = excluded.card_exp_year
            """,
            (
                user_id,
                pm["id"],
                pm.get("customer"),
                pm.get("type", "card"),
                card.get("brand"),
                card.get("last4"),
                card.get("exp_month"),
                card.get("exp_year"),
                0 if has_default else 1,
            ),
        )
        return user_id

    @classmethod
    def _on_payment_method_detached(cls, conn: sqlite3.Connection, pm: Dict[str, Any]) -> Optional[int]:
        row = conn.execute(
            "SELECT user_id FROM payment_methods WHERE stripe_payment_method_id = ?", (pm["id"],)
        ).fetchone()
        conn.execute(
            "UPDATE payment_methods SET is_active = 0, is_default = 0 WHERE stripe_payment_method_id = ?",
            (pm["id"],),
        )
        return row["user_id"] if row else None

    _HANDLERS: Dict[str, Callable[[sqlite3.Connection, Dict[str, Any]], Optional[int]]] = {}


BillingService._HANDLERS.update(
    {
        "customer.subscription.created": BillingService._on_subscription_updated,
        "customer.subscription.updated": BillingService._on_subscription_updated,
        "customer.subscription.deleted": BillingService._on_subscription_deleted,
        "invoice.payment_succeeded": BillingService._on_invoice_paid,
        "invoice.payment_failed": BillingService._on_invoice_failed,
        "payment_method.attached": BillingService._on_payment_method_attached,
        "payment_method.detached": BillingService._on_payment_method_detached,
    }
)
