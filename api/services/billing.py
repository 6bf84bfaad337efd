"""Stripe billing for PaperSmith plans.

Checkout sells a plan as a monthly subscription priced inline from the
Plan row. Webhook events keep the local StripeSubscription mirror and
the user's plan in step with Stripe.
"""

import json
import logging
import os
from datetime import datetime
from typing import Any, Optional

import stripe
from sqlalchemy.orm import Session

from ..database.models import Plan, StripeSubscription, User

logger = logging.getLogger(__name__)

STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
APP_URL = os.environ.get("APP_URL", "http://localhost:3000").rstrip("/")

stripe.api_key = STRIPE_SECRET_KEY


class BillingError(Exception):
    """Raised when a Stripe call fails or a webhook cannot be verified."""


class WebhookNotConfiguredError(BillingError):
    """Raised when a webhook arrives but no signing secret is configured."""


def create_checkout_session(user: User, plan: Plan):
    """Start a subscription checkout for `plan`, priced in cents."""
    try:
        return stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": (plan.currency or "USD").lower(),
                    "product_data": {"name": plan.name},
                    "unit_amount": int(round(plan.price * 100)),
                    "recurring": {"interval": "month"},
                },
                "quantity": 1,
            }],
            mode="subscription",
            customer=user.stripe_customer_id or None,
            customer_email=None if user.stripe_customer_id else user.email,
            success_url=f"{APP_URL}/dashboard?success=true",
            cancel_url=f"{APP_URL}/pricing?canceled=true",
            metadata={"userId": user.id, "planId": plan.id},
        )
    except stripe.StripeError as e:
        logger.error("Error creating checkout session: %s", e)
        raise BillingError("Failed to create checkout session") from e


def create_portal_session(customer_id: str):
    try:
        return stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{APP_URL}/dashboard",
        )
    except stripe.StripeError as e:
        logger.error("Error creating portal session: %s", e)
        raise BillingError("Failed to create portal session") from e


def get_subscription(subscription_id: str):
    try:
        return stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as e:
        logger.error("Error retrieving subscription: %s", e)
        raise BillingError("Failed to retrieve subscription") from e


def cancel_subscription(subscription_id: str):
    """Cancel at the end of the current billing period."""
    try:
        return stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
    except stripe.StripeError as e:
        logger.error("Error canceling subscription: %s", e)
        raise BillingError("Failed to cancel subscription") from e


def construct_event(payload: bytes, signature: Optional[str]) -> dict[str, Any]:
    """Verify a webhook payload against STRIPE_WEBHOOK_SECRET and decode it.

    Unsigned or wrongly signed payloads are rejected, and so is every
    payload when no secret is configured.
    """
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET not set - rejecting webhook")
        raise WebhookNotConfiguredError("Webhook signing secret is not configured")
    if not signature:
        raise BillingError("Missing Stripe-Signature header")

    try:
        event = stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise BillingError(f"Invalid payload or signature: {e}") from e

    # str() of a StripeObject is its JSON form; handlers work on plain dicts
    return json.loads(str(event))


def _from_timestamp(value) -> Optional[datetime]:
    return datetime.utcfromtimestamp(value) if value else None


def _refresh_from_stripe(subscription: StripeSubscription) -> None:
    """Copy status and period end from the live Stripe subscription."""
    try:
        remote = get_subscription(subscription.stripe_subscription_id)
    except BillingError:
        logger.warning("Could not refresh subscription %s from Stripe", subscription.stripe_subscription_id)
        return

    subscription.status = getattr(remote, "status", None) or subscription.status
    subscription.cancel_at_period_end = bool(getattr(remote, "cancel_at_period_end", False))
    subscription.current_period_end = _from_timestamp(getattr(remote, "current_period_end", None))


def _checkout_completed(db: Session, session: dict[str, Any]) -> None:
    metadata = session.get("metadata") or {}
    user = db.query(User).filter_by(id=metadata.get("userId")).first()
    plan = db.query(Plan).filter_by(id=metadata.get("planId")).first()
    if not user or not plan:
        logger.warning("Checkout completed for unknown user/plan: %s", metadata)
        return

    subscription_id = session.get("subscription")
    customer_id = session.get("customer")

    subscription = None
    if subscription_id:
        subscription = db.query(StripeSubscription).filter_by(
            stripe_subscription_id=subscription_id
        ).first()
    if subscription is None:
        subscription = StripeSubscription(user_id=user.id, stripe_subscription_id=subscription_id)
        db.add(subscription)

    subscription.plan_id = plan.id
    subscription.stripe_customer_id = customer_id
    subscription.status = "active"
    subscription.amount = plan.price
    subscription.currency = plan.currency or "USD"

    if subscription_id:
        _refresh_from_stripe(subscription)

    user.plan_id = plan.id
    if customer_id:
        user.stripe_customer_id = customer_id
    logger.info("User %s subscribed to plan %s", user.id, plan.name)


def _subscription_changed(db: Session, data: dict[str, Any], deleted: bool) -> None:
    subscription = db.query(StripeSubscription).filter_by(
        stripe_subscription_id=data.get("id")
    ).first()
    if subscription is None:
        logger.warning("Webhook for unknown subscription %s", data.get("id"))
        return

    subscription.status = "canceled" if deleted else data.get("status", subscription.status)
    subscription.cancel_at_period_end = bool(data.get("cancel_at_period_end"))
    subscription.current_period_end = _from_timestamp(data.get("current_period_end"))

    if deleted:
        free_plan = db.query(Plan).filter_by(tier="FREE", is_active=True).first()
        user = subscription.user
        if user is not None:
            user.plan_id = free_plan.id if free_plan else None
        logger.info("Subscription %s ended", subscription.stripe_subscription_id)


def handle_webhook_event(db: Session, event: dict[str, Any]) -> bool:
    """Apply a decoded webhook event. Returns False for ignored event types."""
    event_type = event.get("type")
    data = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        _checkout_completed(db, data)
    elif event_type == "customer.subscription.updated":
        _subscription_changed(db, data, deleted=False)
    elif event_type == "customer.subscription.deleted":
        _subscription_changed(db, data, deleted=True)
    else:
        logger.info("Ignoring Stripe event %s", event_type)
        return False

    db.commit()
    return True
