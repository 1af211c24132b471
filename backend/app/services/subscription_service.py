"""Subscription service - Stripe webhook processing and subscription state"""
import json
import logging
import stripe
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import stripe_webhook_events_counter
from app.models.billing import BillingSubscription
from app.services.entitlement_service import sync_entitlement
from app.services.revalidation_service import revalidate_artist_cache
from app.services.stripe_service import (
    _get_stripe_value, _stripe_id, as_utc,
    begin_stripe_event, mark_stripe_event_done, mark_stripe_event_failed,
    upsert_billing_customer, get_auth_user_id_for_customer
)

logger = logging.getLogger("billing")

SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)
INVOICE_PAID_EVENTS = ("invoice.paid", "invoice.payment_succeeded")


class WebhookProcessingError(Exception):
    """An event that cannot be applied; Stripe should retry it"""
    pass


# ============================================================================
# STRIPE PAYLOAD HELPERS
# ============================================================================

def _to_datetime(ts: Optional[int]) -> Optional[datetime]:
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _first_item(subscription: Any) -> Any:
    items = _get_stripe_value(_get_stripe_value(subscription, "items"), "data") or []
    return items[0] if items else None


def extract_period_seconds(subscription: Any, field: str) -> Optional[int]:
    """Period boundary from the subscription, falling back to its first item (newer API versions)"""
    value = _get_stripe_value(subscription, field)
    if value is not None:
        return value
    return _get_stripe_value(_first_item(subscription), field)


def extract_price_id(subscription: Any) -> Optional[str]:
    return _stripe_id(_get_stripe_value(_first_item(subscription), "price"))


def extract_invoice_ids(invoice: Any) -> Tuple[str, str]:
    """
    Find the subscription and customer an invoice belongs to.

    Depending on the API version the subscription sits at invoice.subscription,
    invoice.parent.subscription_details, invoice.subscription_details or on the
    first line item's parent; they are tried in that order.

    Raises:
        WebhookProcessingError: If either ID cannot be found
    """
    parent = _get_stripe_value(invoice, "parent")
    lines = _get_stripe_value(_get_stripe_value(invoice, "lines"), "data") or []
    line_parent = _get_stripe_value(lines[0], "parent") if lines else None

    candidates = (
        ("invoice.subscription", _get_stripe_value(invoice, "subscription")),
        ("invoice.parent.subscription_details.subscription",
         _get_stripe_value(_get_stripe_value(parent, "subscription_details"), "subscription")),
        ("invoice.subscription_details.subscription",
         _get_stripe_value(_get_stripe_value(invoice, "subscription_details"), "subscription")),
        ("invoice.lines.data[0].parent.subscription_item_details.subscription",
         _get_stripe_value(_get_stripe_value(line_parent, "subscription_item_details"), "subscription")),
    )

    subscription_id = None
    for source, value in candidates:
        subscription_id = _stripe_id(value)
        if subscription_id:
            if settings.DEBUG_STRIPE:
                logger.info(f"Resolved subscription for invoice {_get_stripe_value(invoice, 'id')} from {source}")
            break

    customer_id = _stripe_id(_get_stripe_value(invoice, "customer"))

    if not subscription_id or not customer_id:
        logger.error(
            f"Invoice {_get_stripe_value(invoice, 'id')} missing IDs "
            f"(billing_reason={_get_stripe_value(invoice, 'billing_reason')}, "
            f"has_parent={parent is not None}, has_lines={bool(lines)})"
        )
        raise WebhookProcessingError(
            f"invoice: missing subscription or customer ID for invoice {_get_stripe_value(invoice, 'id')}. "
            f"subscriptionId: {subscription_id or 'MISSING'}, customerId: {customer_id or 'MISSING'}"
        )

    return subscription_id, customer_id


# ============================================================================
# SUBSCRIPTION STATE
# ============================================================================

def upsert_subscription_safe(
    db: Session,
    stripe_subscription_id: str,
    auth_user_id: str,
    stripe_customer_id: str,
    stripe_price_id: str,
    status: str,
    cancel_at_period_end: bool,
    current_period_start: Optional[datetime],
    current_period_end: Optional[datetime],
    ended_at: Optional[datetime],
    event_created_at: datetime
) -> bool:
    """Insert or update a subscription row unless a newer event has already been applied.

    Returns:
        bool: False when the event was older than the stored state and ignored
    """
    sub_record = db.query(BillingSubscription).filter(
        BillingSubscription.stripe_subscription_id == stripe_subscription_id
    ).first()

    if sub_record and sub_record.last_event_at and as_utc(sub_record.last_event_at) > event_created_at:
        logger.info(
            f"Ignoring out-of-order event for subscription {stripe_subscription_id} "
            f"({event_created_at.isoformat()} older than {as_utc(sub_record.last_event_at).isoformat()})"
        )
        return False

    if not sub_record:
        sub_record = BillingSubscription(stripe_subscription_id=stripe_subscription_id)
        db.add(sub_record)

    sub_record.auth_user_id = auth_user_id
    sub_record.stripe_customer_id = stripe_customer_id
    sub_record.stripe_price_id = stripe_price_id
    sub_record.status = status
    sub_record.cancel_at_period_end = bool(cancel_at_period_end)
    sub_record.current_period_start = current_period_start
    sub_record.current_period_end = current_period_end
    sub_record.ended_at = ended_at
    sub_record.last_event_at = event_created_at
    sub_record.updated_at = datetime.now(timezone.utc)
    db.commit()
    return True


def _apply_subscription(subscription: Any, auth_user_id: str, customer_id: str,
                        event_created_at: datetime, db: Session):
    price_id = extract_price_id(subscription)
    if not price_id:
        raise WebhookProcessingError(f"no price id for subscription {_get_stripe_value(subscription, 'id')}")

    upsert_subscription_safe(
        db,
        stripe_subscription_id=_get_stripe_value(subscription, "id"),
        auth_user_id=auth_user_id,
        stripe_customer_id=customer_id,
        stripe_price_id=price_id,
        status=_get_stripe_value(subscription, "status"),
        cancel_at_period_end=_get_stripe_value(subscription, "cancel_at_period_end", False),
        current_period_start=_to_datetime(extract_period_seconds(subscription, "current_period_start")),
        current_period_end=_to_datetime(extract_period_seconds(subscription, "current_period_end")),
        ended_at=_to_datetime(_get_stripe_value(subscription, "ended_at")),
        event_created_at=event_created_at
    )


def _retrieve_subscription(subscription_id: str):
    return stripe.Subscription.retrieve(subscription_id, expand=["items.data.price"])


# ============================================================================
# EVENT HANDLERS
# ============================================================================
# Each handler returns the auth user whose entitlement must be re-synced.

def handle_checkout_completed(session: Any, event_created_at: datetime, db: Session) -> str:
    metadata = _get_stripe_value(session, "metadata", {})
    auth_user_id = _get_stripe_value(metadata, "auth_user_id") or _get_stripe_value(session, "client_reference_id")
    customer_id = _stripe_id(_get_stripe_value(session, "customer"))
    if not auth_user_id or not customer_id:
        raise WebhookProcessingError("checkout.session.completed: missing auth_user_id or customerId")

    email = _get_stripe_value(_get_stripe_value(session, "customer_details"), "email")
    upsert_billing_customer(auth_user_id, customer_id, db, email=email)

    # Record the subscription now instead of waiting for customer.subscription.created
    subscription_id = _stripe_id(_get_stripe_value(session, "subscription"))
    if subscription_id:
        try:
            subscription = _retrieve_subscription(subscription_id)
        except stripe.StripeError as e:
            # customer.subscription.* events will carry it
            logger.error(f"Failed to retrieve subscription {subscription_id} from Stripe: {e}")
        else:
            if extract_price_id(subscription):
                _apply_subscription(subscription, auth_user_id, customer_id, event_created_at, db)
            else:
                logger.warning(f"No price id found for subscription {subscription_id}")

    return auth_user_id


def handle_subscription_event(subscription: Any, event_created_at: datetime, db: Session) -> str:
    """customer.subscription.created / updated / deleted"""
    sub_id = _get_stripe_value(subscription, "id")
    customer_id = _stripe_id(_get_stripe_value(subscription, "customer"))
    if not customer_id:
        raise WebhookProcessingError(f"customer.subscription: no customer for subscription {sub_id}")

    metadata = _get_stripe_value(subscription, "metadata", {})
    auth_user_id = _get_stripe_value(metadata, "auth_user_id") or get_auth_user_id_for_customer(customer_id, db)

    if not auth_user_id:
        raise WebhookProcessingError(f"customer.subscription: no auth_user_id for subscription {sub_id}")

    if not extract_price_id(subscription):
        raise WebhookProcessingError(f"customer.subscription: no price id for subscription {sub_id}")

    upsert_billing_customer(auth_user_id, customer_id, db)
    _apply_subscription(subscription, auth_user_id, customer_id, event_created_at, db)
    return auth_user_id


def handle_invoice_paid(invoice: Any, event_created_at: datetime, db: Session) -> str:
    """invoice.paid / invoice.payment_succeeded: refresh the subscription from Stripe"""
    subscription_id, customer_id = extract_invoice_ids(invoice)

    lines = _get_stripe_value(_get_stripe_value(invoice, "lines"), "data") or []
    auth_user_id = (
        _get_stripe_value(_get_stripe_value(_get_stripe_value(invoice, "subscription_details"), "metadata"), "auth_user_id")
        or (_get_stripe_value(_get_stripe_value(lines[0], "metadata"), "auth_user_id") if lines else None)
        or get_auth_user_id_for_customer(customer_id, db)
    )
    if not auth_user_id:
        raise WebhookProcessingError(f"invoice: no auth_user_id for invoice {_get_stripe_value(invoice, 'id')}")

    subscription = _retrieve_subscription(subscription_id)
    _apply_subscription(subscription, auth_user_id, customer_id, event_created_at, db)
    return auth_user_id


def handle_invoice_payment_failed(invoice: Any, db: Session) -> str:
    """Subscription status changes arrive separately; only the entitlement needs a refresh"""
    invoice_id = _get_stripe_value(invoice, "id", "unknown")
    customer_id = _stripe_id(_get_stripe_value(invoice, "customer"))
    if not customer_id:
        raise WebhookProcessingError(f"invoice.payment_failed: missing customer ID for invoice {invoice_id}")

    auth_user_id = get_auth_user_id_for_customer(customer_id, db)
    if not auth_user_id:
        raise WebhookProcessingError(f"invoice.payment_failed: no auth_user_id for invoice {invoice_id}")

    logger.warning(f"Payment failed for invoice {invoice_id} (user {auth_user_id})")
    return auth_user_id


def _dispatch(event_type: str, data: Any, event_created_at: datetime, db: Session) -> Optional[str]:
    if event_type == "checkout.session.completed":
        return handle_checkout_completed(data, event_created_at, db)
    if event_type in SUBSCRIPTION_EVENTS:
        return handle_subscription_event(data, event_created_at, db)
    if event_type in INVOICE_PAID_EVENTS:
        return handle_invoice_paid(data, event_created_at, db)
    if event_type == "invoice.payment_failed":
        return handle_invoice_payment_failed(data, db)
    logger.info(f"Unhandled Stripe event type: {event_type}")
    return None


# ============================================================================
# WEBHOOK PROCESSING
# ============================================================================

def _parse_payload(payload: bytes) -> Optional[Dict]:
    try:
        return json.loads(payload)
    except ValueError:
        return None


def process_stripe_webhook(
    payload: bytes,
    sig_header: Optional[str],
    db: Session
) -> Tuple[int, str]:
    """Process a Stripe webhook delivery

    Validates the signature, applies the livemode guard, claims the event for
    idempotency and dispatches it. Processing errors mark the event failed and
    return 500 so Stripe retries the delivery.

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Stripe signature header
        db: Database session

    Returns:
        tuple: (status_code, response text)
    """
    if not sig_header:
        return 400, "Missing stripe-signature"

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error(f"Webhook signature verification failed: {e}")
        return 400, "Invalid signature"

    event_id = event["id"]
    event_type = event["type"]

    # Before any DB writes
    livemode = bool(_get_stripe_value(event, "livemode", False))
    if livemode != settings.STRIPE_EXPECT_LIVEMODE:
        logger.warning(
            f"Livemode mismatch for event {event_id} ({event_type}): "
            f"event livemode={livemode}, expected={settings.STRIPE_EXPECT_LIVEMODE}"
        )
        stripe_webhook_events_counter.labels(event_type=event_type, outcome="livemode_mismatch").inc()
        return 200, "OK (livemode mismatch)"

    logger.info(f"Received Stripe event {event_id} of type {event_type}")

    if not begin_stripe_event(event_id, event_type, _parse_payload(payload), db):
        logger.info(f"Webhook event {event_id} already processed or in progress")
        stripe_webhook_events_counter.labels(event_type=event_type, outcome="duplicate").inc()
        return 200, "OK (duplicate)"

    event_created_at = _to_datetime(_get_stripe_value(event, "created")) or datetime.now(timezone.utc)
    data = event["data"]["object"]

    try:
        auth_user_id = _dispatch(event_type, data, event_created_at, db)
        if auth_user_id:
            sync_entitlement(auth_user_id, db)
            revalidate_artist_cache(auth_user_id, db)

        mark_stripe_event_done(event_id, db)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing webhook {event_id}: {e}", exc_info=True)
        try:
            mark_stripe_event_failed(event_id, f"{type(e).__name__}: {e}", db)
        except Exception as mark_error:
            db.rollback()
            logger.error(f"Failed to mark event {event_id} as failed: {mark_error}")
        stripe_webhook_events_counter.labels(event_type=event_type, outcome="failed").inc()
        return 500, "Webhook error"

    stripe_webhook_events_counter.labels(event_type=event_type, outcome="processed").inc()
    logger.info(f"Successfully processed webhook event {event_id} of type {event_type}")
    return 200, "OK"
