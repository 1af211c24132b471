import logging
import stripe
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.artist import Artist
from app.models.billing import BillingCustomer, BillingPrice
from app.models.stripe_event import StripeEvent, EVENT_PROCESSING, EVENT_DONE, EVENT_FAILED
from app.services.identity_service import AuthUser

logger = logging.getLogger("billing")

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.api_version = settings.STRIPE_API_VERSION

# A 'processing' event older than this is assumed abandoned and may be re-run
STALE_PROCESSING_AFTER = timedelta(minutes=10)

# Profile fields required before upgrading, in the order they are reported
PROFILE_REQUIREMENTS = ("avatar_url", "banner_url", "bio", "location_id", "categories", "works")


class InvalidPriceError(ValueError):
    pass


class NoCustomerError(ValueError):
    pass


class ProfileIncompleteError(ValueError):
    """Raised when an artist profile is not complete enough to upgrade"""

    def __init__(self, missing: List[str]):
        super().__init__(f"Profile incomplete: {', '.join(missing)}")
        self.missing = missing


# ============================================================================
# STRIPE OBJECT ACCESS HELPERS
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    # Item access first: 'items' and friends collide with dict methods
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        value = None if isinstance(obj, dict) else getattr(obj, key, None)
    return default if value is None else value


def _stripe_id(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an ID string or as the expanded object"""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return _get_stripe_value(value, "id")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# PROFILE ELIGIBILITY
# ============================================================================

def get_profile_missing_keys(artist: Optional[Artist]) -> List[str]:
    """Profile requirements an artist has not met yet (all of them when there is no profile)"""
    if artist is None:
        return list(PROFILE_REQUIREMENTS)

    missing = []
    for key in ("avatar_url", "banner_url", "bio", "location_id"):
        value = getattr(artist, key)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(key)
    if not artist.categories:
        missing.append("categories")
    if not artist.works:
        missing.append("works")
    return missing


# ============================================================================
# CUSTOMERS
# ============================================================================

def get_customer_id(auth_user_id: str, db: Session) -> Optional[str]:
    customer = db.query(BillingCustomer).filter(BillingCustomer.auth_user_id == auth_user_id).first()
    return customer.stripe_customer_id if customer else None


def get_auth_user_id_for_customer(customer_id: str, db: Session) -> Optional[str]:
    customer = db.query(BillingCustomer).filter(BillingCustomer.stripe_customer_id == customer_id).first()
    return customer.auth_user_id if customer else None


def upsert_billing_customer(auth_user_id: str, customer_id: str, db: Session,
                            email: Optional[str] = None) -> BillingCustomer:
    """Insert or update the customer mapping, keyed by auth user. A None email leaves the stored one."""
    customer = db.query(BillingCustomer).filter(BillingCustomer.auth_user_id == auth_user_id).first()
    if not customer:
        customer = BillingCustomer(auth_user_id=auth_user_id)
        db.add(customer)

    customer.stripe_customer_id = customer_id
    if email is not None:
        customer.email = email
    customer.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(customer)
    return customer


def ensure_stripe_customer(user: AuthUser, db: Session) -> str:
    """Return the user's Stripe customer ID, creating the customer on first checkout"""
    customer_id = get_customer_id(user.id, db)
    if customer_id:
        return customer_id

    customer = stripe.Customer.create(
        email=user.email,
        metadata={"auth_user_id": user.id}
    )
    upsert_billing_customer(user.id, customer.id, db, email=user.email)
    logger.info(f"Created Stripe customer {customer.id} for user {user.id}")
    return customer.id


# ============================================================================
# CHECKOUT & PORTAL
# ============================================================================

def create_checkout_session(user: AuthUser, price_id: str, base_url: str, db: Session) -> str:
    """
    Create a subscription Checkout Session for a signed-in artist.

    Args:
        user: Authenticated Supabase user
        price_id: Stripe price the user picked
        base_url: Site origin used for the success/cancel redirects
        db: Database session

    Returns:
        The hosted checkout URL

    Raises:
        InvalidPriceError: Unknown or inactive price
        ProfileIncompleteError: Artist profile misses upgrade requirements
    """
    price = db.query(BillingPrice).filter(BillingPrice.stripe_price_id == price_id).first()
    if not price or not price.is_active:
        raise InvalidPriceError("Invalid price")

    artist = db.query(Artist).filter(Artist.auth_user_id == user.id).first()
    missing = get_profile_missing_keys(artist)
    if missing:
        raise ProfileIncompleteError(missing)

    customer_id = ensure_stripe_customer(user, db)

    # auth_user_id travels on the session and on the subscription so every webhook can map it back
    session = stripe.checkout.Session.create(
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=f"{base_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/billing/cancel",
        client_reference_id=user.id,
        metadata={"auth_user_id": user.id},
        subscription_data={"metadata": {"auth_user_id": user.id}},
        allow_promotion_codes=True,
    )
    logger.info(f"Created checkout session {session.id} for user {user.id} (price {price_id})")
    return session.url


def create_portal_session(auth_user_id: str, base_url: str, db: Session) -> str:
    """Create a billing-portal session; raises NoCustomerError if the user never checked out"""
    customer_id = get_customer_id(auth_user_id, db)
    if not customer_id:
        raise NoCustomerError("No customer")

    session = stripe.billing_portal.Session.create(
        customer=customer_id,
        return_url=f"{base_url}/settings"
    )
    return session.url


# ============================================================================
# WEBHOOK EVENT LOG
# ============================================================================

def begin_stripe_event(event_id: str, event_type: str, payload: Optional[Dict], db: Session) -> bool:
    """
    Claim a webhook event for processing.

    Returns True when the caller should process the event: it is new, it failed
    before, or a previous attempt has been stuck in 'processing' for too long.
    Returns False for events that are done or currently in progress.
    """
    now = datetime.now(timezone.utc)
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()

    if not stripe_event:
        db.add(StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            status=EVENT_PROCESSING,
            payload=payload,
            started_at=now
        ))
        try:
            db.commit()
        except IntegrityError:
            # Concurrent delivery claimed it first
            db.rollback()
            return False
        return True

    if stripe_event.status == EVENT_DONE:
        return False

    if stripe_event.status == EVENT_PROCESSING and as_utc(stripe_event.started_at) > now - STALE_PROCESSING_AFTER:
        return False

    logger.info(f"Re-running Stripe event {event_id} (previous status: {stripe_event.status})")
    stripe_event.status = EVENT_PROCESSING
    stripe_event.started_at = now
    stripe_event.error_message = None
    db.commit()
    return True


def mark_stripe_event_done(event_id: str, db: Session):
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if stripe_event:
        stripe_event.status = EVENT_DONE
        stripe_event.processed_at = datetime.now(timezone.utc)
        stripe_event.error_message = None
        db.commit()


def mark_stripe_event_failed(event_id: str, error_message: str, db: Session):
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if stripe_event:
        stripe_event.status = EVENT_FAILED
        stripe_event.processed_at = datetime.now(timezone.utc)
        stripe_event.error_message = error_message
        db.commit()
