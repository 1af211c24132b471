"""Entitlement service - which plan features an account currently has"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.models.billing import BillingPrice, BillingSubscription
from app.models.entitlement import Entitlement, PlanLimit

logger = logging.getLogger(__name__)

FREE_PLAN = "free"

# Subscription statuses that grant the paid plan
ENTITLED_SUBSCRIPTION_STATUSES = ("active", "trialing")


@dataclass
class EffectiveLimits:
    plan_key: str
    can_receive_contact: bool


def get_effective_limits(auth_user_id: str, db: Session) -> EffectiveLimits:
    """Resolve the limits in effect for a user; accounts without an entitlement are on the free plan"""
    entitlement = db.query(Entitlement).filter(Entitlement.auth_user_id == auth_user_id).first()
    plan_key = entitlement.plan_key if entitlement else FREE_PLAN

    limits = db.query(PlanLimit).filter(PlanLimit.plan_key == plan_key).first()
    if not limits:
        logger.warning(f"No plan_limits row for plan '{plan_key}'; treating all features as disabled")
        return EffectiveLimits(plan_key=plan_key, can_receive_contact=False)

    return EffectiveLimits(plan_key=plan_key, can_receive_contact=bool(limits.can_receive_contact))


def _current_subscription(auth_user_id: str, db: Session) -> Optional[BillingSubscription]:
    return (
        db.query(BillingSubscription)
        .filter(
            BillingSubscription.auth_user_id == auth_user_id,
            BillingSubscription.status.in_(ENTITLED_SUBSCRIPTION_STATUSES),
        )
        .order_by(BillingSubscription.updated_at.desc(), BillingSubscription.id.desc())
        .first()
    )


def sync_entitlement(auth_user_id: str, db: Session) -> Entitlement:
    """Recompute a user's entitlement from their Stripe subscriptions and persist it.

    The newest active/trialing subscription decides the plan (through billing_prices);
    with none, the user falls back to the free plan.
    """
    plan_key = FREE_PLAN
    source = "free"
    subscription_id = None

    subscription = _current_subscription(auth_user_id, db)
    if subscription:
        price = db.query(BillingPrice).filter(
            BillingPrice.stripe_price_id == subscription.stripe_price_id
        ).first()
        if price:
            plan_key = price.plan_key
            source = "stripe"
            subscription_id = subscription.stripe_subscription_id
        else:
            logger.warning(
                f"Subscription {subscription.stripe_subscription_id} uses unknown price "
                f"{subscription.stripe_price_id}; keeping user {auth_user_id} on free plan"
            )

    entitlement = db.query(Entitlement).filter(Entitlement.auth_user_id == auth_user_id).first()
    if not entitlement:
        entitlement = Entitlement(auth_user_id=auth_user_id)
        db.add(entitlement)

    entitlement.plan_key = plan_key
    entitlement.source = source
    entitlement.stripe_subscription_id = subscription_id
    db.commit()
    db.refresh(entitlement)

    logger.info(f"Entitlement synced for user {auth_user_id}: plan={plan_key} source={source}")
    return entitlement
