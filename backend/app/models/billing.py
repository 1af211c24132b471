"""Billing models mirrored from Stripe"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class BillingPrice(Base):
    """Stripe prices that may be sold through checkout"""
    __tablename__ = "billing_prices"

    id = Column(Integer, primary_key=True, index=True)
    stripe_price_id = Column(String(255), unique=True, nullable=False, index=True)
    plan_key = Column(String(50), nullable=False)  # 'free', 'pro', ...
    is_active = Column(Boolean, default=True, nullable=False)


class BillingCustomer(Base):
    """Mapping between an auth user and their Stripe customer"""
    __tablename__ = "billing_customers"

    id = Column(Integer, primary_key=True, index=True)
    auth_user_id = Column(String(36), unique=True, nullable=False, index=True)
    stripe_customer_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(320), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)


class BillingSubscription(Base):
    """Latest known state of a Stripe subscription"""
    __tablename__ = "billing_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    stripe_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    auth_user_id = Column(String(36), nullable=False, index=True)
    stripe_customer_id = Column(String(255), nullable=False, index=True)
    stripe_price_id = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False)  # 'active', 'trialing', 'past_due', 'canceled', ...
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)  # created time of the Stripe event last applied
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
