"""Plan limits and per-user entitlements"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from datetime import datetime, timezone
from app.models.base import Base


class PlanLimit(Base):
    """Feature switches granted by a plan"""
    __tablename__ = "plan_limits"

    id = Column(Integer, primary_key=True, index=True)
    plan_key = Column(String(50), unique=True, nullable=False, index=True)
    can_receive_contact = Column(Boolean, default=False, nullable=False)


class Entitlement(Base):
    """Plan currently in effect for an auth user"""
    __tablename__ = "entitlements"

    id = Column(Integer, primary_key=True, index=True)
    auth_user_id = Column(String(36), unique=True, nullable=False, index=True)
    plan_key = Column(String(50), nullable=False, default="free")
    source = Column(String(20), nullable=False, default="free")  # 'free' or 'stripe'
    stripe_subscription_id = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
