"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.artist import Artist, ArtistWork
from app.models.contact_message import ContactMessage
from app.models.contact_blocklist import ContactBlocklistEntry
from app.models.billing import BillingPrice, BillingCustomer, BillingSubscription
from app.models.entitlement import PlanLimit, Entitlement
from app.models.stripe_event import StripeEvent

# Export all for convenience
__all__ = [
    "Base", "Artist", "ArtistWork", "ContactMessage", "ContactBlocklistEntry",
    "BillingPrice", "BillingCustomer", "BillingSubscription",
    "PlanLimit", "Entitlement", "StripeEvent"
]
