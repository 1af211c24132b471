"""ContactBlocklistEntry model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from datetime import datetime, timezone
from app.models.base import Base


class ContactBlocklistEntry(Base):
    """Deny-list of peppered identity hashes; artist_id NULL means global"""
    __tablename__ = "contact_blocklist"

    id = Column(Integer, primary_key=True, index=True)
    artist_id = Column(String(36), ForeignKey("artists.id", ondelete="CASCADE"), nullable=True, index=True)
    from_email_hash = Column(String(64), nullable=True, index=True)
    ip_hash = Column(String(64), nullable=True, index=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
