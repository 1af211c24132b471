"""ContactMessage model"""
import uuid
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index
from datetime import datetime, timezone
from app.models.base import Base

# Status values
STATUS_ACCEPTED = "accepted"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_REJECTED = "rejected"
STATUS_THROTTLED = "throttled"

# Statuses that consume rate-limit quota
QUOTA_STATUSES = (STATUS_ACCEPTED, STATUS_SENT, STATUS_FAILED)


class ContactMessage(Base):
    """Audit row for every contact-form attempt that reached the abuse gate"""
    __tablename__ = "contact_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    artist_id = Column(String(36), ForeignKey("artists.id", ondelete="CASCADE"), nullable=False, index=True)
    artist_auth_user_id = Column(String(36), nullable=False)
    from_name = Column(String(120), nullable=False)
    from_email = Column(String(320), nullable=False)
    from_email_hash = Column(String(64), nullable=False, index=True)
    subject = Column(String(160), nullable=False)
    message = Column(Text, nullable=False)
    ip_hash = Column(String(64), nullable=True, index=True)
    user_agent = Column(Text, nullable=True)
    turnstile_ok = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), nullable=False, index=True)  # 'accepted', 'sent', 'failed', 'rejected', 'throttled'
    error_code = Column(String(64), nullable=True)
    resend_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('idx_contact_messages_email_hash_created', 'from_email_hash', 'created_at'),
        Index('idx_contact_messages_ip_hash_created', 'ip_hash', 'created_at'),
    )
