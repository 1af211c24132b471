"""Artist model"""
import uuid
from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class Artist(Base):
    """Public artist profile, keyed by handle"""
    __tablename__ = "artists"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    handle = Column(String(64), unique=True, nullable=False, index=True)
    auth_user_id = Column(String(36), unique=True, nullable=False, index=True)
    display_name = Column(String(120), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    banner_url = Column(String(1024), nullable=True)
    bio = Column(Text, nullable=True)
    location_id = Column(String(64), nullable=True)
    categories = Column(JSON, nullable=False, default=list)  # list of category slugs
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    works = relationship("ArtistWork", back_populates="artist", cascade="all, delete-orphan")


class ArtistWork(Base):
    """A portfolio work attached to an artist"""
    __tablename__ = "artist_works"

    id = Column(Integer, primary_key=True, index=True)
    artist_id = Column(String(36), ForeignKey("artists.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    artist = relationship("Artist", back_populates="works")
