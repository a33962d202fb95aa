"""User model."""
import uuid
from datetime import datetime

from sqlalchemy import Column, Float, String, Text
from sqlalchemy.orm import relationship

from app.database import Base


class User(Base):
    """User account, projected down to what notification dispatch needs."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100))
    email = Column(String(255), unique=True, index=True)
    preferred_language = Column(String(5), default="en")

    # Channel targets (presence = eligible)
    push_subscription = Column(Text)  # Web push subscription JSON
    fcm_token = Column(String(255))  # Native app token

    # Matching
    latitude = Column(Float)
    longitude = Column(Float)
    sports = Column(Text, default="[]")  # JSON list of favourite sports

    settings = Column(Text, default="{}")  # JSON consent flags, missing = enabled
    last_active_at = Column(String(26), index=True)

    # Dispatch markers
    last_motivation_sent = Column(String(26))
    motivation_recent_messages = Column(Text, default="[]")  # JSON list of catalog indices
    last_weekly_recap_sent = Column(String(26))
    last_reengagement_sent = Column(String(26))
    last_inactive_nudge_sent = Column(String(26))

    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    updated_at = Column(String(26), default=lambda: datetime.utcnow().isoformat(), onupdate=lambda: datetime.utcnow().isoformat())

    # Relationships
    hosted_sessions = relationship("TrainingSession", back_populates="creator", cascade="all, delete-orphan")
    participations = relationship("SessionParticipant", back_populates="user", cascade="all, delete-orphan")
