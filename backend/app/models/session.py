"""Training session models."""
import uuid
from datetime import datetime

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class TrainingSession(Base):
    """A scheduled, location-bound training session."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_status_date", "status", "date"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sport = Column(String(50), nullable=False)

    # Location
    location = Column(String(255), nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)

    # Schedule, local clock of the canonical timezone
    date = Column(String(10), nullable=False)  # YYYY-MM-DD
    start_time = Column(String(8), nullable=False)  # HH:MM or HH:MM:SS
    duration = Column(Integer, default=60)  # minutes
    max_participants = Column(Integer, default=4)

    # active, cancelled, completed
    status = Column(String(20), default="active", nullable=False)

    # Dispatch markers, SQLite booleans that only ever go 0 -> 1
    reminder_2hr_sent = Column(Integer, default=0, nullable=False)
    reminder_1hr_sent = Column(Integer, default=0, nullable=False)
    reminder_15min_sent = Column(Integer, default=0, nullable=False)
    followup_sent = Column(Integer, default=0, nullable=False)

    created_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())
    updated_at = Column(String(26), default=lambda: datetime.utcnow().isoformat(), onupdate=lambda: datetime.utcnow().isoformat())

    # Relationships
    creator = relationship("User", back_populates="hosted_sessions")
    participants = relationship("SessionParticipant", back_populates="session", cascade="all, delete-orphan")
    attendance = relationship("SessionAttendance", back_populates="session", cascade="all, delete-orphan")


class SessionParticipant(Base):
    """A user's join record for a session."""

    __tablename__ = "session_participants"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participant"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, confirmed
    joined_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())

    # Relationships
    session = relationship("TrainingSession", back_populates="participants")
    user = relationship("User", back_populates="participations")


class SessionAttendance(Base):
    """Whether a user actually showed up to a session."""

    __tablename__ = "session_attendance"
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_attendance"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    attended = Column(Integer, default=0)  # SQLite boolean
    marked_at = Column(String(26), default=lambda: datetime.utcnow().isoformat())

    # Relationships
    session = relationship("TrainingSession", back_populates="attendance")
    user = relationship("User")
