"""SQLAlchemy models package."""
from app.models.user import User
from app.models.session import SessionAttendance, SessionParticipant, TrainingSession
from app.models.dispatch import DispatchReceipt

__all__ = [
    "User",
    "TrainingSession",
    "SessionParticipant",
    "SessionAttendance",
    "DispatchReceipt",
]
