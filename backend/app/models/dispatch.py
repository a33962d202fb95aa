"""Dispatch receipt model for per-recipient session notifications."""
import uuid

from sqlalchemy import Column, ForeignKey, Index, String, UniqueConstraint

from app.database import Base


class DispatchReceipt(Base):
    """Claim on a (rule, session, recipient) triple.

    Inserting the row is the claim: the unique constraint lets exactly one
    concurrent dispatcher win. ``delivered_at`` stays null until the send
    succeeds; undelivered rows are removed when the send fails.
    """

    __tablename__ = "dispatch_receipts"
    __table_args__ = (
        UniqueConstraint("rule", "session_id", "user_id", name="uq_dispatch_receipt"),
        Index("ix_dispatch_receipts_session_rule", "session_id", "rule"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    rule = Column(String(50), nullable=False)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    claimed_at = Column(String(26), nullable=False)
    delivered_at = Column(String(26))
