"""Idempotency guard for notification dispatch.

Claims are single conditional writes against the store, so two overlapping
engine runs racing on the same (recipient, rule) produce exactly one
winner. A claim is durable before the send happens; a failed send releases
it so the next invocation retries, a successful send commits it.
"""
from dataclasses import dataclass
from datetime import datetime
import json
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.dispatch import DispatchReceipt
from app.models.session import TrainingSession
from app.models.user import User
from app.services.candidates import Candidate
from app.services.messages import push_recent
from app.services.rules import DispatchRule, RuleKind
from app.services.time_windows import DispatchWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Claim:
    """A won claim, carrying what is needed to undo it."""

    rule: DispatchRule
    user_id: str
    claimed_at: str
    receipt_id: str | None = None
    previous_marker: str | None = None
    previous_recent: str | None = None
    restores_recent: bool = False


class DispatchGuard:
    """Compare-and-swap guard over per-entity markers."""

    def try_claim(
        self,
        db: Session,
        candidate: Candidate,
        window: DispatchWindow,
        variant_index: int | None = None,
    ) -> Claim | None:
        """Claim ``candidate`` for ``window.rule``; ``None`` when someone else owns it."""
        if window.rule.kind == RuleKind.SESSION:
            return self._claim_receipt(db, candidate, window)
        return self._claim_user_marker(db, candidate, window, variant_index)

    def commit(self, db: Session, claim: Claim) -> None:
        """Record a successful delivery."""
        if claim.receipt_id is None:
            # User markers and recency lists were written by the claim itself
            return
        db.query(DispatchReceipt).filter(
            DispatchReceipt.id == claim.receipt_id,
        ).update(
            {"delivered_at": datetime.utcnow().isoformat()},
            synchronize_session=False,
        )
        db.commit()

    def release(self, db: Session, claim: Claim) -> None:
        """Undo a claim whose delivery failed so it can be retried."""
        if claim.receipt_id is not None:
            db.query(DispatchReceipt).filter(
                DispatchReceipt.id == claim.receipt_id,
                DispatchReceipt.delivered_at.is_(None),
            ).delete(synchronize_session=False)
            db.commit()
            return

        rule = claim.rule
        marker_column = getattr(User, rule.marker)
        values = {rule.marker: claim.previous_marker}
        if claim.restores_recent:
            values[rule.recency_field] = claim.previous_recent
        db.query(User).filter(
            User.id == claim.user_id,
            marker_column == claim.claimed_at,
        ).update(values, synchronize_session=False)
        db.commit()

    def complete_session(self, db: Session, session_id: str, rule: DispatchRule) -> bool:
        """Flip a session's marker 0 -> 1. Returns whether this call flipped it.

        The flip is refused while any receipt for the session is still
        undelivered, since an overlapping run may yet release it.
        """
        if not rule.marker:
            return False
        marker_column = getattr(TrainingSession, rule.marker)
        in_flight = db.query(DispatchReceipt.id).filter(
            DispatchReceipt.session_id == session_id,
            DispatchReceipt.rule == rule.name,
            DispatchReceipt.delivered_at.is_(None),
        ).exists()
        updated = db.query(TrainingSession).filter(
            TrainingSession.id == session_id,
            marker_column == 0,
            ~in_flight,
        ).update({rule.marker: 1}, synchronize_session=False)
        db.commit()
        return updated == 1

    def _claim_receipt(self, db: Session, candidate: Candidate, window: DispatchWindow) -> Claim | None:
        rule = window.rule
        session = candidate.session
        if rule.marker:
            marker_column = getattr(TrainingSession, rule.marker)
            still_open = db.query(TrainingSession.id).filter(
                TrainingSession.id == session.id,
                marker_column == 0,
            ).first()
            if not still_open:
                return None

        claimed_at = window.now.isoformat()
        receipt = DispatchReceipt(
            rule=rule.name,
            session_id=session.id,
            user_id=candidate.recipient.id,
            claimed_at=claimed_at,
        )
        db.add(receipt)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.debug(f"Lost claim race for {rule.name} session={session.id} user={candidate.recipient.id}")
            return None

        return Claim(
            rule=rule,
            user_id=candidate.recipient.id,
            claimed_at=claimed_at,
            receipt_id=receipt.id,
        )

    def _claim_user_marker(
        self,
        db: Session,
        candidate: Candidate,
        window: DispatchWindow,
        variant_index: int | None,
    ) -> Claim | None:
        rule = window.rule
        user = candidate.recipient
        marker_column = getattr(User, rule.marker)
        claimed_at = window.now.isoformat()

        previous_marker = getattr(user, rule.marker)
        values = {rule.marker: claimed_at}
        previous_recent = None
        if rule.recency_field and variant_index is not None:
            previous_recent = getattr(user, rule.recency_field)
            values[rule.recency_field] = json.dumps(
                push_recent(candidate.recent, variant_index, rule.recency_cap)
            )

        updated = db.query(User).filter(
            User.id == user.id,
            or_(marker_column.is_(None), marker_column < window.period_start.isoformat()),
        ).update(values, synchronize_session=False)
        db.commit()

        if updated != 1:
            logger.debug(f"Lost claim race for {rule.name} user={user.id}")
            return None

        return Claim(
            rule=rule,
            user_id=user.id,
            claimed_at=claimed_at,
            previous_marker=previous_marker,
            previous_recent=previous_recent,
            restores_recent=rule.recency_field in values,
        )
