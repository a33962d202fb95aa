"""Candidate selection for live dispatch windows."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models.dispatch import DispatchReceipt
from app.models.session import SessionAttendance, SessionParticipant, TrainingSession
from app.models.user import User
from app.services.rules import DispatchRule, RuleKind
from app.services.time_windows import (
    DispatchWindow,
    in_window,
    session_end_local,
    session_start_local,
)

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """One recipient of one rule, with what its message needs."""

    recipient: User
    catalog: str
    context: dict = field(default_factory=dict)
    session: TrainingSession | None = None
    role: str | None = None  # host or participant for session rules
    recent: list[int] = field(default_factory=list)


@dataclass
class CandidateBatch:
    """Selector output for one rule."""

    candidates: list[Candidate] = field(default_factory=list)
    session_ids: list[str] = field(default_factory=list)


def load_json(value: str | None, default):
    """Parse a JSON text column, falling back to ``default``."""
    if not value:
        return default
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return default
    return parsed if isinstance(parsed, type(default)) else default


def user_allows(user: User, consent_key: str | None) -> bool:
    """Consent flags default to enabled unless explicitly disabled."""
    if not consent_key:
        return True
    return load_json(user.settings, {}).get(consent_key, True) is not False


def has_channel(user: User, channel: str) -> bool:
    """Whether the user has a target for the given delivery channel."""
    if channel == "email":
        return bool(user.email)
    return bool(user.push_subscription or user.fcm_token)


def channel_filter(channel: str):
    """SQL filter equivalent of :func:`has_channel`."""
    if channel == "email":
        return User.email.isnot(None)
    return or_(User.push_subscription.isnot(None), User.fcm_token.isnot(None))


def recent_indices(user: User, rule: DispatchRule) -> list[int]:
    """The user's recency list for rules that keep one."""
    if not rule.recency_field:
        return []
    values = load_json(getattr(user, rule.recency_field), [])
    return [value for value in values if isinstance(value, int)]


def select_candidates(db: Session, window: DispatchWindow) -> CandidateBatch:
    """Select everyone due a notification under ``window``.

    Recipients appear at most once per rule. Query errors propagate so the
    dispatcher can skip the rule.
    """
    rule = window.rule
    if rule.kind == RuleKind.SESSION:
        return _select_session_candidates(db, window)
    if rule.kind == RuleKind.SCHEDULED:
        return _select_scheduled_candidates(db, window)
    if rule.kind == RuleKind.INACTIVITY:
        return _select_inactive_candidates(db, window)
    raise ValueError(f"Unknown rule kind: {rule.kind}")


def _session_anchor(session: TrainingSession, rule: DispatchRule) -> datetime:
    if rule.anchor == "end":
        return session_end_local(session.date, session.start_time, session.duration)
    return session_start_local(session.date, session.start_time)


def find_due_sessions(db: Session, window: DispatchWindow) -> list[TrainingSession]:
    """Sessions whose anchor falls in the window and whose marker is unset."""
    rule = window.rule
    marker_column = getattr(TrainingSession, rule.marker)
    # Widen by a day so sessions crossing midnight are still considered
    lower_date = (window.lower - timedelta(days=1)).date().isoformat()
    upper_date = window.upper.date().isoformat()

    sessions = db.query(TrainingSession).filter(
        TrainingSession.status.in_(rule.statuses),
        marker_column == 0,
        TrainingSession.date >= lower_date,
        TrainingSession.date <= upper_date,
    ).all()

    due = []
    for session in sessions:
        try:
            anchor = _session_anchor(session, rule)
        except ValueError:
            logger.warning(f"Session {session.id} has an unparseable schedule: {session.date} {session.start_time}")
            continue
        if in_window(anchor, window.lower, window.upper):
            due.append(session)
    return due


def session_recipients(db: Session, session: TrainingSession, audience: str) -> list[tuple[User, str]]:
    """(user, role) pairs a session-scoped notification goes to."""
    if audience == "attendees":
        attendees = db.query(User).join(
            SessionAttendance, SessionAttendance.user_id == User.id
        ).filter(
            SessionAttendance.session_id == session.id,
            SessionAttendance.attended == 1,
        ).all()
        return [(user, "participant") for user in attendees]

    recipients = []
    if session.creator is not None:
        recipients.append((session.creator, "host"))

    participants = db.query(User).join(
        SessionParticipant, SessionParticipant.user_id == User.id
    ).filter(
        SessionParticipant.session_id == session.id,
        SessionParticipant.status == "confirmed",
    ).all()
    recipients.extend((user, "participant") for user in participants)
    return recipients


def claimed_user_ids(db: Session, rule_name: str, session_id: str) -> set[str]:
    """Users that already hold a receipt for this session and rule."""
    rows = db.query(DispatchReceipt.user_id).filter(
        DispatchReceipt.rule == rule_name,
        DispatchReceipt.session_id == session_id,
    ).all()
    return {row[0] for row in rows}


def _select_session_candidates(db: Session, window: DispatchWindow) -> CandidateBatch:
    rule = window.rule
    batch = CandidateBatch()
    seen: set[str] = set()

    for session in find_due_sessions(db, window):
        batch.session_ids.append(session.id)
        already_claimed = claimed_user_ids(db, rule.name, session.id)

        for user, role in session_recipients(db, session, rule.audience):
            if user.id in seen or user.id in already_claimed:
                continue
            if not has_channel(user, rule.channel) or not user_allows(user, rule.consent_key):
                continue
            seen.add(user.id)

            catalog = rule.host_catalog if role == "host" and rule.host_catalog else rule.catalog
            batch.candidates.append(Candidate(
                recipient=user,
                catalog=catalog,
                session=session,
                role=role,
                context={
                    "sport": session.sport,
                    "location": session.location,
                    "session_id": session.id,
                },
            ))

    return batch


def _select_scheduled_candidates(db: Session, window: DispatchWindow) -> CandidateBatch:
    rule = window.rule
    marker_column = getattr(User, rule.marker)

    query = db.query(User).filter(
        channel_filter(rule.channel),
        or_(marker_column.is_(None), marker_column < window.period_start.isoformat()),
    )
    if window.lower is not None:
        query = query.filter(User.last_active_at >= window.lower.isoformat())

    build_context = CONTEXT_BUILDERS.get(rule.name)
    batch = CandidateBatch()
    for user in query.order_by(User.id).all():
        if not user_allows(user, rule.consent_key):
            continue
        context = build_context(db, user, window) if build_context else {}
        batch.candidates.append(Candidate(
            recipient=user,
            catalog=rule.catalog,
            context=context,
            recent=recent_indices(user, rule),
        ))
    return batch


def _select_inactive_candidates(db: Session, window: DispatchWindow) -> CandidateBatch:
    rule = window.rule
    marker_column = getattr(User, rule.marker)

    users = db.query(User).filter(
        channel_filter(rule.channel),
        User.last_active_at.isnot(None),
        User.last_active_at > window.lower.isoformat(),
        User.last_active_at <= window.upper.isoformat(),
        or_(marker_column.is_(None), marker_column < window.period_start.isoformat()),
    ).order_by(User.id).all()

    upcoming = count_upcoming_sessions(db, window.local_now)
    batch = CandidateBatch()
    for user in users:
        if not user_allows(user, rule.consent_key):
            continue
        try:
            last_active = parse_utc(user.last_active_at)
        except ValueError:
            logger.warning(f"User {user.id} has an unparseable last_active_at: {user.last_active_at}")
            continue
        batch.candidates.append(Candidate(
            recipient=user,
            catalog=rule.catalog,
            context={
                "days": (window.now - last_active).days,
                "count": upcoming,
            },
        ))
    return batch


def parse_utc(value: str) -> datetime:
    """Parse a stored ISO timestamp as naive UTC, converting offset-aware values."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def count_upcoming_sessions(db: Session, local_now: datetime) -> int:
    """Active sessions scheduled for today or later."""
    return db.query(func.count(TrainingSession.id)).filter(
        TrainingSession.status == "active",
        TrainingSession.date >= local_now.date().isoformat(),
    ).scalar() or 0


def _format_hours(minutes: int) -> str:
    return f"{minutes / 60:.1f}".rstrip("0").rstrip(".")


def weekly_stats(db: Session, user: User, local_now: datetime) -> dict:
    """Training stats for the seven local days up to today."""
    week_start = (local_now - timedelta(days=7)).date().isoformat()
    today = local_now.date().isoformat()

    joined = db.query(TrainingSession).join(
        SessionParticipant, SessionParticipant.session_id == TrainingSession.id
    ).filter(
        SessionParticipant.user_id == user.id,
        SessionParticipant.status == "confirmed",
        TrainingSession.status != "cancelled",
        TrainingSession.date >= week_start,
        TrainingSession.date <= today,
    ).all()

    hosted = db.query(TrainingSession).filter(
        TrainingSession.creator_id == user.id,
        TrainingSession.status != "cancelled",
        TrainingSession.date >= week_start,
        TrainingSession.date <= today,
    ).all()

    others = 0
    if hosted:
        others = db.query(func.count(SessionParticipant.id)).filter(
            SessionParticipant.session_id.in_([s.id for s in hosted]),
            SessionParticipant.status == "confirmed",
        ).scalar() or 0

    total = len(joined) + len(hosted)
    minutes = sum(s.duration or 0 for s in joined) + sum(s.duration or 0 for s in hosted)
    return {
        "count": total,
        "sessions": total,
        "hours": _format_hours(minutes),
        "partners": len(joined),
        "others": others,
        "next_goal": total + 1,
        "streak": total if total > 0 else 1,
        "new_connections": len(joined),
    }


def _weekly_recap_context(db: Session, user: User, window: DispatchWindow) -> dict:
    return weekly_stats(db, user, window.local_now)


CONTEXT_BUILDERS = {
    "weekly_recap": _weekly_recap_context,
}
