"""Alerts nearby users when a new session is posted."""
from datetime import datetime
import logging
import random

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.session import SessionParticipant, TrainingSession
from app.models.user import User
from app.services.candidates import Candidate, channel_filter, load_json, user_allows
from app.services.delivery import NotificationDelivery
from app.services.dispatch_guard import DispatchGuard
from app.services.dispatcher import NotificationDispatcher, RunSummary
from app.services.distance import format_distance, haversine_km
from app.services.rules import SESSION_NEARBY
from app.services.time_windows import DispatchWindow, FixedOffsetClock

logger = logging.getLogger(__name__)


def plays_sport(user: User, sport: str) -> bool:
    """Users with no favourite sports are interested in everything."""
    sports = load_json(user.sports, [])
    return not sports or sport in sports


def find_nearby_candidates(db: Session, session: TrainingSession, radius_km: float) -> list[Candidate]:
    """Push-enabled users within ``radius_km`` of the session who play its sport."""
    if session.latitude is None or session.longitude is None:
        logger.info(f"Session {session.id} has no coordinates, skipping nearby alert")
        return []

    rule = SESSION_NEARBY
    confirmed = db.query(SessionParticipant).filter(
        SessionParticipant.session_id == session.id,
        SessionParticipant.status == "confirmed",
    ).count()
    count = confirmed + 1  # the creator trains too
    spots = max((session.max_participants or 0) - count, 0)

    users = db.query(User).filter(
        channel_filter(rule.channel),
        User.id != session.creator_id,
        User.latitude.isnot(None),
        User.longitude.isnot(None),
    ).order_by(User.id).all()

    candidates = []
    for user in users:
        if not plays_sport(user, session.sport) or not user_allows(user, rule.consent_key):
            continue
        distance = haversine_km(session.latitude, session.longitude, user.latitude, user.longitude)
        if distance > radius_km:
            continue
        candidates.append(Candidate(
            recipient=user,
            catalog=rule.catalog,
            session=session,
            role="participant",
            context={
                "sport": session.sport,
                "location": session.location,
                "session_id": session.id,
                "distance": format_distance(distance),
                "count": count,
                "spots": spots,
            },
        ))
    return candidates


def notify_nearby(
    db: Session,
    session: TrainingSession,
    delivery: NotificationDelivery,
    catalogs: dict[str, list[dict]],
    radius_km: float = 10.0,
    now: datetime | None = None,
    rng: random.Random | None = None,
    clock: FixedOffsetClock | None = None,
) -> RunSummary:
    """Send the nearby-session alert for ``session``.

    Each recipient gets a receipt under ``session_nearby``, so triggering the
    alert twice for the same session never notifies anyone twice.
    """
    now = now or datetime.utcnow()
    clock = clock or FixedOffsetClock(get_settings().timezone_offset_hours)
    dispatcher = NotificationDispatcher(db, delivery, catalogs, clock=clock, guard=DispatchGuard(), rng=rng)
    window = DispatchWindow(rule=SESSION_NEARBY, now=now, local_now=dispatcher.clock.to_local(now))
    summary = RunSummary()
    summary.start(SESSION_NEARBY.name)

    if session.status != "active":
        logger.info(f"Session {session.id} is {session.status}, skipping nearby alert")
        return summary

    for candidate in find_nearby_candidates(db, session, radius_km):
        summary.record(SESSION_NEARBY.name, dispatcher.dispatch_candidate(candidate, window))

    counts = summary.report()[SESSION_NEARBY.name]
    logger.info(f"Nearby alert for session {session.id}: sent={counts['sent']} failed={counts['failed']} skipped={counts['skipped']}")
    return summary
