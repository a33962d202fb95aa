"""Dispatch rule table.

Every notification the engine can send is declared here as data: when it is
due, who receives it, which marker guards it and which catalog it draws its
text from. The dispatcher has no rule-specific branches beyond ``kind``.
"""
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from app.services.exceptions import UnknownRuleError


class RuleKind(str, Enum):
    SESSION = "session"  # relative to a session's start or end
    SCHEDULED = "scheduled"  # fixed local time of day / week
    INACTIVITY = "inactivity"  # time since the user's last activity


@dataclass(frozen=True)
class DispatchRule:
    """A single notification rule."""

    name: str
    kind: RuleKind
    catalog: str
    marker: str | None
    channel: str = "push"  # push or email
    deep_link: str = "/"
    consent_key: str | None = None

    # Session rules: due when anchor - now is in [lower, upper)
    anchor: str = "start"  # start or end
    lower: timedelta | None = None
    upper: timedelta | None = None
    audience: str = "participants"  # participants (creator + confirmed) or attendees
    statuses: tuple[str, ...] = ("active",)
    host_catalog: str | None = None

    # Scheduled rules
    hour: int | None = None
    weekday: int | None = None  # Monday = 0
    period: str = "day"  # day or week
    active_within: timedelta | None = None

    # Inactivity rules
    threshold: timedelta | None = None
    churn_cutoff: timedelta | None = None
    repeat_after: timedelta | None = None

    # Morning motivation keeps the last N variant indices to avoid repeats
    recency_field: str | None = None
    recency_cap: int = 0


RECENCY_CAP = 15

RULES: tuple[DispatchRule, ...] = (
    DispatchRule(
        name="session_reminder_2h",
        kind=RuleKind.SESSION,
        catalog="session_reminder_2h",
        host_catalog="session_reminder_2h_host",
        marker="reminder_2hr_sent",
        deep_link="/session/{session_id}",
        consent_key="session_reminders",
        lower=timedelta(hours=2),
        upper=timedelta(hours=2, minutes=15),
    ),
    DispatchRule(
        name="session_reminder_1h",
        kind=RuleKind.SESSION,
        catalog="session_reminder_1h",
        marker="reminder_1hr_sent",
        deep_link="/session/{session_id}",
        consent_key="session_reminders",
        lower=timedelta(hours=1),
        upper=timedelta(hours=1, minutes=5),
    ),
    DispatchRule(
        name="session_reminder_15m",
        kind=RuleKind.SESSION,
        catalog="session_reminder_15m",
        marker="reminder_15min_sent",
        deep_link="/session/{session_id}",
        consent_key="session_reminders",
        lower=timedelta(minutes=15),
        upper=timedelta(minutes=20),
    ),
    DispatchRule(
        name="post_session_followup",
        kind=RuleKind.SESSION,
        catalog="post_session_followup",
        marker="followup_sent",
        channel="email",
        deep_link="/session/{session_id}",
        consent_key="email_updates",
        anchor="end",
        lower=timedelta(hours=-2),
        upper=timedelta(0),
        audience="attendees",
        statuses=("active", "completed"),
    ),
    DispatchRule(
        name="morning_motivation",
        kind=RuleKind.SCHEDULED,
        catalog="morning_motivation",
        marker="last_motivation_sent",
        consent_key="motivation",
        hour=8,
        period="day",
        active_within=timedelta(days=30),
        recency_field="motivation_recent_messages",
        recency_cap=RECENCY_CAP,
    ),
    DispatchRule(
        name="weekly_recap",
        kind=RuleKind.SCHEDULED,
        catalog="weekly_recap",
        marker="last_weekly_recap_sent",
        deep_link="/my-sessions",
        consent_key="weekly_recap",
        hour=18,
        weekday=6,
        period="week",
    ),
    DispatchRule(
        name="re_engagement",
        kind=RuleKind.INACTIVITY,
        catalog="re_engagement",
        marker="last_reengagement_sent",
        consent_key="re_engagement",
        threshold=timedelta(days=3),
        churn_cutoff=timedelta(days=60),
        repeat_after=timedelta(days=3),
    ),
    DispatchRule(
        name="inactive_nudge",
        kind=RuleKind.INACTIVITY,
        catalog="inactive_nudge",
        marker="last_inactive_nudge_sent",
        channel="email",
        deep_link="/",
        consent_key="email_updates",
        threshold=timedelta(days=14),
        churn_cutoff=timedelta(days=90),
        repeat_after=timedelta(days=7),
    ),
)

# Event-driven rule used by the nearby-session alert, not by the cron engine
SESSION_NEARBY = DispatchRule(
    name="session_nearby",
    kind=RuleKind.SESSION,
    catalog="session_nearby",
    marker=None,
    deep_link="/session/{session_id}",
    consent_key="nearby_sessions",
)


def get_rule(name: str) -> DispatchRule:
    """Look up a cron rule by name."""
    for rule in RULES:
        if rule.name == name:
            return rule
    raise UnknownRuleError(f"Unknown dispatch rule: {name}")


def select_rules(names: list[str] | None = None) -> tuple[DispatchRule, ...]:
    """Return the requested rules in table order, or all of them."""
    if not names:
        return RULES
    wanted = {get_rule(name).name for name in names}
    return tuple(rule for rule in RULES if rule.name in wanted)
