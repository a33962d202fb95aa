"""Time window evaluation for dispatch rules.

All stored timestamps are naive UTC. Session dates and start times are local
clock values of one canonical timezone, so "now" is shifted into that
timezone before it is compared against them.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from dateutil.relativedelta import MO, relativedelta

from app.services.rules import DispatchRule, RuleKind


class FixedOffsetClock:
    """Reference clock pinned to a single UTC offset.

    ``user`` is accepted so a per-user timezone resolver can be dropped in
    with the same interface; this implementation ignores it.
    """

    def __init__(self, offset_hours: float = -5):
        self.offset = timedelta(hours=offset_hours)

    def to_local(self, now: datetime, user=None) -> datetime:
        return now + self.offset

    def to_utc(self, local: datetime, user=None) -> datetime:
        return local - self.offset


@dataclass(frozen=True)
class DispatchWindow:
    """Evaluated state of one live rule for a single engine run.

    For session rules ``lower``/``upper`` bound the session anchor in local
    time. For scheduled and inactivity rules they bound ``last_active_at`` in
    UTC. ``period_start`` is the UTC boundary a timestamp marker must be
    older than for the rule to fire again.
    """

    rule: DispatchRule
    now: datetime
    local_now: datetime
    lower: datetime | None = None
    upper: datetime | None = None
    period_start: datetime | None = None


def parse_start_time(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    parts = [int(part) for part in value.split(":")]
    while len(parts) < 3:
        parts.append(0)
    return time(parts[0], parts[1], parts[2])


def session_start_local(session_date: str, start_time: str) -> datetime:
    """Local start of a session from its stored date and clock time."""
    return datetime.combine(date.fromisoformat(session_date), parse_start_time(start_time))


def session_end_local(session_date: str, start_time: str, duration_minutes: int | None) -> datetime:
    """Local end of a session."""
    return session_start_local(session_date, start_time) + timedelta(minutes=duration_minutes or 0)


def in_window(anchor: datetime, lower: datetime, upper: datetime) -> bool:
    """Half-open membership test, so exact boundaries never fire twice."""
    return lower <= anchor < upper


def period_start(local_now: datetime, period: str) -> datetime:
    """Start of the local day or ISO week containing ``local_now``."""
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        return midnight
    if period == "week":
        return midnight + relativedelta(weekday=MO(-1))
    raise ValueError(f"Unknown period: {period}")


def is_scheduled_rule_live(rule: DispatchRule, local_now: datetime) -> bool:
    """Scheduled rules are live for the whole target hour.

    The engine polls, so any invocation landing in the hour may fire; the
    per-period marker keeps it to one send.
    """
    if local_now.hour != rule.hour:
        return False
    if rule.weekday is not None and local_now.weekday() != rule.weekday:
        return False
    return True


def build_window(rule: DispatchRule, now: datetime, clock: FixedOffsetClock) -> DispatchWindow | None:
    """Evaluate one rule against ``now``; ``None`` when the rule is not live."""
    local_now = clock.to_local(now)

    if rule.kind == RuleKind.SESSION:
        return DispatchWindow(
            rule=rule,
            now=now,
            local_now=local_now,
            lower=local_now + rule.lower,
            upper=local_now + rule.upper,
        )

    if rule.kind == RuleKind.SCHEDULED:
        if not is_scheduled_rule_live(rule, local_now):
            return None
        return DispatchWindow(
            rule=rule,
            now=now,
            local_now=local_now,
            lower=now - rule.active_within if rule.active_within else None,
            period_start=clock.to_utc(period_start(local_now, rule.period)),
        )

    if rule.kind == RuleKind.INACTIVITY:
        return DispatchWindow(
            rule=rule,
            now=now,
            local_now=local_now,
            lower=now - rule.churn_cutoff,
            upper=now - rule.threshold,
            period_start=now - rule.repeat_after,
        )

    raise ValueError(f"Unknown rule kind: {rule.kind}")


def evaluate(
    now: datetime,
    clock: FixedOffsetClock,
    rules: tuple[DispatchRule, ...],
) -> list[DispatchWindow]:
    """Return the windows of every rule that is live at ``now``."""
    windows = []
    for rule in rules:
        window = build_window(rule, now, clock)
        if window is not None:
            windows.append(window)
    return windows
