"""Notification dispatch engine. Call ``run`` from the cron trigger."""
from datetime import datetime
import logging
import random

from sqlalchemy.orm import Session

from app.services.candidates import Candidate, CandidateBatch, select_candidates
from app.services.delivery import NotificationDelivery
from app.services.dispatch_guard import DispatchGuard
from app.services.exceptions import MessageResolutionError
from app.services.messages import ResolvedMessage, resolve_message
from app.services.rules import RULES, DispatchRule, RuleKind
from app.services.time_windows import DispatchWindow, FixedOffsetClock, evaluate

logger = logging.getLogger(__name__)


class RunSummary:
    """Per-rule counters for one engine invocation."""

    def __init__(self):
        self._rules: dict[str, dict] = {}

    def start(self, rule_name: str) -> None:
        self._rules.setdefault(rule_name, {
            "attempted": 0,
            "sent": 0,
            "failed": 0,
            "skipped": 0,
            "error": None,
        })

    def record(self, rule_name: str, outcome: str) -> None:
        """Count one candidate as ``sent``, ``failed`` or ``skipped``."""
        self.start(rule_name)
        counts = self._rules[rule_name]
        counts["attempted"] += 1
        counts[outcome] += 1

    def record_error(self, rule_name: str, error: str) -> None:
        self.start(rule_name)
        self._rules[rule_name]["error"] = error

    def report(self) -> dict[str, dict]:
        return {name: dict(counts) for name, counts in self._rules.items()}

    def totals(self) -> dict[str, int]:
        totals = {"attempted": 0, "sent": 0, "failed": 0, "skipped": 0}
        for counts in self._rules.values():
            for key in totals:
                totals[key] += counts[key]
        return totals


class NotificationDispatcher:
    """Evaluates every rule against ``now`` and fans out due notifications.

    Each rule is isolated: a failing selector query is logged and recorded
    in the summary, and the remaining rules still run. Each candidate is
    isolated too, so one bad recipient never aborts a batch.
    """

    def __init__(
        self,
        db: Session,
        delivery: NotificationDelivery,
        catalogs: dict[str, list[dict]],
        clock: FixedOffsetClock | None = None,
        guard: DispatchGuard | None = None,
        rng: random.Random | None = None,
    ):
        self.db = db
        self.delivery = delivery
        self.catalogs = catalogs
        self.clock = clock or FixedOffsetClock()
        self.guard = guard or DispatchGuard()
        self.rng = rng or random.Random()

    def run(self, now: datetime | None = None, rules: tuple[DispatchRule, ...] = RULES) -> RunSummary:
        now = now or datetime.utcnow()
        summary = RunSummary()

        for window in evaluate(now, self.clock, rules):
            summary.start(window.rule.name)
            try:
                self.dispatch_window(window, summary)
            except Exception as e:
                self.db.rollback()
                logger.exception(f"Rule {window.rule.name} failed; skipping it for this run")
                summary.record_error(window.rule.name, str(e))

        for name, counts in summary.report().items():
            logger.info(
                f"Dispatch {name}: attempted={counts['attempted']} sent={counts['sent']} "
                f"failed={counts['failed']} skipped={counts['skipped']}"
            )
        return summary

    def dispatch_window(self, window: DispatchWindow, summary: RunSummary) -> None:
        """Select, resolve, claim and deliver for one live rule."""
        batch: CandidateBatch = select_candidates(self.db, window)
        failed_sessions: set[str] = set()

        for candidate in batch.candidates:
            outcome = self.dispatch_candidate(candidate, window)
            summary.record(window.rule.name, outcome)
            if outcome == "failed" and candidate.session is not None:
                failed_sessions.add(candidate.session.id)

        if window.rule.kind == RuleKind.SESSION:
            for session_id in batch.session_ids:
                if session_id not in failed_sessions:
                    self.guard.complete_session(self.db, session_id, window.rule)

    def dispatch_candidate(self, candidate: Candidate, window: DispatchWindow) -> str:
        """Handle one recipient. Returns ``sent``, ``failed`` or ``skipped``."""
        rule = window.rule
        recipient_id = candidate.recipient.id

        try:
            message = self.resolve(candidate)
        except MessageResolutionError as e:
            logger.error(f"Could not resolve {candidate.catalog} for user {recipient_id}: {e}")
            return "failed"

        try:
            claim = self.guard.try_claim(self.db, candidate, window, variant_index=message.index)
        except Exception:
            self.db.rollback()
            logger.exception(f"Claim failed for {rule.name} user={recipient_id}")
            return "failed"
        if claim is None:
            return "skipped"

        deep_link = rule.deep_link.format(**candidate.context) if candidate.session else rule.deep_link
        result = self.delivery.deliver(candidate.recipient, message, deep_link, rule.channel)

        try:
            if result.success:
                self.guard.commit(self.db, claim)
            else:
                self.guard.release(self.db, claim)
        except Exception:
            self.db.rollback()
            logger.exception(f"Could not record outcome for {rule.name} user={recipient_id}")

        return "sent" if result.success else "failed"

    def resolve(self, candidate: Candidate) -> ResolvedMessage:
        variants = self.catalogs.get(candidate.catalog)
        if not variants:
            raise MessageResolutionError(f"Missing message catalog: {candidate.catalog}")
        return resolve_message(
            variants,
            candidate.recipient.preferred_language,
            candidate.context,
            recent=candidate.recent,
            rng=self.rng,
        )
