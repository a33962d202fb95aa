"""Dispatch run schemas."""
from pydantic import BaseModel


class RuleSummaryResponse(BaseModel):
    """Counters for one rule in one run."""

    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    error: str | None = None


class DispatchRunResponse(BaseModel):
    """Result of a cron-triggered engine run."""

    success: bool
    timestamp: str
    local_time: str
    rules: dict[str, RuleSummaryResponse]


class NearbyAlertResponse(BaseModel):
    """Result of a nearby-session alert."""

    session_id: str
    notified: int
    total: int
    summary: RuleSummaryResponse
