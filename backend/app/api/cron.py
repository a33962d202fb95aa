"""Cron trigger for the notification engine."""
from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_dispatcher, get_now, require_cron_secret
from app.schemas.dispatch import DispatchRunResponse
from app.services.dispatcher import NotificationDispatcher
from app.services.exceptions import UnknownRuleError
from app.services.rules import select_rules

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.get(
    "/notifications",
    response_model=DispatchRunResponse,
    dependencies=[Depends(require_cron_secret)],
)
def run_notifications(
    rule: list[str] | None = Query(default=None),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Evaluate every notification rule and send whatever is due.

    Pass ``rule`` one or more times to run only those rules.
    """
    try:
        rules = select_rules(rule)
    except UnknownRuleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Notification store unreachable")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification store unavailable",
        )

    summary = dispatcher.run(now=now, rules=rules)
    totals = summary.totals()
    logger.info(
        f"Dispatch run finished: sent={totals['sent']} failed={totals['failed']} skipped={totals['skipped']}"
    )

    return DispatchRunResponse(
        success=True,
        timestamp=now.isoformat(),
        local_time=dispatcher.clock.to_local(now).isoformat(),
        rules=summary.report(),
    )
