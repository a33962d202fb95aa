"""API dependencies."""
from datetime import datetime
import hmac
import logging
import random

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.services.delivery import NotificationDelivery, build_delivery
from app.services.dispatcher import NotificationDispatcher
from app.services.messages import get_message_catalogs
from app.services.time_windows import FixedOffsetClock

logger = logging.getLogger(__name__)

__all__ = [
    "get_db",
    "get_delivery",
    "get_clock",
    "get_now",
    "get_catalogs",
    "get_dispatcher",
    "require_cron_secret",
]


def get_delivery(settings: Settings = Depends(get_settings)) -> NotificationDelivery:
    return build_delivery(settings)


def get_clock(settings: Settings = Depends(get_settings)) -> FixedOffsetClock:
    return FixedOffsetClock(settings.timezone_offset_hours)


def get_now() -> datetime:
    """Current UTC time. Overridden in tests to pin the clock."""
    return datetime.utcnow()


def get_catalogs() -> dict[str, list[dict]]:
    return get_message_catalogs()


def get_dispatcher(
    db: Session = Depends(get_db),
    delivery: NotificationDelivery = Depends(get_delivery),
    clock: FixedOffsetClock = Depends(get_clock),
    catalogs: dict = Depends(get_catalogs),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, delivery, catalogs, clock=clock, rng=random.Random())


def require_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Only the scheduler holding CRON_SECRET may trigger dispatch."""
    if not settings.cron_secret:
        logger.error("CRON_SECRET is not configured; refusing dispatch trigger")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron secret not configured",
        )

    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("Rejected dispatch trigger with invalid credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
