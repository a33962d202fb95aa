"""Session event endpoints."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_catalogs, get_clock, get_db, get_delivery, get_now, require_cron_secret
from app.config import Settings, get_settings
from app.models.session import TrainingSession
from app.schemas.dispatch import NearbyAlertResponse
from app.services.delivery import NotificationDelivery
from app.services.nearby import notify_nearby
from app.services.rules import SESSION_NEARBY
from app.services.time_windows import FixedOffsetClock

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post(
    "/{session_id}/notify-nearby",
    response_model=NearbyAlertResponse,
    dependencies=[Depends(require_cron_secret)],
)
def notify_nearby_users(
    session_id: str,
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
    delivery: NotificationDelivery = Depends(get_delivery),
    catalogs: dict = Depends(get_catalogs),
    settings: Settings = Depends(get_settings),
    clock: FixedOffsetClock = Depends(get_clock),
):
    """Alert nearby users that a new session was posted."""
    session = db.query(TrainingSession).filter(TrainingSession.id == session_id).first()
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    summary = notify_nearby(
        db,
        session,
        delivery,
        catalogs,
        radius_km=settings.nearby_radius_km,
        now=now,
        clock=clock,
    )
    counts = summary.report()[SESSION_NEARBY.name]
    return NearbyAlertResponse(
        session_id=session_id,
        notified=counts["sent"],
        total=counts["attempted"],
        summary=counts,
    )
