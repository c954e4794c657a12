# booking_engine/services/duration.py
from __future__ import annotations

from datetime import datetime, timedelta
from statistics import median
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.errors import NotFound
from booking_engine.core.timeutils import utcnow
from booking_engine.crud.appointment import list_recent_intervals
from booking_engine.crud.organization import get_organization, get_service
from booking_engine.schemas.availability import DurationPrediction

logger = structlog.get_logger(__name__)

HISTORY_DAYS = 90
MIN_SAMPLE_MIN = 5


async def predict_duration(db: AsyncSession, org_id: str, service_id: str,
                           now: Optional[datetime] = None) -> DurationPrediction:
    """
    Typical length of a service from the last 90 days of appointments.
    Never predicts shorter than the configured service duration.
    """
    if await get_organization(db, org_id) is None:
        raise NotFound("Organization not found", details={"entity": "organization"})
    service = await get_service(db, org_id, service_id)
    if service is None:
        raise NotFound("Service not found", details={"entity": "service"})

    since = (now or utcnow()) - timedelta(days=HISTORY_DAYS)
    rows = await list_recent_intervals(db, org_id=org_id, service_id=service_id, since=since)
    durations = sorted(
        max(MIN_SAMPLE_MIN, round((end - start).total_seconds() / 60)) for start, end in rows
    )

    if durations:
        median_min = int(round(median(durations)))
        avg_min = int(round(sum(durations) / len(durations)))
    else:
        median_min = avg_min = service.duration_min

    prediction = DurationPrediction(
        service_id=service_id,
        predicted_min=max(service.duration_min, median_min),
        median_min=median_min,
        avg_min=avg_min,
        sample_size=len(durations),
    )
    logger.debug("duration_predicted", org_id=org_id, **prediction.model_dump())
    return prediction
