"""
SLA evaluation.
Combines the uptime calculator's downtime with planned-downtime exclusions
into achieved uptime, compliance and breach duration.
"""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import settings
from app.schemas.availability import SlaResult, DeviceSummary, FlappingSummary
from app.services import planned_downtime
from app.services.availability import get_availability_report, validate_window
from app.services.event_log import as_utc, get_event_stats
from app.services.flapping import list_flapping_incidents

logger = logging.getLogger(__name__)

# (minimum uptime %, grade), checked in order
UPTIME_GRADES = [
    (99.9, "excellent"),
    (99.5, "very-good"),
    (99.0, "good"),
    (95.0, "fair"),
]


def classify_uptime(uptime_percentage: float) -> str:
    for minimum, grade in UPTIME_GRADES:
        if uptime_percentage >= minimum:
            return grade
    return "poor"


def compute_sla(
    total_seconds: float,
    excluded_seconds: int,
    down_seconds: int,
    target: float,
) -> SlaResult:
    available = total_seconds - excluded_seconds
    achieved = ((available - down_seconds) / available) * 100 if available > 0 else 0.0
    compliant = achieved >= target
    breach = 0.0 if compliant else max(0.0, (target / 100) * available - (achieved / 100) * available)
    return SlaResult(
        target=target,
        achieved_uptime=achieved,
        compliant=compliant,
        breach_duration_seconds=breach,
        total_seconds=total_seconds,
        excluded_seconds=excluded_seconds,
        available_seconds=available,
        down_seconds=down_seconds,
    )


async def evaluate_sla(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    window_start: datetime,
    window_end: datetime,
    target: Optional[float] = None,
) -> SlaResult:
    validate_window(window_start, window_end)
    target = settings.DEFAULT_SLA_TARGET if target is None else target

    total = (as_utc(window_end) - as_utc(window_start)).total_seconds()
    excluded = await planned_downtime.excluded_seconds(db, account_id, device_id, window_start, window_end)
    report = await get_availability_report(db, account_id, device_id, window_start, window_end)

    result = compute_sla(total, excluded, report.downtime_seconds, target)
    if not result.compliant:
        logger.info(
            f"SLA breach for device {device_id}: {result.achieved_uptime:.2f}% < {target}% "
            f"({result.breach_duration_seconds:.0f}s short)"
        )
    return result


async def build_device_summary(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    window_start: datetime,
    window_end: datetime,
    target: Optional[float] = None,
) -> DeviceSummary:
    """Availability, event, flapping, maintenance and SLA figures for one device."""
    report = await get_availability_report(db, account_id, device_id, window_start, window_end)
    stats = await get_event_stats(db, account_id, device_id, window_start, window_end)
    incidents = await list_flapping_incidents(db, account_id, device_id)
    excluded = await planned_downtime.excluded_seconds(db, account_id, device_id, window_start, window_end)

    target = settings.DEFAULT_SLA_TARGET if target is None else target
    total = (as_utc(window_end) - as_utc(window_start)).total_seconds()

    return DeviceSummary(
        device_id=device_id,
        window_start=as_utc(window_start),
        window_end=as_utc(window_end),
        availability=report,
        grade=classify_uptime(report.uptime_percentage),
        events=stats,
        flapping=FlappingSummary(
            is_flapping=bool(incidents),
            incident_count=len(incidents),
            severity=incidents[0].severity if incidents else None,
        ),
        excluded_seconds=excluded,
        sla=compute_sla(total, excluded, report.downtime_seconds, target),
    )
