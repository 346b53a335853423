"""
Uptime calculator.
Turns a window of state-change events into uptime/downtime, an outage list
and an uptime percentage. Reports are always recomputed from the event log.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.exceptions import InvalidRange
from app.models.availability import StateChangeEvent
from app.schemas.availability import AvailabilityReport, DeviceAvailabilityStats, Outage, RecentOutage
from app.services.event_log import as_utc, get_events, get_latest_event

logger = logging.getLogger(__name__)

PERIOD_SECONDS = {
    "5m": 5 * 60,
    "1h": 60 * 60,
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "30d": 30 * 24 * 60 * 60,
}


def validate_window(window_start: datetime, window_end: datetime) -> None:
    if as_utc(window_start) >= as_utc(window_end):
        raise InvalidRange("window start must be before window end")


def compute_availability(
    device_id: str,
    events: Sequence[StateChangeEvent],
    window_start: datetime,
    window_end: datetime,
    latest: Optional[StateChangeEvent] = None,
) -> AvailabilityReport:
    """Attribute the window to up/down time from in-window events.

    Each event owns the time until the next event (or window_end for the
    last one). Time between window_start and the first in-window event is
    attributed to neither state. With no in-window events the latest known
    status covers the whole window.
    """
    window_start = as_utc(window_start)
    window_end = as_utc(window_end)
    validate_window(window_start, window_end)

    current_status = latest.status if latest else "unknown"
    last_state_change = as_utc(latest.occurred_at) if latest else None

    uptime = 0.0
    downtime = 0.0
    outages: list[tuple] = []

    if not events:
        window_seconds = (window_end - window_start).total_seconds()
        if current_status == "up":
            uptime = window_seconds
        elif current_status == "down":
            downtime = window_seconds
    else:
        for i, current in enumerate(events):
            started = as_utc(current.occurred_at)
            ended = as_utc(events[i + 1].occurred_at) if i + 1 < len(events) else window_end
            duration = (ended - started).total_seconds()

            if current.status == "up":
                uptime += duration
            elif current.status == "down":
                downtime += duration
                outages.append((started, ended, duration, current.reason))

    total = uptime + downtime
    percentage = (uptime / total) * 100 if total > 0 else 0.0

    return AvailabilityReport(
        device_id=device_id,
        window_start=window_start,
        window_end=window_end,
        uptime_seconds=round(uptime),
        downtime_seconds=round(downtime),
        total_seconds=round(uptime) + round(downtime),
        uptime_percentage=round(percentage, 2),
        outages=[
            Outage(start=s, end=e, duration_seconds=round(d), reason=r or None)
            for s, e, d, r in outages
        ],
        current_status=current_status,
        last_state_change=last_state_change,
    )


async def get_availability_report(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    window_start: datetime,
    window_end: datetime,
) -> AvailabilityReport:
    validate_window(window_start, window_end)
    events = await get_events(db, account_id, device_id, window_start, window_end)
    latest = await get_latest_event(db, account_id, device_id)
    logger.debug(f"Computing availability for device {device_id} from {len(events)} events")
    return compute_availability(device_id, events, window_start, window_end, latest)


async def get_availability_for_period(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    period: str,
    now: Optional[datetime] = None,
) -> AvailabilityReport:
    """Report for one of the preset periods, ending now."""
    if period not in PERIOD_SECONDS:
        raise InvalidRange(f"Unknown period: {period}")
    now = as_utc(now) or datetime.now(timezone.utc)
    start = now - timedelta(seconds=PERIOD_SECONDS[period])
    return await get_availability_report(db, account_id, device_id, start, now)


async def get_availability_reports(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    periods: Sequence[str] = tuple(PERIOD_SECONDS),
    now: Optional[datetime] = None,
) -> dict[str, AvailabilityReport]:
    now = as_utc(now) or datetime.now(timezone.utc)
    reports = {}
    for period in periods:
        reports[period] = await get_availability_for_period(db, account_id, device_id, period, now)
    return reports


async def get_recent_outages(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    limit: int = 10,
) -> list[RecentOutage]:
    """Most recent down transitions, newest first."""
    result = await db.execute(
        select(StateChangeEvent)
        .where(
            StateChangeEvent.account_id == account_id,
            StateChangeEvent.device_id == device_id,
            StateChangeEvent.status == "down",
        )
        .order_by(StateChangeEvent.occurred_at.desc(), StateChangeEvent.id.desc())
        .limit(limit)
    )
    return [
        RecentOutage(
            start=as_utc(e.occurred_at),
            reason=e.reason,
            detection_method=e.detection_method,
        )
        for e in result.scalars().all()
    ]


async def get_devices_availability_stats(
    db: AsyncSession,
    account_id: int,
    period: str = "24h",
    now: Optional[datetime] = None,
) -> list[DeviceAvailabilityStats]:
    """Uptime percentage and last status for every device of the account."""
    result = await db.execute(
        select(StateChangeEvent.device_id)
        .where(StateChangeEvent.account_id == account_id)
        .distinct()
        .order_by(StateChangeEvent.device_id)
    )
    device_ids = list(result.scalars().all())

    now = as_utc(now) or datetime.now(timezone.utc)
    stats = []
    for device_id in device_ids:
        report = await get_availability_for_period(db, account_id, device_id, period, now)
        stats.append(DeviceAvailabilityStats(
            device_id=device_id,
            uptime_percentage=report.uptime_percentage,
            last_status=report.current_status,
        ))
    return stats
