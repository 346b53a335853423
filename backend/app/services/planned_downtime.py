"""
Planned downtime (maintenance windows).
One-time windows are absolute intervals. Recurring windows repeat daily,
weekly or monthly at the stored time of day, evaluated in
settings.DOWNTIME_TIMEZONE; the stored date only selects the weekday or
day-of-month.
"""
import logging
from datetime import datetime, timedelta, timezone, time
from typing import Iterator, Optional, Sequence
from zoneinfo import ZoneInfo
from dateutil.rrule import rrule, DAILY, WEEKLY, MONTHLY
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from app.config import settings
from app.exceptions import InvalidRange, NotFound
from app.models.planned_downtime import PlannedDowntimeWindow
from app.services.event_log import as_utc

logger = logging.getLogger(__name__)

RECURRING_TYPES = ("none", "daily", "weekly", "monthly")

_RRULE_FREQ = {"daily": DAILY, "weekly": WEEKLY, "monthly": MONTHLY}


def downtime_zone() -> ZoneInfo:
    return ZoneInfo(settings.DOWNTIME_TIMEZONE)


def ranges_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    return start1 < end2 and start2 < end1


def _time_of_day(dt: datetime) -> timedelta:
    return timedelta(hours=dt.hour, minutes=dt.minute, seconds=dt.second, microseconds=dt.microsecond)


def _occurrence_length(local_start: datetime, local_end: datetime) -> timedelta:
    """Length of one occurrence; an end time-of-day at or before the start wraps past midnight."""
    length = (_time_of_day(local_end) - _time_of_day(local_start)) % timedelta(days=1)
    return length or timedelta(days=1)


def occurrences(
    window: PlannedDowntimeWindow,
    start: datetime,
    end: datetime,
    tz: Optional[ZoneInfo] = None,
) -> Iterator[tuple[datetime, datetime]]:
    """Absolute (UTC) intervals of `window` that may touch [start, end]."""
    start = as_utc(start)
    end = as_utc(end)
    recurring = window.recurring or "none"

    if recurring == "none":
        yield as_utc(window.start_time), as_utc(window.end_time)
        return

    tz = tz or downtime_zone()
    template_start = as_utc(window.start_time).astimezone(tz)
    template_end = as_utc(window.end_time).astimezone(tz)
    length = _occurrence_length(template_start, template_end)

    # Start a day early so an occurrence that wraps past midnight into the
    # query window is included.
    first_day = start.astimezone(tz).date() - timedelta(days=1)
    last_day = end.astimezone(tz).date()

    rule_kwargs = {}
    if recurring == "weekly":
        rule_kwargs["byweekday"] = template_start.weekday()
    elif recurring == "monthly":
        rule_kwargs["bymonthday"] = template_start.day

    rule = rrule(
        _RRULE_FREQ[recurring],
        dtstart=datetime.combine(first_day, template_start.time().replace(tzinfo=None)),
        until=datetime.combine(last_day, time.max),
        **rule_kwargs,
    )
    for naive_start in rule:
        occurrence_start = naive_start.replace(tzinfo=tz).astimezone(timezone.utc)
        yield occurrence_start, occurrence_start + length


def excluded_seconds_for_windows(
    windows: Sequence[PlannedDowntimeWindow],
    start: datetime,
    end: datetime,
    tz: Optional[ZoneInfo] = None,
) -> int:
    """Sum of per-occurrence overlaps with [start, end], floored to whole seconds."""
    start = as_utc(start)
    end = as_utc(end)
    total = 0.0
    for window in windows:
        for occ_start, occ_end in occurrences(window, start, end, tz):
            if ranges_overlap(start, end, occ_start, occ_end):
                total += (min(end, occ_end) - max(start, occ_start)).total_seconds()
    return int(total)


def is_timestamp_in_window(
    timestamp: datetime,
    window: PlannedDowntimeWindow,
    tz: Optional[ZoneInfo] = None,
) -> bool:
    timestamp = as_utc(timestamp)
    recurring = window.recurring or "none"
    if recurring == "none":
        return as_utc(window.start_time) <= timestamp <= as_utc(window.end_time)

    tz = tz or downtime_zone()
    local = timestamp.astimezone(tz)
    template_start = as_utc(window.start_time).astimezone(tz)
    template_end = as_utc(window.end_time).astimezone(tz)

    tod = _time_of_day(local)
    start_tod = _time_of_day(template_start)
    end_tod = _time_of_day(template_end)
    if start_tod == end_tod:
        # equal times of day span the whole day
        in_time = True
    elif start_tod < end_tod:
        in_time = start_tod <= tod <= end_tod
    else:
        in_time = tod >= start_tod or tod <= end_tod
    if not in_time:
        return False

    if recurring == "daily":
        return True
    if recurring == "weekly":
        return local.weekday() == template_start.weekday()
    if recurring == "monthly":
        return local.day == template_start.day
    return False


def _validate(start_time: datetime, end_time: datetime, recurring: str) -> None:
    if as_utc(start_time) >= as_utc(end_time):
        raise InvalidRange("Start time must be before end time")
    if recurring not in RECURRING_TYPES:
        raise ValueError(f"Unknown recurrence: {recurring}")


async def create_planned_downtime(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    title: str,
    start_time: datetime,
    end_time: datetime,
    description: Optional[str] = None,
    recurring: str = "none",
) -> PlannedDowntimeWindow:
    _validate(start_time, end_time, recurring)

    window = PlannedDowntimeWindow(
        account_id=account_id,
        device_id=device_id,
        title=title,
        description=description,
        start_time=as_utc(start_time),
        end_time=as_utc(end_time),
        recurring=recurring,
    )
    db.add(window)
    await db.commit()
    await db.refresh(window)
    logger.info(f"Created maintenance window for device {device_id}: {title}")
    return window


async def get_planned_downtime(db: AsyncSession, account_id: int, window_id: int) -> PlannedDowntimeWindow:
    result = await db.execute(
        select(PlannedDowntimeWindow).where(
            PlannedDowntimeWindow.id == window_id,
            PlannedDowntimeWindow.account_id == account_id,
        )
    )
    window = result.scalar_one_or_none()
    if not window:
        raise NotFound(f"Maintenance window {window_id} not found")
    return window


async def list_planned_downtime(
    db: AsyncSession,
    account_id: int,
    device_id: Optional[str] = None,
) -> list[PlannedDowntimeWindow]:
    filters = [PlannedDowntimeWindow.account_id == account_id]
    if device_id:
        filters.append(PlannedDowntimeWindow.device_id == device_id)
    result = await db.execute(
        select(PlannedDowntimeWindow).where(*filters).order_by(PlannedDowntimeWindow.start_time)
    )
    return list(result.scalars().all())


async def update_planned_downtime(
    db: AsyncSession,
    account_id: int,
    window_id: int,
    **updates,
) -> PlannedDowntimeWindow:
    """Apply field updates; the resulting window must still satisfy start < end."""
    window = await get_planned_downtime(db, account_id, window_id)
    updates = {k: v for k, v in updates.items() if v is not None}

    start_time = updates.get("start_time", window.start_time)
    end_time = updates.get("end_time", window.end_time)
    _validate(start_time, end_time, updates.get("recurring", window.recurring))

    for key in ("start_time", "end_time"):
        if key in updates:
            updates[key] = as_utc(updates[key])
    for key, value in updates.items():
        setattr(window, key, value)
    await db.commit()
    await db.refresh(window)
    logger.info(f"Updated maintenance window {window_id}")
    return window


async def delete_planned_downtime(db: AsyncSession, account_id: int, window_id: int) -> None:
    await get_planned_downtime(db, account_id, window_id)
    await db.execute(
        delete(PlannedDowntimeWindow).where(PlannedDowntimeWindow.id == window_id)
    )
    await db.commit()
    logger.info(f"Deleted maintenance window {window_id}")


async def get_overlapping_planned_downtime(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
) -> list[PlannedDowntimeWindow]:
    windows = await list_planned_downtime(db, account_id, device_id)
    return [
        w for w in windows
        if any(ranges_overlap(as_utc(start), as_utc(end), s, e) for s, e in occurrences(w, start, end))
    ]


async def is_in_planned_downtime(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    timestamp: datetime,
) -> bool:
    windows = await list_planned_downtime(db, account_id, device_id)
    return any(is_timestamp_in_window(timestamp, w) for w in windows)


async def excluded_seconds(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    window_start: datetime,
    window_end: datetime,
) -> int:
    if as_utc(window_start) >= as_utc(window_end):
        raise InvalidRange("window start must be before window end")
    windows = await list_planned_downtime(db, account_id, device_id)
    return excluded_seconds_for_windows(windows, window_start, window_end)
