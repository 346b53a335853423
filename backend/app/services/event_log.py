"""
Device state-change event log.
Append-only record of up/down transitions per (account, device). Every
append runs the flapping detector before returning, so the detector always
sees the event it was triggered by.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from app.exceptions import InvalidRange
from app.models.availability import StateChangeEvent
from app.schemas.availability import EventStats, DetectionMethodCounts

logger = logging.getLogger(__name__)

STATUSES = ("up", "down")
DETECTION_METHODS = ("polling", "trap", "fast_polling")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC. Naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _device_filter(account_id: int, device_id: str) -> list:
    return [
        StateChangeEvent.account_id == account_id,
        StateChangeEvent.device_id == device_id,
    ]


async def get_latest_event(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    before: Optional[datetime] = None,
) -> Optional[StateChangeEvent]:
    filters = _device_filter(account_id, device_id)
    if before is not None:
        filters.append(StateChangeEvent.occurred_at <= as_utc(before))
    result = await db.execute(
        select(StateChangeEvent)
        .where(*filters)
        .order_by(StateChangeEvent.occurred_at.desc(), StateChangeEvent.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_events(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
) -> list[StateChangeEvent]:
    """Events with occurred_at in [start, end], oldest first."""
    result = await db.execute(
        select(StateChangeEvent)
        .where(
            *_device_filter(account_id, device_id),
            StateChangeEvent.occurred_at >= as_utc(start),
            StateChangeEvent.occurred_at <= as_utc(end),
        )
        .order_by(StateChangeEvent.occurred_at, StateChangeEvent.id)
    )
    return list(result.scalars().all())


async def record_event(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    status: str,
    detection_method: str,
    reason: Optional[str] = None,
    retry_attempts: int = 0,
    occurred_at: Optional[datetime] = None,
) -> StateChangeEvent:
    """Append a state change and run flapping detection on it.

    Raises InvalidRange if the event would predate the device's latest
    recorded event.
    """
    if status not in STATUSES:
        raise ValueError(f"Unknown status: {status}")
    if detection_method not in DETECTION_METHODS:
        raise ValueError(f"Unknown detection method: {detection_method}")

    occurred_at = as_utc(occurred_at) or datetime.now(timezone.utc)

    latest = await get_latest_event(db, account_id, device_id)
    if latest is not None and as_utc(latest.occurred_at) > occurred_at:
        raise InvalidRange(
            f"Event for device {device_id} at {occurred_at.isoformat()} predates "
            f"latest recorded event at {as_utc(latest.occurred_at).isoformat()}"
        )

    event = StateChangeEvent(
        account_id=account_id,
        device_id=device_id,
        status=status,
        occurred_at=occurred_at,
        detection_method=detection_method,
        reason=reason,
        retry_attempts=retry_attempts,
    )
    db.add(event)
    await db.commit()

    logger.info(
        f"Recorded {status} event for device {device_id} "
        f"(account {account_id}, method: {detection_method})"
    )

    from app.services.flapping import on_event_recorded
    await on_event_recorded(db, event)

    return event


async def get_event_count(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
    status: Optional[str] = None,
) -> int:
    filters = _device_filter(account_id, device_id) + [
        StateChangeEvent.occurred_at >= as_utc(start),
        StateChangeEvent.occurred_at <= as_utc(end),
    ]
    if status:
        filters.append(StateChangeEvent.status == status)
    result = await db.execute(select(func.count(StateChangeEvent.id)).where(*filters))
    return result.scalar() or 0


def count_transitions(statuses: Iterable[str]) -> int:
    """Number of adjacent status changes; the first status is only a baseline."""
    transitions = 0
    previous = None
    for status in statuses:
        if previous is not None and status != previous:
            transitions += 1
        previous = status
    return transitions


async def get_transition_count(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
) -> int:
    events = await get_events(db, account_id, device_id, start, end)
    return count_transitions(e.status for e in events)


async def get_event_stats(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
) -> EventStats:
    events = await get_events(db, account_id, device_id, start, end)
    if not events:
        return EventStats()

    methods = DetectionMethodCounts(
        polling=sum(1 for e in events if e.detection_method == "polling"),
        trap=sum(1 for e in events if e.detection_method == "trap"),
        fast_polling=sum(1 for e in events if e.detection_method == "fast_polling"),
    )
    return EventStats(
        total_events=len(events),
        up_events=sum(1 for e in events if e.status == "up"),
        down_events=sum(1 for e in events if e.status == "down"),
        transitions=count_transitions(e.status for e in events),
        detection_methods=methods,
        average_retries=sum(e.retry_attempts or 0 for e in events) / len(events),
    )


def build_state_change_payload(event: StateChangeEvent) -> dict:
    """Notification payload for webhook dispatch."""
    return {
        "accountId": event.account_id,
        "deviceId": event.device_id,
        "status": event.status,
        "timestamp": as_utc(event.occurred_at).isoformat(),
        "detectionMethod": event.detection_method,
        "reason": event.reason,
        "retryAttempts": event.retry_attempts or 0,
    }
