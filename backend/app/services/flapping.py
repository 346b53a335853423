"""
Flapping detector.
Runs after every state-change append and raises a FlappingIncident when a
device oscillates between up and down too often inside a sliding window.
At most one unacknowledged incident is kept per device and window.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from app.config import settings
from app.exceptions import NotFound
from app.models.availability import StateChangeEvent, FlappingIncident
from app.services.event_log import as_utc, count_transitions, get_events

logger = logging.getLogger(__name__)

FLAPPING_WINDOW_SECONDS = settings.FLAPPING_WINDOW_SECONDS
FLAPPING_THRESHOLD = settings.FLAPPING_THRESHOLD

# Exact-match lookup: counts other than 5 and 10 fall back to "high".
FLAPPING_SEVERITY_MAP = {
    5: "low",
    10: "medium",
    15: "high",
}

# Serializes check-then-create per (account, device) within this process.
# Entries exist only while a detection for that device is in progress.
_incident_locks: dict[tuple[int, str], asyncio.Lock] = {}
_incident_lock_users: dict[tuple[int, str], int] = {}


@asynccontextmanager
async def _incident_lock(key: tuple[int, str]):
    lock = _incident_locks.setdefault(key, asyncio.Lock())
    _incident_lock_users[key] = _incident_lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _incident_lock_users[key] -= 1
        if not _incident_lock_users[key]:
            del _incident_lock_users[key]
            del _incident_locks[key]


def severity_for(transition_count: int) -> str:
    return FLAPPING_SEVERITY_MAP.get(transition_count, "high")


async def detect_flapping(
    db: AsyncSession,
    account_id: int,
    device_id: str,
    now: Optional[datetime] = None,
) -> Optional[FlappingIncident]:
    """Evaluate the window ending at `now`; return the incident if one was created."""
    now = as_utc(now) or datetime.now(timezone.utc)
    window_start = now - timedelta(seconds=FLAPPING_WINDOW_SECONDS)

    events = await get_events(db, account_id, device_id, window_start, now)
    if len(events) < FLAPPING_THRESHOLD:
        return None

    transition_count = count_transitions(e.status for e in events)
    if transition_count < FLAPPING_THRESHOLD:
        return None

    severity = severity_for(transition_count)
    logger.warning(
        f"Device {device_id} (account {account_id}) flapping: "
        f"{transition_count} transitions in {FLAPPING_WINDOW_SECONDS}s"
    )

    async with _incident_lock((account_id, device_id)):
        result = await db.execute(
            select(FlappingIncident)
            .where(
                FlappingIncident.account_id == account_id,
                FlappingIncident.device_id == device_id,
                FlappingIncident.acknowledged == False,  # noqa: E712
                FlappingIncident.start_time >= window_start,
            )
            .limit(1)
        )
        if result.scalar_one_or_none():
            logger.debug(f"Open flapping incident already exists for device {device_id}")
            return None

        incident = FlappingIncident(
            account_id=account_id,
            device_id=device_id,
            transition_count=transition_count,
            window_seconds=FLAPPING_WINDOW_SECONDS,
            start_time=window_start,
            end_time=now,
            severity=severity,
            acknowledged=False,
        )
        db.add(incident)
        await db.commit()

    return incident


async def on_event_recorded(db: AsyncSession, event: StateChangeEvent) -> Optional[FlappingIncident]:
    """Post-append hook. Detection failures are logged, never raised to the writer."""
    try:
        return await detect_flapping(db, event.account_id, event.device_id, event.occurred_at)
    except Exception as e:
        logger.error(f"Flapping detection failed for device {event.device_id}: {e}")
        return None


async def list_flapping_incidents(
    db: AsyncSession,
    account_id: int,
    device_id: Optional[str] = None,
    acknowledged_only: bool = False,
) -> list[FlappingIncident]:
    filters = [FlappingIncident.account_id == account_id]
    if device_id:
        filters.append(FlappingIncident.device_id == device_id)
    if acknowledged_only:
        filters.append(FlappingIncident.acknowledged == True)  # noqa: E712
    result = await db.execute(
        select(FlappingIncident).where(*filters).order_by(FlappingIncident.start_time.desc())
    )
    return list(result.scalars().all())


async def acknowledge_flapping_incident(
    db: AsyncSession,
    incident_id: int,
    account_id: Optional[int] = None,
) -> FlappingIncident:
    filters = [FlappingIncident.id == incident_id]
    if account_id is not None:
        filters.append(FlappingIncident.account_id == account_id)
    result = await db.execute(select(FlappingIncident).where(*filters))
    incident = result.scalar_one_or_none()
    if not incident:
        raise NotFound(f"Flapping incident {incident_id} not found")

    await db.execute(
        update(FlappingIncident)
        .where(FlappingIncident.id == incident_id)
        .values(acknowledged=True, acknowledged_at=datetime.now(timezone.utc))
    )
    await db.commit()
    await db.refresh(incident)
    logger.info(f"Acknowledged flapping incident {incident_id}")
    return incident


def build_flapping_payload(incident: FlappingIncident) -> dict:
    """Notification payload for webhook dispatch."""
    return {
        "accountId": incident.account_id,
        "deviceId": incident.device_id,
        "transitionCount": incident.transition_count,
        "windowSeconds": incident.window_seconds,
        "startTime": as_utc(incident.start_time).isoformat(),
        "endTime": as_utc(incident.end_time).isoformat(),
        "severity": incident.severity,
    }
