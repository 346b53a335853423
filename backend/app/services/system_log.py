"""Operational log of background work, written to the system_events table."""
import logging
from typing import Optional
from app.models.system_event import SystemEvent

logger = logging.getLogger(__name__)


async def log_system_event(
    session_factory,
    level: str,
    source: str,
    event_type: str,
    message: str,
    account_id: Optional[int] = None,
    resource_id: Optional[str] = None,
    details: Optional[str] = None,
) -> None:
    """
    Write a SystemEvent record. Opens its own session so it can be called
    from scheduler jobs that have no request context.
    """
    try:
        async with session_factory() as db:
            db.add(SystemEvent(
                level=level,
                source=source,
                event_type=event_type,
                account_id=account_id,
                resource_id=resource_id,
                message=message[:500],
                details=details,
            ))
            await db.commit()
    except Exception as exc:
        # Never let logging failure crash the caller
        logger.error("Failed to write system event: %s", exc)
