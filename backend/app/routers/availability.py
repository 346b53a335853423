"""
Availability API: reports, SLA, flapping incidents, maintenance windows
and polling control, partitioned by account.
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas.availability import (
    AvailabilityReport, DeviceAvailabilityStats, RecentOutage, EventStats, SlaResult, DeviceSummary,
    StateChangeEventResponse, FlappingIncidentResponse,
    PlannedDowntimeCreate, PlannedDowntimeUpdate, PlannedDowntimeResponse,
    PollingConfigUpdate, PollingConfigResponse, PollingStats,
    FastPollRequest, FastPollResponse, PeriodType,
)
from app.services import availability, event_log, flapping, planned_downtime, polling, sla

router = APIRouter(prefix="/api/availability/{account_id}", tags=["Availability"])


def get_polling_scheduler(request: Request) -> polling.PollingScheduler:
    return request.app.state.polling_scheduler


# ── Reports ─────────────────────────────────────────────────────────────────

@router.get("/devices/stats", response_model=list[DeviceAvailabilityStats])
async def devices_stats(
    account_id: int,
    period: PeriodType = "24h",
    db: AsyncSession = Depends(get_db),
):
    """Uptime percentage and last status for every device of the account."""
    return await availability.get_devices_availability_stats(db, account_id, period)


@router.get("/devices/{device_id}/report", response_model=AvailabilityReport)
async def device_report(
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
    db: AsyncSession = Depends(get_db),
):
    return await availability.get_availability_report(db, account_id, device_id, start, end)


@router.get("/devices/{device_id}/report/{period}", response_model=AvailabilityReport)
async def device_report_for_period(
    account_id: int,
    device_id: str,
    period: PeriodType,
    db: AsyncSession = Depends(get_db),
):
    return await availability.get_availability_for_period(db, account_id, device_id, period)


@router.get("/devices/{device_id}/reports", response_model=dict[str, AvailabilityReport])
async def device_reports(
    account_id: int,
    device_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await availability.get_availability_reports(db, account_id, device_id)


@router.get("/devices/{device_id}/outages", response_model=list[RecentOutage])
async def recent_outages(
    account_id: int,
    device_id: str,
    limit: int = Query(10, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await availability.get_recent_outages(db, account_id, device_id, limit)


@router.get("/devices/{device_id}/sla", response_model=SlaResult)
async def device_sla(
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
    target: Optional[float] = Query(None, ge=0, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await sla.evaluate_sla(db, account_id, device_id, start, end, target)


@router.get("/devices/{device_id}/summary", response_model=DeviceSummary)
async def device_summary(
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
    target: Optional[float] = Query(None, ge=0, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await sla.build_device_summary(db, account_id, device_id, start, end, target)


# ── Events & flapping ───────────────────────────────────────────────────────

@router.get("/devices/{device_id}/events", response_model=list[StateChangeEventResponse])
async def device_events(
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
    db: AsyncSession = Depends(get_db),
):
    availability.validate_window(start, end)
    return await event_log.get_events(db, account_id, device_id, start, end)


@router.get("/devices/{device_id}/events/stats", response_model=EventStats)
async def device_event_stats(
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
    db: AsyncSession = Depends(get_db),
):
    availability.validate_window(start, end)
    return await event_log.get_event_stats(db, account_id, device_id, start, end)


@router.get("/flapping", response_model=list[FlappingIncidentResponse])
async def flapping_incidents(
    account_id: int,
    device_id: Optional[str] = None,
    acknowledged_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    return await flapping.list_flapping_incidents(db, account_id, device_id, acknowledged_only)


@router.post("/flapping/{incident_id}/acknowledge", response_model=FlappingIncidentResponse)
async def acknowledge_flapping(
    account_id: int,
    incident_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await flapping.acknowledge_flapping_incident(db, incident_id, account_id)


# ── Planned downtime ────────────────────────────────────────────────────────

@router.get("/planned-downtime", response_model=list[PlannedDowntimeResponse])
async def list_planned_downtime(
    account_id: int,
    device_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    return await planned_downtime.list_planned_downtime(db, account_id, device_id)


@router.post("/planned-downtime", response_model=PlannedDowntimeResponse, status_code=201)
async def create_planned_downtime(
    account_id: int,
    payload: PlannedDowntimeCreate,
    db: AsyncSession = Depends(get_db),
):
    return await planned_downtime.create_planned_downtime(
        db, account_id, payload.device_id, payload.title,
        payload.start_time, payload.end_time,
        description=payload.description, recurring=payload.recurring,
    )


@router.patch("/planned-downtime/{window_id}", response_model=PlannedDowntimeResponse)
async def update_planned_downtime(
    account_id: int,
    window_id: int,
    payload: PlannedDowntimeUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await planned_downtime.update_planned_downtime(
        db, account_id, window_id, **payload.model_dump(exclude_none=True)
    )


@router.delete("/planned-downtime/{window_id}")
async def delete_planned_downtime(
    account_id: int,
    window_id: int,
    db: AsyncSession = Depends(get_db),
):
    await planned_downtime.delete_planned_downtime(db, account_id, window_id)
    return {"message": "Maintenance window deleted"}


@router.get("/devices/{device_id}/excluded-time")
async def excluded_time(
    account_id: int,
    device_id: str,
    start: datetime,
    end: datetime,
    db: AsyncSession = Depends(get_db),
):
    seconds = await planned_downtime.excluded_seconds(db, account_id, device_id, start, end)
    return {"device_id": device_id, "excluded_seconds": seconds}


# ── Polling ─────────────────────────────────────────────────────────────────

@router.get("/polling/config", response_model=PollingConfigResponse)
async def get_polling_config(account_id: int, db: AsyncSession = Depends(get_db)):
    return await polling.get_polling_config(db, account_id)


@router.put("/polling/config", response_model=PollingConfigResponse)
async def update_polling_config(
    account_id: int,
    payload: PollingConfigUpdate,
    db: AsyncSession = Depends(get_db),
    scheduler: polling.PollingScheduler = Depends(get_polling_scheduler),
):
    config = await polling.update_polling_config(db, account_id, payload)
    await scheduler.refresh_account(account_id)
    return config


@router.post("/polling/start")
async def start_polling(
    account_id: int,
    scheduler: polling.PollingScheduler = Depends(get_polling_scheduler),
):
    started = await scheduler.start_account(account_id)
    return {"running": started}


@router.post("/polling/stop")
async def stop_polling(
    account_id: int,
    scheduler: polling.PollingScheduler = Depends(get_polling_scheduler),
):
    scheduler.stop_account(account_id)
    return {"running": False}


@router.get("/polling/devices/{device_id}/stats", response_model=PollingStats)
async def polling_stats(
    account_id: int,
    device_id: str,
    scheduler: polling.PollingScheduler = Depends(get_polling_scheduler),
):
    return scheduler.get_polling_stats(account_id, device_id)


@router.post("/devices/{device_id}/fast-poll", response_model=FastPollResponse)
async def fast_poll_device(
    account_id: int,
    device_id: str,
    payload: FastPollRequest,
    scheduler: polling.PollingScheduler = Depends(get_polling_scheduler),
):
    """Diagnostic single-device check with retries; optionally records the result."""
    if payload.record:
        status, recorded = await scheduler.confirm_device(
            account_id, device_id, payload.max_retries, payload.base_delay_seconds
        )
        return FastPollResponse(device_id=device_id, status=status, recorded=recorded)
    status = await scheduler.fast_poll(account_id, device_id, payload.max_retries, payload.base_delay_seconds)
    return FastPollResponse(device_id=device_id, status=status)
