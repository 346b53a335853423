from app.schemas.availability import (
    AvailabilityReport, Outage, RecentOutage, DeviceAvailabilityStats, EventStats, SlaResult, DeviceSummary,
    StateChangeEventResponse, FlappingIncidentResponse,
    PlannedDowntimeCreate, PlannedDowntimeUpdate, PlannedDowntimeResponse,
    PollingConfigUpdate, PollingConfigResponse, PollingStats,
    FastPollRequest, FastPollResponse,
)

__all__ = [
    "AvailabilityReport", "Outage", "RecentOutage", "DeviceAvailabilityStats",
    "EventStats", "SlaResult", "DeviceSummary",
    "StateChangeEventResponse", "FlappingIncidentResponse",
    "PlannedDowntimeCreate", "PlannedDowntimeUpdate", "PlannedDowntimeResponse",
    "PollingConfigUpdate", "PollingConfigResponse", "PollingStats",
    "FastPollRequest", "FastPollResponse",
]
