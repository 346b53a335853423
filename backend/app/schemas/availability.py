from pydantic import BaseModel, Field
from typing import Literal, Optional, List
from datetime import datetime

DeviceStatus = Literal["up", "down"]
ReportStatus = Literal["up", "down", "unknown"]
DetectionMethod = Literal["polling", "trap", "fast_polling"]
Severity = Literal["low", "medium", "high"]
RecurringType = Literal["none", "daily", "weekly", "monthly"]
PeriodType = Literal["5m", "1h", "24h", "7d", "30d"]


class StateChangeEventResponse(BaseModel):
    id: int
    account_id: int
    device_id: str
    status: DeviceStatus
    occurred_at: datetime
    detection_method: DetectionMethod
    reason: Optional[str] = None
    retry_attempts: int = 0

    model_config = {"from_attributes": True}


class Outage(BaseModel):
    start: datetime
    end: datetime
    duration_seconds: int
    reason: Optional[str] = None


class AvailabilityReport(BaseModel):
    device_id: str
    window_start: datetime
    window_end: datetime
    uptime_seconds: int
    downtime_seconds: int
    total_seconds: int
    uptime_percentage: float
    outages: List[Outage] = []
    current_status: ReportStatus = "unknown"
    last_state_change: Optional[datetime] = None


class RecentOutage(BaseModel):
    start: datetime
    reason: Optional[str] = None
    detection_method: str


class DeviceAvailabilityStats(BaseModel):
    device_id: str
    uptime_percentage: float
    last_status: ReportStatus = "unknown"


class DetectionMethodCounts(BaseModel):
    polling: int = 0
    trap: int = 0
    fast_polling: int = 0


class EventStats(BaseModel):
    total_events: int = 0
    up_events: int = 0
    down_events: int = 0
    transitions: int = 0
    detection_methods: DetectionMethodCounts = DetectionMethodCounts()
    average_retries: float = 0.0


class FlappingIncidentResponse(BaseModel):
    id: int
    account_id: int
    device_id: str
    transition_count: int
    window_seconds: int
    start_time: datetime
    end_time: datetime
    severity: Severity
    acknowledged: bool
    acknowledged_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PlannedDowntimeCreate(BaseModel):
    device_id: str
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    recurring: RecurringType = "none"


class PlannedDowntimeUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    recurring: Optional[RecurringType] = None


class PlannedDowntimeResponse(BaseModel):
    id: int
    account_id: int
    device_id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    recurring: RecurringType

    model_config = {"from_attributes": True}


class SlaResult(BaseModel):
    target: float
    achieved_uptime: float
    compliant: bool
    breach_duration_seconds: float
    total_seconds: float
    excluded_seconds: int
    available_seconds: float
    down_seconds: int


class FlappingSummary(BaseModel):
    is_flapping: bool
    incident_count: int
    severity: Optional[str] = None


class DeviceSummary(BaseModel):
    """Everything the report exporters need for one device and window."""
    device_id: str
    window_start: datetime
    window_end: datetime
    availability: AvailabilityReport
    grade: str
    events: EventStats
    flapping: FlappingSummary
    excluded_seconds: int
    sla: SlaResult


class PollingConfigUpdate(BaseModel):
    polling_interval_seconds: Optional[int] = Field(default=None, ge=60, le=3600)
    fast_polling_interval_seconds: Optional[int] = Field(default=None, ge=10, le=300)
    fast_polling_retries: Optional[int] = Field(default=None, ge=1, le=10)
    enabled: Optional[bool] = None


class PollingConfigResponse(BaseModel):
    account_id: int
    polling_interval_seconds: int
    fast_polling_interval_seconds: int
    fast_polling_retries: int
    enabled: bool

    model_config = {"from_attributes": True}


class PollingStats(BaseModel):
    last_status: Optional[DeviceStatus] = None
    last_check_time: Optional[datetime] = None
    failure_count: int = 0
    running: bool = False


class FastPollRequest(BaseModel):
    max_retries: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0, le=60)
    record: bool = False


class FastPollResponse(BaseModel):
    device_id: str
    status: ReportStatus
    recorded: bool = False

