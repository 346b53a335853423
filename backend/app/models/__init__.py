from app.models.availability import StateChangeEvent, FlappingIncident
from app.models.planned_downtime import PlannedDowntimeWindow
from app.models.polling import PollingConfig, ApiToken
from app.models.system_event import SystemEvent

__all__ = [
    "StateChangeEvent", "FlappingIncident",
    "PlannedDowntimeWindow",
    "PollingConfig", "ApiToken",
    "SystemEvent",
]
