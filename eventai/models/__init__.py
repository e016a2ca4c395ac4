"""Data models for the Event AI server."""

from .config import EventAIConfig, get_config
from .database_event import Event
from .event import EventStatus, CreateEventRequest, UpdateEventRequest, PopularityRequest
from .forecast import ForecastInputData, LegacyForecastRequest, NewModelForecastRequest
from .validation import ValidationResult

__all__ = [
    "EventAIConfig",
    "get_config",
    "Event",
    "EventStatus",
    "CreateEventRequest",
    "UpdateEventRequest",
    "PopularityRequest",
    "ForecastInputData",
    "LegacyForecastRequest",
    "NewModelForecastRequest",
    "ValidationResult",
]
