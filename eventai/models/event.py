"""Event-related request models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from eventai.models.validation import as_utc, is_valid_email


class EventStatus(str, Enum):
    """Event lifecycle status."""

    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CamelModel(BaseModel):
    """Base for request bodies exposed with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
    )

    def to_api_dict(self) -> Dict[str, Any]:
        """Dump only the fields the caller supplied, keyed by camelCase."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class CreateEventRequest(CamelModel):
    """Body of ``POST /api/v1/events``."""

    name: str = Field(..., min_length=1, max_length=255, description="Event name")
    description: Optional[str] = Field(None, max_length=5000, description="Event description")
    venue: Optional[str] = Field(None, min_length=1, max_length=255, description="Event venue")
    date_of_event_start: datetime = Field(..., description="ISO-8601 start")
    date_of_event_end: datetime = Field(..., description="ISO-8601 end")
    status: EventStatus = Field(default=EventStatus.CREATED)
    venue_layout: Optional[Dict[str, Any]] = Field(None, description="Venue layout document")
    user_email: str = Field(..., description="Owning user email")

    @field_validator("date_of_event_start", "date_of_event_end")
    @classmethod
    def _normalise_timezone(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("user_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not is_valid_email(value):
            raise ValueError("Valid user email is required")
        return value.lower()

    @model_validator(mode="after")
    def _check_date_range(self):
        if self.date_of_event_end <= self.date_of_event_start:
            raise ValueError("End date must be after start date")
        return self

    def to_api_dict(self) -> Dict[str, Any]:
        data = super().to_api_dict()
        # status carries a default that must always be persisted
        data["status"] = self.status
        return data


class UpdateEventRequest(CamelModel):
    """Body of ``PUT /api/v1/events/{eventId}``. Every field is optional."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    venue: Optional[str] = Field(None, min_length=1, max_length=255)
    date_of_event_start: Optional[datetime] = None
    date_of_event_end: Optional[datetime] = None
    status: Optional[EventStatus] = None
    venue_layout: Optional[Dict[str, Any]] = None
    user_email: Optional[str] = None

    @field_validator("date_of_event_start", "date_of_event_end")
    @classmethod
    def _normalise_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @field_validator("user_email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_email(value):
            raise ValueError("Valid user email is required")
        return value.lower() if value else value

    @model_validator(mode="after")
    def _check_date_range(self):
        if self.date_of_event_start and self.date_of_event_end:
            if self.date_of_event_end <= self.date_of_event_start:
                raise ValueError("End date must be after start date")
        return self


class PopularityRequest(CamelModel):
    """Popularity inputs: what kind of event, who features, and where."""

    type: Optional[str] = Field(None, max_length=100, description="concert | event | ...")
    feat: Optional[str] = Field(None, max_length=500, description="Featured artists or speakers")
    location: Optional[str] = Field(None, max_length=255, description="Country or region")
