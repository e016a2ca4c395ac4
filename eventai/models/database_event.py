"""Database-compatible event model for data persistence layer."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from eventai.models.event import EventStatus


class Event(BaseModel):
    """Database-compatible event model matching the events table schema."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: Optional[int] = None
    event_id: str = Field(..., description="External event identifier")
    name: str = Field(..., description="Event name")
    description: Optional[str] = Field(None, description="Event description")
    venue: Optional[str] = Field(None, description="Event venue")
    date_of_event_start: datetime = Field(..., description="Event start time")
    date_of_event_end: datetime = Field(..., description="Event end time")
    status: EventStatus = Field(default=EventStatus.CREATED, description="Lifecycle status")
    venue_layout: Optional[Dict[str, Any]] = Field(None, description="Venue layout document")
    user_email: Optional[str] = Field(None, description="Owning user email")
    forecast_result: Optional[Dict[str, Any]] = Field(None, description="Latest forecast document")
    attachment_urls: List[str] = Field(default_factory=list, description="Attachment URLs")
    attachment_filenames: List[str] = Field(default_factory=list, description="Attachment file names")
    attachment_context: Optional[str] = Field(None, description="Extracted attachment context")
    popularity: Optional[Dict[str, Any]] = Field(None, description="Popularity inputs")
    popularity_extent: Optional[Dict[str, Any]] = Field(None, description="AI popularity analysis")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Update timestamp")
