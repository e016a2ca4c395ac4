"""Forecast request models."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from eventai.models.event import CamelModel


class ForecastInputData(CamelModel):
    """Optional caller-supplied inputs for the generic forecast model."""

    model_config = ConfigDict(extra="allow")

    historical_data: Optional[Dict[str, Any]] = None
    weather_data: Optional[Dict[str, Any]] = None
    promotional_data: Optional[Dict[str, Any]] = None
    expected_attendance: Optional[int] = Field(None, ge=1, description="Expected attendance")
    tickets_sold: Optional[int] = Field(None, ge=0, description="Tickets sold so far")

    def to_model_input(self) -> Dict[str, Any]:
        """Snake_case dump of supplied values, extra keys passed through untouched."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class LegacyForecastRequest(CamelModel):
    """Body of ``POST /forecast/legacy``."""

    event_id: str = Field(..., min_length=1, description="Event ID is required")
    input_data: ForecastInputData = Field(default_factory=ForecastInputData)


class NewModelForecastRequest(BaseModel):
    """Body of ``POST /forecast``; the model payload keys are snake_case on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., alias="eventId", min_length=1)
    gates: List[Any] = Field(..., description="Gate identifiers")
    gates_crowd: List[Any] = Field(..., description="Per-gate capacity, same order as gates")
    schedule_start_time: str = Field(..., description="Forecast window start")
    event_end_time: str = Field(..., description="Event end time")
    method_exits: str = Field(default="gaussian", description="Exit estimation method")
    freq: str = Field(default="5min", description="Resampling frequency")
    include_recommendations: bool = Field(default=True, alias="includeRecommendations")

    def to_model_payload(self) -> Dict[str, Any]:
        return {
            "gates": self.gates,
            "gates_crowd": self.gates_crowd,
            "schedule_start_time": self.schedule_start_time,
            "event_end_time": self.event_end_time,
            "method_exits": self.method_exits,
            "freq": self.freq,
        }
