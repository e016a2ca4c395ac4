"""Crowd forecast orchestration against the external forecasting models."""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import httpx
import structlog

from eventai.errors import (
    ModelCallError,
    ModelEndpointNotFoundError,
    ModelServiceError,
    ModelServiceUnavailableError,
    ModelTimeoutError,
    NotFoundError,
    ValidationFailedError,
)
from eventai.models.config import EventAIConfig
from eventai.models.validation import ValidationResult, is_non_negative_number, parse_datetime
from eventai.services.event_service import EventService


logger = structlog.get_logger(__name__)

USER_AGENT = "EventAI-Server/1.0"
GRID_STEP = timedelta(minutes=5)
SIMULATION_VALUE = 10
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

NEW_MODEL_TEST_PAYLOAD = {
    "gates": ["test"],
    "schedule_start_time": "2025-09-21 14:00:00",
    "event_end_time": "2025-09-21 16:00:00",
    "method_exits": "test",
    "freq": "5min",
}

_DNS_FAILURE_HINTS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated",
)

_TZ_SUFFIX = re.compile(r"([+-]\d{2}:\d{2}|Z)$")

# raised while shaping a malformed model payload
MALFORMED_RESPONSE_ERRORS = (AttributeError, KeyError, TypeError, ValueError, OverflowError)


def clean_datetime_string(value: Optional[str]) -> Optional[str]:
    """Drop a trailing ``Z``/``+HH:MM`` and use a space as the date/time separator."""
    if not value:
        return value
    return _TZ_SUFFIX.sub("", str(value)).replace("T", " ", 1)


def round_half_up(value: Any) -> int:
    return int(math.floor(float(value or 0) + 0.5))


def classify_model_error(exc: Exception) -> ModelServiceError:
    """Turn an httpx failure into the matching model service error."""
    if isinstance(exc, ModelServiceError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ModelTimeoutError(details=str(exc))
    if isinstance(exc, httpx.ConnectError):
        message = str(exc).lower()
        if any(hint in message for hint in _DNS_FAILURE_HINTS):
            return ModelEndpointNotFoundError(details=str(exc))
        return ModelServiceUnavailableError(details=str(exc))
    return ModelCallError(str(exc) or type(exc).__name__)


class ForecastService:
    """Generates, stores and inspects event crowd forecasts."""

    def __init__(self, event_service: EventService, config: EventAIConfig):
        self.event_service = event_service
        self.ai_model_endpoint = config.ai_model_endpoint
        self.new_model_endpoint = config.forecast_model_endpoint
        self.model_timeout = config.model_timeout / 1000.0
        self.health_timeout = config.model_health_timeout / 1000.0
        self.logger = logger.bind(component="forecast_service")

    async def _require_event(self, event_id: str) -> Dict[str, Any]:
        event = await self.event_service.get_event_by_id(event_id)
        if event is None:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND")
        return event

    async def _post(self, url: str, payload: Dict[str, Any], timeout: float) -> Any:
        """POST JSON to a model endpoint; every failure surfaces as a ModelServiceError."""
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
                )
        except httpx.HTTPError as e:
            error = classify_model_error(e)
            self.logger.error("Model request failed", endpoint=url,
                              error=str(e), classified=type(error).__name__)
            raise error

        if response.status_code != 200:
            self.logger.error("Model returned non-200 status",
                              endpoint=url, status=response.status_code,
                              body=response.text[:500])
            raise ModelCallError(
                f"{response.status_code} - {response.reason_phrase}",
                details={"status": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise ModelCallError(f"invalid JSON response ({e})")

    # Legacy model

    def prepare_model_input(self, event: Dict[str, Any], additional: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        model_input = {
            "event_id": event.get("eventId"),
            "event_name": event.get("name"),
            "date_of_event": event.get("dateOfEventStart"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        model_input.update(additional or {})
        self.logger.info("Prepared model input", event_id=event.get("eventId"),
                         input_keys=sorted(model_input))
        return model_input

    def validate_forecast_input(self, model_input: Dict[str, Any]) -> ValidationResult:
        result = ValidationResult()
        if not model_input.get("event_id"):
            result.add_error("event_id is required")
        for key in ("historical_data", "weather_data", "promotional_data"):
            if not model_input.get(key):
                result.add_warning(f"{key} not provided - may affect accuracy")
        return result

    async def call_ai_model(self, model_input: Dict[str, Any]) -> Dict[str, Any]:
        self.logger.info("Calling AI model", endpoint=self.ai_model_endpoint)
        raw = await self._post(self.ai_model_endpoint, model_input, self.model_timeout)
        if not isinstance(raw, dict):
            raise ModelCallError("unexpected response shape")
        try:
            return self.process_model_response(raw)
        except MALFORMED_RESPONSE_ERRORS as e:
            self.logger.error("Failed to process AI model response", error=str(e))
            raise ModelCallError(f"Failed to process model response: {e}") from e

    def process_model_response(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        crowd = raw.get("crowd_forecast") or {}
        return {
            "prediction": raw,
            "metadata": {
                "processedAt": datetime.now(timezone.utc).isoformat(),
                "modelVersion": raw.get("model_version") or "unknown",
                "confidence": crowd.get("confidence_score"),
            },
            "summary": self.generate_forecast_summary(raw),
        }

    def generate_forecast_summary(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        crowd = raw.get("crowd_forecast") or {}
        risk = raw.get("risk_assessment") or {}
        return {
            "totalAttendance": crowd.get("total_predicted_attendance") or 0,
            "peakHours": crowd.get("peak_hours") or [],
            "congestionRisk": risk.get("congestion_risk") or "unknown",
            "highRiskZones": risk.get("high_risk_zones") or [],
            "recommendations": risk.get("recommended_actions") or [],
            "confidence": crowd.get("confidence_score") or 0,
        }

    async def generate_forecast(self, event_id: str, input_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run the generic forecast model for an event and store the result.

        Raises:
            NotFoundError: event does not exist
            ModelServiceError: the model could not be reached or failed
        """
        self.logger.info("Generating forecast", event_id=event_id)
        event = await self._require_event(event_id)

        model_input = self.prepare_model_input(event, input_data)
        forecast_result = await self.call_ai_model(model_input)
        await self.event_service.update_event_forecast(event_id, forecast_result)

        self.logger.info("Forecast generated", event_id=event_id)
        return {
            "eventId": event_id,
            "forecastResult": forecast_result,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "modelEndpoint": self.ai_model_endpoint,
            "inputData": model_input,
        }

    # Gates model

    def validate_new_model_input(self, payload: Dict[str, Any]) -> ValidationResult:
        result = ValidationResult()

        gates = payload.get("gates")
        if not isinstance(gates, list) or not gates:
            result.add_error("gates must be a non-empty array")
            gates = None
        elif not all(isinstance(gate, str) and gate.strip() for gate in gates):
            result.add_error("every gate must be a non-empty string")

        gates_crowd = payload.get("gates_crowd")
        if not isinstance(gates_crowd, list):
            result.add_error("gates_crowd must be an array")
        else:
            if gates is not None and len(gates_crowd) != len(gates):
                result.add_error(
                    f"gates_crowd length ({len(gates_crowd)}) must match gates length ({len(gates)})"
                )
            for index, value in enumerate(gates_crowd):
                if not is_non_negative_number(value):
                    result.add_error(f"gates_crowd[{index}] must be a non-negative number")

        start = parse_datetime(clean_datetime_string(payload.get("schedule_start_time")))
        end = parse_datetime(clean_datetime_string(payload.get("event_end_time")))
        if start is None:
            result.add_error("schedule_start_time must be a valid datetime")
        if end is None:
            result.add_error("event_end_time must be a valid datetime")
        if start is not None and end is not None and end <= start:
            result.add_error("event_end_time must be after schedule_start_time")

        for key in ("freq", "method_exits"):
            value = payload.get(key)
            if not isinstance(value, str) or not value.strip():
                result.add_error(f"{key} must be a non-empty string")

        return result

    async def call_new_ai_model(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = dict(payload)
        cleaned["schedule_start_time"] = clean_datetime_string(payload.get("schedule_start_time"))
        cleaned["event_end_time"] = clean_datetime_string(payload.get("event_end_time"))

        self.logger.info("Calling gates model", endpoint=self.new_model_endpoint,
                         gates=cleaned.get("gates"))
        raw = await self._post(self.new_model_endpoint, cleaned, self.model_timeout)
        if not isinstance(raw, dict):
            raise ModelCallError("unexpected response shape")

        self.logger.info("Gates model response received",
                         has_arrivals=bool(raw.get("arrivals")),
                         has_exits=bool(raw.get("exits")))
        try:
            return self.process_new_model_response(
                raw, cleaned["gates"], cleaned.get("gates_crowd") or [],
                cleaned["schedule_start_time"], cleaned["event_end_time"],
            )
        except MALFORMED_RESPONSE_ERRORS as e:
            self.logger.error("Failed to process gates model response", error=str(e))
            raise ModelCallError(f"Failed to process model response: {e}") from e

    def process_new_model_response(self, raw: Dict[str, Any], gates: List[str], gates_crowd: List[Any],
                                   schedule_start_time: Optional[str],
                                   event_end_time: Optional[str]) -> Dict[str, Any]:
        forecast = self.structure_forecast_data(raw, gates, gates_crowd, schedule_start_time, event_end_time)
        first_gate = next(iter(forecast.values()), None)
        return {
            "forecast": forecast,
            "metadata": {
                "processedAt": datetime.now(timezone.utc).isoformat(),
                "modelVersion": raw.get("model_version") or "forecast_inout_v1",
                "endpoint": self.new_model_endpoint,
                "totalGates": len(forecast),
                "timeFrameCount": len(first_gate["timeFrames"]) if first_gate else 0,
            },
            "summary": self.generate_new_model_forecast_summary(forecast),
        }

    def structure_forecast_data(self, raw: Dict[str, Any], gates: List[str], gates_crowd: List[Any],
                                schedule_start_time: Optional[str] = None,
                                event_end_time: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """
        Shape the model's arrivals/exits series into ``{gate: {capacity, timeFrames}}``.

        With a schedule window the series is laid onto a contiguous 5-minute
        grid covering every timestamp the model returned. Each slot takes the
        arrivals value, else the exits value, else a fixed simulation filler.
        """
        arrivals = raw.get("arrivals") or {}
        exits = raw.get("exits") or {}
        structured: Dict[str, Dict[str, Any]] = {}
        if not arrivals:
            return structured

        for index, gate in enumerate(gates):
            capacity = gates_crowd[index] if index < len(gates_crowd) else None
            series = arrivals.get(gate)
            if not isinstance(series, list):
                structured[gate] = {"capacity": capacity, "timeFrames": []}
                continue

            arrival_frames = [
                {
                    "timestamp": clean_datetime_string(point.get("ds")),
                    "predicted": round_half_up(point.get("yhat")),
                    "lower_bound": round_half_up(point.get("yhat_lower")),
                    "upper_bound": round_half_up(point.get("yhat_upper")),
                }
                for point in series
            ]

            if schedule_start_time and event_end_time:
                exit_frames = [
                    {
                        "timestamp": clean_datetime_string(point.get("ds")),
                        "predicted": round_half_up(max(0, point.get("yhat") or 0)),
                        "lower_bound": round_half_up(max(0, point.get("yhat_lower") or 0)),
                        "upper_bound": round_half_up(max(0, point.get("yhat_upper") or 0)),
                    }
                    for point in exits.get(gate) or []
                ]
                time_frames = self._fill_grid(arrival_frames, exit_frames,
                                              schedule_start_time, event_end_time)
                self.logger.info("Structured gate forecast", gate=gate,
                                 arrivals=len(arrival_frames), exits=len(exit_frames),
                                 frames=len(time_frames))
            else:
                time_frames = arrival_frames

            structured[gate] = {"capacity": capacity, "timeFrames": time_frames}

        return structured

    def _fill_grid(self, arrival_frames: List[Dict[str, Any]], exit_frames: List[Dict[str, Any]],
                   start_time: str, end_time: str) -> List[Dict[str, Any]]:
        def keyed(frames: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
            keyed_frames = {}
            for frame in frames:
                parsed = parse_datetime(frame["timestamp"])
                if parsed is not None:
                    keyed_frames[parsed.strftime(TIMESTAMP_FORMAT)] = frame
            return keyed_frames

        by_source = (("arrivals", keyed(arrival_frames)), ("exits", keyed(exit_frames)))

        stamps = sorted(
            parsed for parsed in (
                parse_datetime(frame["timestamp"]) for frame in arrival_frames + exit_frames
            ) if parsed is not None
        )
        first = stamps[0] if stamps else parse_datetime(start_time)
        last = stamps[-1] if stamps else parse_datetime(end_time)
        if first is None or last is None:
            return []

        frames = []
        current = first
        while current <= last:
            stamp = current.strftime(TIMESTAMP_FORMAT)
            for source, frames_by_stamp in by_source:
                if stamp in frames_by_stamp:
                    frames.append(dict(frames_by_stamp[stamp], dataSource=source))
                    break
            else:
                frames.append({
                    "timestamp": stamp,
                    "predicted": SIMULATION_VALUE,
                    "lower_bound": SIMULATION_VALUE,
                    "upper_bound": SIMULATION_VALUE,
                    "dataSource": "simulation",
                })
            current += GRID_STEP
        return frames

    def generate_new_model_forecast_summary(self, forecast: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        gate_names = list(forecast)
        first_frames = forecast[gate_names[0]]["timeFrames"] if gate_names else []

        predictions = []
        for gate in gate_names:
            frames = forecast[gate]["timeFrames"]
            values = [frame["predicted"] for frame in frames]
            sources = {"arrivals": 0, "exits": 0, "simulation": 0}
            for frame in frames:
                source = frame.get("dataSource")
                if source in sources:
                    sources[source] += 1
            predictions.append({
                "gate": gate,
                "capacity": forecast[gate]["capacity"],
                "totalTimeFrames": len(frames),
                "peakPrediction": max(values) if values else 0,
                "avgPrediction": round_half_up(sum(values) / len(values)) if values else 0,
                "dataSources": sources,
            })

        return {
            "totalGates": len(gate_names),
            "gates": gate_names,
            "forecastPeriod": {
                "start": first_frames[0]["timestamp"] if first_frames else None,
                "end": first_frames[-1]["timestamp"] if first_frames else None,
            },
            "predictions": predictions,
            "processedAt": datetime.now(timezone.utc).isoformat(),
            "status": "completed",
        }

    async def generate_forecast_with_new_model(self, event_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run the gates model for an event and store the structured result.

        Raises:
            NotFoundError: event does not exist
            ValidationFailedError: payload failed the gates checks
            ModelServiceError: the model could not be reached or failed
        """
        self.logger.info("Generating forecast with gates model", event_id=event_id)
        await self._require_event(event_id)

        validation = self.validate_new_model_input(payload)
        if not validation:
            raise ValidationFailedError("Invalid forecast input data", details=validation.errors)

        forecast_result = await self.call_new_ai_model(payload)
        await self.event_service.update_event_forecast(event_id, forecast_result)

        self.logger.info("Gates forecast generated", event_id=event_id,
                         gates=forecast_result["metadata"]["totalGates"])
        return {
            "eventId": event_id,
            "forecastResult": forecast_result,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "modelEndpoint": self.new_model_endpoint,
            "inputData": payload,
        }

    async def get_forecast(self, event_id: str) -> Optional[Dict[str, Any]]:
        event = await self._require_event(event_id)
        if not event.get("forecastResult"):
            return None
        return {
            "eventId": event_id,
            "forecastResult": event["forecastResult"],
            "lastUpdated": event.get("updatedAt"),
        }

    async def delete_forecast(self, event_id: str) -> None:
        await self._require_event(event_id)
        await self.event_service.update_event_forecast(event_id, None)
        self.logger.info("Forecast deleted", event_id=event_id)

    async def _probe(self, url: str, payload: Dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.health_timeout) as client:
                response = await client.post(url, json=payload)
            response.raise_for_status()
            self.logger.info("Model health check succeeded", endpoint=url, status=response.status_code)
            return True
        except httpx.HTTPError as e:
            self.logger.error("Model health check failed", endpoint=url, error=str(e))
            return False

    async def test_model_connection(self) -> bool:
        payload = {"test": True, "timestamp": datetime.now(timezone.utc).isoformat()}
        return await self._probe(f"{self.ai_model_endpoint.rstrip('/')}/health", payload)

    async def test_new_model_connection(self) -> bool:
        return await self._probe(self.new_model_endpoint, dict(NEW_MODEL_TEST_PAYLOAD))
