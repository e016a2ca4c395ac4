"""Forecast routes for the gates model and the legacy generic model."""

import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request

from eventai.api.dependencies import get_bedrock_service, get_forecast_service
from eventai.errors import (
    AppError,
    ModelCallError,
    ModelServiceError,
    NotFoundError,
    ValidationFailedError,
    success_response,
)
from eventai.models.forecast import ForecastInputData, LegacyForecastRequest, NewModelForecastRequest
from eventai.services import BedrockService, ForecastService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/forecast", tags=["forecast"])


def handle_model_errors(failure_message: str) -> Callable[[Callable], Callable]:
    """Map model failures onto the route's public errors; other AppErrors pass through."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except ModelCallError as e:
                logger.error(f"{failure_message}: {e.message}")
                raise AppError(failure_message, 500, details=e.message, code="FORECAST_FAILED")
            except ModelServiceError as e:
                logger.error(f"AI model service unavailable: {e.message}")
                raise AppError("AI model service unavailable", 503, details=e.message,
                               code="SERVICE_UNAVAILABLE")

        return wrapper

    return decorator


def _validate_legacy_input(forecasts: ForecastService, event_id: str, input_data: Dict[str, Any]):
    validation = forecasts.validate_forecast_input({"event_id": event_id, **input_data})
    if not validation:
        raise ValidationFailedError("Invalid forecast input data", details=validation.errors)
    return validation


@router.post("")
@router.post("/", include_in_schema=False)
@handle_model_errors("Failed to generate forecast")
async def generate_forecast(request: Request,
                            body: NewModelForecastRequest,
                            forecasts: ForecastService = Depends(get_forecast_service),
                            bedrock: BedrockService = Depends(get_bedrock_service)):
    payload = body.to_model_payload()
    result = await forecasts.generate_forecast_with_new_model(body.event_id, payload)

    if body.include_recommendations:
        result["recommendations"] = await bedrock.get_incident_recommendation(
            result["forecastResult"], payload
        )

    return success_response(request, result, "Forecast generated successfully")


@router.post("/legacy")
@handle_model_errors("Failed to generate forecast")
async def generate_legacy_forecast(request: Request,
                                   body: LegacyForecastRequest,
                                   forecasts: ForecastService = Depends(get_forecast_service)):
    input_data = body.input_data.to_model_input()
    validation = _validate_legacy_input(forecasts, body.event_id, input_data)

    result = await forecasts.generate_forecast(body.event_id, input_data)
    return success_response(request, result, "Forecast generated successfully",
                            warnings=validation.warnings)


@router.get("/health/model")
async def model_health(request: Request, forecasts: ForecastService = Depends(get_forecast_service)):
    return await _health(request, forecasts.ai_model_endpoint, await forecasts.test_model_connection(),
                         "AI model service")


@router.get("/health/new-model")
async def new_model_health(request: Request, forecasts: ForecastService = Depends(get_forecast_service)):
    return await _health(request, forecasts.new_model_endpoint, await forecasts.test_new_model_connection(),
                         "New AI model service")


async def _health(request: Request, endpoint: str, is_healthy: bool, label: str):
    data = {
        "modelEndpoint": endpoint,
        "isHealthy": is_healthy,
        "checkedAt": datetime.now(timezone.utc).isoformat(),
    }
    message = f"{label} is healthy" if is_healthy else f"{label} is unavailable"
    return success_response(request, data, message)


@router.post("/regenerate/{event_id}")
@handle_model_errors("Failed to regenerate forecast")
async def regenerate_forecast(request: Request,
                              event_id: str,
                              body: Optional[ForecastInputData] = Body(None),
                              forecasts: ForecastService = Depends(get_forecast_service)):
    input_data = (body or ForecastInputData()).to_model_input()
    _validate_legacy_input(forecasts, event_id, input_data)

    result = await forecasts.generate_forecast(event_id, input_data)
    return success_response(request, result, "Forecast regenerated successfully")


@router.get("/{event_id}")
async def get_forecast(request: Request, event_id: str,
                       forecasts: ForecastService = Depends(get_forecast_service)):
    forecast = await forecasts.get_forecast(event_id)
    if forecast is None:
        raise NotFoundError("Forecast not found for this event", code="FORECAST_NOT_FOUND")
    return success_response(request, forecast)


@router.delete("/{event_id}")
async def delete_forecast(request: Request, event_id: str,
                          forecasts: ForecastService = Depends(get_forecast_service)):
    await forecasts.delete_forecast(event_id)
    return success_response(request, message="Forecast deleted successfully")
