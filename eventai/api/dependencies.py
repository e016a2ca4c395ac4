"""Request-scoped accessors for services and caller identity."""

from typing import Optional

import jwt
from fastapi import Request

from eventai.errors import handle_token_error
from eventai.models.config import EventAIConfig
from eventai.services import (
    BedrockService,
    ComprehendService,
    EventService,
    FileProcessor,
    ForecastService,
    SerpService,
    StorageService,
)

IDENTITY_HEADERS = ("x-user-email", "user-email")
IDENTITY_CLAIMS = ("user_email", "email", "sub")


def get_app_config(request: Request) -> EventAIConfig:
    return request.app.state.config


def get_event_service(request: Request) -> EventService:
    return request.app.state.event_service


def get_forecast_service(request: Request) -> ForecastService:
    return request.app.state.forecast_service


def get_bedrock_service(request: Request) -> BedrockService:
    return request.app.state.bedrock_service


def get_comprehend_service(request: Request) -> ComprehendService:
    return request.app.state.comprehend_service


def get_serp_service(request: Request) -> SerpService:
    return request.app.state.serp_service


def get_storage_service(request: Request) -> StorageService:
    return request.app.state.storage_service


def get_file_processor(request: Request) -> FileProcessor:
    return request.app.state.file_processor


def decode_bearer_token(authorization: Optional[str], config: EventAIConfig) -> Optional[str]:
    """
    Email claim from an ``Authorization: Bearer`` token.

    Returns None when no bearer token is present or no secret is configured.

    Raises:
        AppError: 401 when the token is expired, immature or otherwise invalid
    """
    if not authorization or not authorization.lower().startswith("bearer ") or not config.jwt_secret:
        return None

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_alg])
    except jwt.InvalidTokenError as e:
        raise handle_token_error(e)

    for claim in IDENTITY_CLAIMS:
        if payload.get(claim):
            return str(payload[claim]).lower()
    return None


def get_caller_email(request: Request) -> Optional[str]:
    """Caller identity from the user-email headers, falling back to a bearer token."""
    for header in IDENTITY_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip().lower()
    return decode_bearer_token(request.headers.get("authorization"), get_app_config(request))
