"""
Error taxonomy and response envelope for the Event AI HTTP API.

Every failure that reaches the client is an ``AppError`` (or is turned into
one by ``classify_error``) and is rendered as::

    {"success": false,
     "error": {"status": "fail" | "error", "message": ..., "code": ..., "details": ...},
     "timestamp": ..., "requestId": ...}
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import asyncpg
import jwt
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong on our end. Please try again later."

REQUEST_ID_HEADER = "X-Request-ID"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class AppError(Exception):
    """Operational error carrying an HTTP status and optional structured details."""

    def __init__(self, message: str, status_code: int = 500,
                 details: Any = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = "fail" if str(status_code).startswith("4") else "error"
        self.details = details
        self.code = code
        self.is_operational = True

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": self.status, "message": self.message}
        if self.code:
            body["code"] = self.code
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailedError(AppError):
    def __init__(self, message: str = "Validation failed", details: Any = None,
                 code: str = "VALIDATION_ERROR"):
        super().__init__(message, 400, details=details, code=code)


class NotFoundError(AppError):
    def __init__(self, message: str = "Resource not found", code: str = "NOT_FOUND"):
        super().__init__(message, 404, code=code)


class DuplicateResourceError(AppError):
    def __init__(self, message: str, details: Any = None):
        super().__init__(message, 409, details=details, code="DUPLICATE_RESOURCE")


class ModelServiceError(AppError):
    """Failure talking to an external forecasting model."""

    def __init__(self, message: str, status_code: int = 503, details: Any = None,
                 code: str = "SERVICE_UNAVAILABLE"):
        super().__init__(message, status_code, details=details, code=code)


class ModelServiceUnavailableError(ModelServiceError):
    def __init__(self, details: Any = None):
        super().__init__("AI model service is unavailable", details=details)


class ModelEndpointNotFoundError(ModelServiceError):
    def __init__(self, details: Any = None):
        super().__init__("AI model service endpoint not found", details=details)


class ModelTimeoutError(ModelServiceError):
    def __init__(self, details: Any = None):
        super().__init__("AI model request timed out", details=details)


class ModelCallError(ModelServiceError):
    def __init__(self, reason: str, details: Any = None):
        super().__init__(f"AI model call failed: {reason}", status_code=500,
                         details=details, code="MODEL_CALL_FAILED")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id", "unknown")


# Upstream error classification

AWS_ERROR_MAP = {
    "NoSuchBucket": (404, "Storage bucket not found"),
    "AccessDenied": (403, "Insufficient permissions for AWS operation"),
    "AccessDeniedException": (403, "Insufficient permissions for AWS operation"),
    "InvalidParameterValue": (400, "Invalid parameter provided to AWS service"),
    "ValidationException": (400, "Invalid parameter provided to AWS service"),
    "ThrottlingException": (429, "AWS service rate limit exceeded. Please try again later."),
    "ServiceUnavailable": (503, "AWS service temporarily unavailable"),
    "ServiceUnavailableException": (503, "AWS service temporarily unavailable"),
}


def is_data_error(exc: Exception) -> bool:
    """Bad query input: asyncpg argument encoding failures or SQLSTATE class 22."""
    if isinstance(exc, asyncpg.InterfaceError) and isinstance(exc, ValueError):
        return True
    return str(getattr(exc, "sqlstate", None) or "").startswith("22")


def handle_database_error(exc: Exception) -> AppError:
    sqlstate = getattr(exc, "sqlstate", None)
    details = {"dbError": sqlstate, "dbMessage": str(exc)}

    if isinstance(exc, asyncpg.UniqueViolationError):
        target = getattr(exc, "constraint_name", None) or "field"
        return DuplicateResourceError(f"A record with this {target} already exists", details=details)
    if isinstance(exc, asyncpg.ForeignKeyViolationError):
        return AppError("Cannot delete record due to existing relationships", 409, details=details)
    if isinstance(exc, asyncpg.UndefinedTableError):
        return AppError("Database table not found", 500, details=details)
    if is_data_error(exc):
        return AppError("Invalid value for database operation", 400, details=details, code="INVALID_DATA")
    if isinstance(exc, (asyncpg.PostgresConnectionError, asyncpg.InterfaceError,
                        ConnectionRefusedError)):
        return AppError("Cannot connect to database", 503, details=details)
    return AppError("Database operation failed", 500, details=details)


def handle_aws_error(exc: Exception) -> AppError:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        name = error.get("Code", "Unknown")
        status_code, message = AWS_ERROR_MAP.get(name, (500, "AWS service error occurred"))
        return AppError(message, status_code, details={"awsError": name, "awsMessage": error.get("Message", str(exc))})
    return AppError("AWS service error occurred", 500,
                    details={"awsError": type(exc).__name__, "awsMessage": str(exc)})


def handle_token_error(exc: jwt.InvalidTokenError) -> AppError:
    if isinstance(exc, jwt.ExpiredSignatureError):
        message = "Authentication token has expired"
    elif isinstance(exc, jwt.ImmatureSignatureError):
        message = "Authentication token not active yet"
    else:
        message = "Invalid authentication token"
    return AppError(message, 401, details={"jwtError": type(exc).__name__, "jwtMessage": str(exc)},
                    code="AUTHENTICATION_FAILED")


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    formatted = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        message = error.get("msg", "Invalid value")
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        formatted.append({
            "field": ".".join(location),
            "message": message,
            "type": error.get("type"),
        })
    return formatted


def classify_error(exc: Exception) -> AppError:
    """Map any exception onto the AppError taxonomy."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, RequestValidationError):
        return ValidationFailedError(details=format_validation_errors(exc.errors()))
    if isinstance(exc, jwt.InvalidTokenError):
        return handle_token_error(exc)
    if isinstance(exc, (ClientError, BotoCoreError)):
        return handle_aws_error(exc)
    if isinstance(exc, (asyncpg.PostgresError, asyncpg.InterfaceError, ConnectionRefusedError)):
        return handle_database_error(exc)

    error = AppError(str(exc) or type(exc).__name__, 500)
    error.is_operational = False
    return error


# Response envelope

def success_response(request: Request, data: Any = None, message: Optional[str] = None,
                     status_code: int = 200, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    for key, value in extra.items():
        if value:
            body[key] = value
    body["timestamp"] = utc_now_iso()
    body["requestId"] = get_request_id(request)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def error_response(request: Request, error: AppError, exc: Optional[Exception] = None,
                   development: bool = False, **extra: Any) -> JSONResponse:
    if development:
        body_error = error.to_dict()
        source = exc or error
        body_error["stack"] = "".join(
            traceback.format_exception(type(source), source, source.__traceback__)
        )
        status_code = error.status_code
    elif error.is_operational:
        body_error = error.to_dict()
        status_code = error.status_code
    else:
        body_error = {
            "status": "error",
            "message": GENERIC_ERROR_MESSAGE,
            "code": "INTERNAL_SERVER_ERROR",
        }
        status_code = 500

    body: Dict[str, Any] = {"success": False, "error": body_error}
    for key, value in extra.items():
        if value:
            body[key] = value
    body["timestamp"] = utc_now_iso()
    body["requestId"] = get_request_id(request)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def register_exception_handlers(app: FastAPI, development: bool = False) -> None:
    """Install the global handlers that render every failure in the error envelope."""

    async def handle_app_error(request: Request, exc: Exception):
        error = classify_error(exc)
        log = logger.warning if error.status_code < 500 else logger.error
        log(
            f"{request.method} {request.url.path} failed with {error.status_code}: {error.message}",
            extra={"request_id": get_request_id(request)},
        )
        if not error.is_operational:
            logger.exception("Unhandled error", exc_info=exc)
        return error_response(request, error, exc=exc, development=development)

    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail in ("Not Found", None):
            error = AppError(f"Can't find {request.url.path} on this server!", 404, code="ROUTE_NOT_FOUND")
        else:
            detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
            details = exc.detail if not isinstance(exc.detail, str) else None
            error = AppError(detail, exc.status_code, details=details)
        return error_response(request, error, development=False)

    async def handle_unexpected_error(request: Request, exc: Exception):
        # runs in ServerErrorMiddleware, outside the user middleware stack
        response = await handle_app_error(request, exc)
        response.headers[REQUEST_ID_HEADER] = get_request_id(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_app_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unexpected_error)
