"""
Request-level middleware for the Event AI HTTP API

This module provides request identification, security headers, a request
timeout guard and access logging. Everything here is stateless per request.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from eventai.errors import REQUEST_ID_HEADER, SECURITY_HEADERS, AppError, error_response

logger = logging.getLogger(__name__)


def _get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP address from request"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # first hop is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a request id to every request and echo it on the response
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add a fixed set of browser security headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """
    Answer 408 when downstream handling outlives the configured budget
    """

    def __init__(self, app, timeout_ms: int = 30000):
        """
        Initialize timeout middleware

        Args:
            app: FastAPI application instance
            timeout_ms: Request budget in milliseconds
        """
        super().__init__(app)
        self.timeout = timeout_ms / 1000.0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Request timed out after {self.timeout:.1f}s: {request.method} {request.url.path}"
            )
            error = AppError("Request timeout", 408, code="REQUEST_TIMEOUT")
            return error_response(request, error)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its outcome and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        client_ip = _get_client_ip(request)
        request_id = getattr(request.state, "request_id", None)

        logger.info(
            f"{request.method} {request.url.path} from {client_ip} "
            f"ua={request.headers.get('user-agent', '-')} request_id={request_id}"
        )

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {duration_ms:.1f}ms request_id={request_id}"
        )
        return response
