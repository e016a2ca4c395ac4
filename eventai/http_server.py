"""HTTP server for the Event AI backend."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from eventai import __version__
from eventai.api import events, forecast
from eventai.database import (
    EventRepository,
    cleanup_database_manager,
    initialize_database_manager,
)
from eventai.errors import register_exception_handlers, success_response
from eventai.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    RequestTimeoutMiddleware,
    SecurityHeadersMiddleware,
)
from eventai.models.config import EventAIConfig, get_config
from eventai.services import (
    BedrockService,
    ComprehendService,
    EventService,
    FileProcessor,
    ForecastService,
    SerpService,
    StorageService,
    TextractService,
)

logger = logging.getLogger(__name__)

STARTED_AT = datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Open the database pool and build the services for this process."""
    config: EventAIConfig = app_instance.state.config
    state = app_instance.state

    db_manager = await initialize_database_manager(config)
    state.db_manager = db_manager
    state.event_service = EventService(EventRepository(db_manager))
    state.forecast_service = ForecastService(state.event_service, config)
    state.bedrock_service = BedrockService(config)
    state.comprehend_service = ComprehendService(config)
    state.serp_service = SerpService(config)
    state.storage_service = StorageService(config)
    state.file_processor = FileProcessor(TextractService(config))
    logger.info(f"Event AI server started ({config.environment})")

    yield

    logger.info("Event AI server shutting down")
    await cleanup_database_manager()


def create_app(config: Optional[EventAIConfig] = None) -> FastAPI:
    """Build the application; services are attached to ``app.state`` by the lifespan."""
    config = config or get_config()

    app = FastAPI(
        title="Event AI Server",
        description="Event management with crowd forecasting and AI analysis",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.file_processor = FileProcessor()

    # last added runs outermost
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestTimeoutMiddleware, timeout_ms=config.request_timeout_ms)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app, development=config.is_development)

    app.include_router(events.router)
    app.include_router(forecast.router)

    @app.get("/")
    async def root(request: Request):
        return success_response(request, {
            "name": "Event AI Server",
            "version": __version__,
            "environment": config.environment,
            "endpoints": {
                "events": "/api/v1/events",
                "forecast": "/forecast",
                "health": "/health",
            },
        })

    @app.get("/health")
    async def health(request: Request):
        event_service = getattr(request.app.state, "event_service", None)
        db_manager = getattr(request.app.state, "db_manager", None)
        database_ok = await event_service.test_connection() if event_service else False
        pool = await db_manager.health_check() if db_manager else {"status": "not_initialized"}
        return success_response(request, {
            "status": "healthy" if database_ok else "degraded",
            "database": "connected" if database_ok else "unavailable",
            "pool": pool,
            "uptimeSince": STARTED_AT,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    return app


app = create_app()
