"""Event service: camelCase API contract over the snake_case events table."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
import asyncpg
import structlog

from eventai.database.repositories import EventRepository
from eventai.errors import DuplicateResourceError
from eventai.models.database_event import Event


logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100

# API key -> column
FIELD_MAP = {
    "eventId": "event_id",
    "name": "name",
    "description": "description",
    "venue": "venue",
    "dateOfEventStart": "date_of_event_start",
    "dateOfEventEnd": "date_of_event_end",
    "status": "status",
    "venueLayout": "venue_layout",
    "userEmail": "user_email",
    "forecastResult": "forecast_result",
    "attachmentUrls": "attachment_urls",
    "attachmentFilenames": "attachment_filenames",
    "attachmentContext": "attachment_context",
    "popularity": "popularity",
    "popularityExtent": "popularity_extent",
}

API_FIELDS = {column: key for key, column in FIELD_MAP.items()}


def generate_event_id() -> str:
    return f"evt_{uuid.uuid4()}"


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_api(event: Event) -> Dict[str, Any]:
    """Render a stored event with the API's camelCase keys."""
    data = {"id": event.id}
    for column, key in API_FIELDS.items():
        data[key] = _serialize(getattr(event, column))
    data["createdAt"] = _serialize(event.created_at)
    data["updatedAt"] = _serialize(event.updated_at)
    return data


def to_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map supplied camelCase keys onto columns, dropping anything unknown."""
    return {FIELD_MAP[key]: value for key, value in data.items() if key in FIELD_MAP}


class EventService:
    """CRUD and list operations for events."""

    def __init__(self, repository: EventRepository):
        self.repository = repository
        self.logger = logger.bind(component="event_service")

    async def create_event(self, data: Dict[str, Any]) -> Dict[str, Any]:
        columns = to_columns(data)
        columns.setdefault("event_id", generate_event_id())
        columns.setdefault("status", "CREATED")
        columns.pop("forecast_result", None)

        self.logger.info("Creating event", event_id=columns["event_id"], name=columns.get("name"))

        try:
            event = await self.repository.create(Event(**columns))
        except asyncpg.UniqueViolationError as e:
            raise DuplicateResourceError(
                f"Event with ID {columns['event_id']} already exists",
                details={"eventId": columns["event_id"], "dbError": e.sqlstate},
            )

        return to_api(event)

    async def get_event_by_id(self, event_id: str) -> Optional[Dict[str, Any]]:
        event = await self.repository.find_by_event_id(event_id)
        if event is None:
            self.logger.warning("Event not found", event_id=event_id)
            return None
        return to_api(event)

    async def get_events(self,
                         limit: int = 10,
                         offset: int = 0,
                         filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        List events with offset pagination.

        Returns:
            ``{"events": [...], "total": n}``; ``limit`` is clamped to 1..100
        """
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))

        events, total = await self.repository.find_events(filters or {}, limit=limit, offset=offset)
        return {"events": [to_api(event) for event in events], "total": total}

    async def get_events_by_user(self,
                                 user_email: str,
                                 limit: int = 10,
                                 offset: int = 0,
                                 filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        merged = dict(filters or {})
        merged["userEmail"] = user_email
        return await self.get_events(limit, offset, merged)

    async def update_event(self, event_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Write only the supplied keys; None when the event does not exist."""
        columns = to_columns(data)
        columns.pop("event_id", None)

        event = await self.repository.update_by_event_id(event_id, columns)
        if event is None:
            return None

        self.logger.info("Event updated", event_id=event_id, fields=sorted(columns))
        return to_api(event)

    async def delete_event(self, event_id: str) -> bool:
        deleted = await self.repository.delete_by_event_id(event_id)
        self.logger.info("Event delete requested", event_id=event_id, deleted=deleted)
        return deleted

    async def update_event_forecast(self,
                                    event_id: str,
                                    forecast_result: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Replace (or clear, with None) the stored forecast document."""
        event = await self.repository.update_by_event_id(event_id, {"forecast_result": forecast_result})
        return to_api(event) if event else None

    async def update_event_popularity(self,
                                      event_id: str,
                                      popularity: Optional[Dict[str, Any]],
                                      popularity_extent: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        event = await self.repository.update_by_event_id(event_id, {
            "popularity": popularity,
            "popularity_extent": popularity_extent,
        })
        return to_api(event) if event else None

    async def add_event_attachments(self,
                                    event_id: str,
                                    urls: List[str],
                                    filenames: List[str],
                                    context: Optional[str]) -> Optional[Dict[str, Any]]:
        """Append attachment URLs, names and extracted context to an event."""
        event = await self.repository.find_by_event_id(event_id)
        if event is None:
            return None

        contexts = [part for part in (event.attachment_context, context) if part]
        updated = await self.repository.update_by_event_id(event_id, {
            "attachment_urls": list(event.attachment_urls) + list(urls),
            "attachment_filenames": list(event.attachment_filenames) + list(filenames),
            "attachment_context": "\n\n".join(contexts) or None,
        })
        return to_api(updated) if updated else None

    async def get_event_statistics(self) -> Dict[str, int]:
        stats = await self.repository.get_statistics()
        return {
            "totalEvents": stats.get("total_events", 0),
            "upcomingEvents": stats.get("upcoming_events", 0),
            "pastEvents": stats.get("past_events", 0),
            "ongoingEvents": stats.get("ongoing_events", 0),
            "eventsWithForecast": stats.get("events_with_forecast", 0),
        }

    async def test_connection(self) -> bool:
        try:
            return await self.repository.ping()
        except Exception as e:
            self.logger.error("Database connection test failed", error=str(e))
            return False
