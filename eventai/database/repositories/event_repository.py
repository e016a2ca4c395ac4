"""Event repository for managing event data."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import asyncpg
import structlog

from eventai.database.repositories.base import BaseRepository
from eventai.database.connections import DatabaseManager
from eventai.models.database_event import Event


logger = structlog.get_logger(__name__)

EVENT_COLUMNS = (
    "event_id", "name", "description", "venue",
    "date_of_event_start", "date_of_event_end", "status",
    "venue_layout", "user_email", "forecast_result",
    "attachment_urls", "attachment_filenames", "attachment_context",
    "popularity", "popularity_extent",
)

NULLABLE_COLUMNS = (
    "description", "venue", "venue_layout", "forecast_result",
    "attachment_context", "popularity", "popularity_extent",
)


class EventRepository(BaseRepository[Event]):
    """Repository for managing event data in PostgreSQL."""

    def __init__(self, db_manager: DatabaseManager):
        """Initialize event repository."""
        super().__init__(db_manager, "events",
                         key_column="event_id",
                         nullable_columns=NULLABLE_COLUMNS)
        self.logger = logger.bind(component="event_repository")

    def _row_to_model(self, row: asyncpg.Record) -> Event:
        """Convert database row to Event model."""
        data = dict(row)
        data["attachment_urls"] = list(data.get("attachment_urls") or [])
        data["attachment_filenames"] = list(data.get("attachment_filenames") or [])
        return Event(**data)

    def _model_to_dict(self, model: Event) -> Dict[str, Any]:
        """Convert Event model to dictionary for database storage."""
        now = datetime.now(timezone.utc)
        data = {column: getattr(model, column) for column in EVENT_COLUMNS}
        data["created_at"] = model.created_at or now
        data["updated_at"] = model.updated_at or now
        return data

    async def find_by_event_id(self, event_id: str) -> Optional[Event]:
        """Find an event by its external ``evt_*`` identifier."""
        return await self.find_by_id(event_id)

    async def update_by_event_id(self, event_id: str, updates: Dict[str, Any]) -> Optional[Event]:
        """
        Partially update an event.

        Unknown columns are dropped. Nullable JSON columns may be cleared by
        passing None explicitly.
        """
        known = {k: v for k, v in updates.items() if k in EVENT_COLUMNS and k != "event_id"}
        return await self.update(event_id, known)

    async def delete_by_event_id(self, event_id: str) -> bool:
        return await self.delete(event_id)

    def _build_filters(self, filters: Dict[str, Any]) -> Tuple[str, List[Any]]:
        """Translate list filters into a WHERE clause and its positional parameters."""
        clauses: List[str] = []
        params: List[Any] = []

        def add(template: str, value: Any) -> None:
            params.append(value)
            clauses.append(template.format(f"${len(params)}"))

        if filters.get("userEmail"):
            add("user_email = {}", filters["userEmail"])
        if filters.get("upcoming"):
            clauses.append("date_of_event_start >= NOW()")
        if filters.get("past"):
            clauses.append("date_of_event_end < NOW()")
        if filters.get("ongoing"):
            clauses.append("date_of_event_start <= NOW() AND date_of_event_end >= NOW()")
        if filters.get("withForecast"):
            clauses.append("forecast_result IS NOT NULL")
        if filters.get("search"):
            add("name ILIKE {}", f"%{filters['search']}%")
        if filters.get("startDate"):
            add("date_of_event_start >= {}", filters["startDate"])
        if filters.get("endDate"):
            add("date_of_event_end <= {}", filters["endDate"])
        if filters.get("status"):
            add("status = {}", filters["status"])
        if filters.get("venue"):
            add("venue ILIKE {}", f"%{filters['venue']}%")

        return " AND ".join(clauses) or "TRUE", params

    async def find_events(self,
                          filters: Optional[Dict[str, Any]] = None,
                          limit: int = 10,
                          offset: int = 0) -> Tuple[List[Event], int]:
        """
        Find events matching filters, ordered by start date.

        Returns:
            Tuple of (events in the requested page, total matching count)
        """
        where_clause, params = self._build_filters(filters or {})

        events = await self.find_by_criteria(
            where_clause,
            params,
            order_by="date_of_event_start ASC",
            limit=limit,
            offset=offset
        )
        total = await self.count(where_clause, params)

        self.logger.info("Listed events",
                         filters=sorted((filters or {}).keys()),
                         returned=len(events), total=total)

        return events, total

    async def get_statistics(self) -> Dict[str, int]:
        """Aggregate event counts by time window and forecast presence."""
        query = """
            SELECT
                COUNT(*) AS total_events,
                COUNT(*) FILTER (WHERE date_of_event_start >= NOW()) AS upcoming_events,
                COUNT(*) FILTER (WHERE date_of_event_end < NOW()) AS past_events,
                COUNT(*) FILTER (
                    WHERE date_of_event_start <= NOW() AND date_of_event_end >= NOW()
                ) AS ongoing_events,
                COUNT(*) FILTER (WHERE forecast_result IS NOT NULL) AS events_with_forecast
            FROM events
        """
        try:
            async with self.db_manager.get_postgres_connection() as conn:
                row = await conn.fetchrow(query)
                return {key: int(value or 0) for key, value in dict(row).items()}

        except Exception as e:
            self.logger.error("Error computing event statistics", error=str(e))
            raise

    async def ping(self) -> bool:
        async with self.db_manager.get_postgres_connection() as conn:
            return await conn.fetchval("SELECT 1") == 1
