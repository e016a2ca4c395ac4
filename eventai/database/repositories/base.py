"""Base repository class for common database operations."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, TypeVar, Generic
import asyncpg
import structlog

from eventai.database.connections import DatabaseManager


logger = structlog.get_logger(__name__)

T = TypeVar('T')


class BaseRepository(ABC, Generic[T]):
    """Base repository class providing common database operations keyed on one column."""

    def __init__(self,
                 db_manager: DatabaseManager,
                 table_name: str,
                 key_column: str = "id",
                 nullable_columns: Iterable[str] = ()):
        """
        Initialize base repository.

        Args:
            db_manager: Database manager instance
            table_name: Name of the database table
            key_column: Column used to address single records
            nullable_columns: Columns an update may explicitly set to NULL
        """
        self.db_manager = db_manager
        self.table_name = table_name
        self.key_column = key_column
        self.nullable_columns = frozenset(nullable_columns)
        self.logger = logger.bind(component=f"{table_name}_repository")

    @abstractmethod
    def _row_to_model(self, row: asyncpg.Record) -> T:
        """Convert database row to model instance."""
        pass

    @abstractmethod
    def _model_to_dict(self, model: T) -> Dict[str, Any]:
        """Convert model instance to dictionary for database storage."""
        pass

    async def find_by_id(self, id_value: Any) -> Optional[T]:
        """
        Find a record by its key column.

        Returns:
            Model instance if found, None otherwise
        """
        try:
            async with self.db_manager.get_postgres_connection() as conn:
                query = f"SELECT * FROM {self.table_name} WHERE {self.key_column} = $1"
                row = await conn.fetchrow(query, id_value)

                if row:
                    return self._row_to_model(row)
                return None

        except Exception as e:
            self.logger.error("Error finding record by key",
                              table=self.table_name, key=id_value, error=str(e))
            raise

    async def count(self, where_clause: str = "", params: List[Any] = None) -> int:
        """
        Count records in the table.

        Args:
            where_clause: Optional WHERE clause (without WHERE keyword)
            params: Parameters for the WHERE clause
        """
        try:
            params = params or []

            if where_clause:
                query = f"SELECT COUNT(*) FROM {self.table_name} WHERE {where_clause}"
            else:
                query = f"SELECT COUNT(*) FROM {self.table_name}"

            async with self.db_manager.get_postgres_connection() as conn:
                return await conn.fetchval(query, *params)

        except Exception as e:
            self.logger.error("Error counting records",
                              table=self.table_name, error=str(e))
            raise

    async def create(self, model: T) -> T:
        """
        Create a new record.

        Returns:
            Created model instance with database-generated fields filled in
        """
        try:
            data = self._model_to_dict(model)

            filtered_data = {k: v for k, v in data.items() if v is not None}

            columns = list(filtered_data.keys())
            placeholders = [f"${i+1}" for i in range(len(columns))]
            values = list(filtered_data.values())

            query = f"""
                INSERT INTO {self.table_name} ({', '.join(columns)})
                VALUES ({', '.join(placeholders)})
                RETURNING *
            """

            async with self.db_manager.get_postgres_connection() as conn:
                row = await conn.fetchrow(query, *values)
                created_model = self._row_to_model(row)

                self.logger.info("Record created",
                                 table=self.table_name,
                                 key=getattr(created_model, self.key_column, None))

                return created_model

        except Exception as e:
            self.logger.error("Error creating record",
                              table=self.table_name, error=str(e))
            raise

    async def update(self, id_value: Any, updates: Dict[str, Any]) -> Optional[T]:
        """
        Apply a partial update to a record.

        None values are skipped unless the column is listed as nullable, in
        which case the column is cleared.

        Returns:
            Updated model instance if found, None otherwise
        """
        try:
            filtered_updates = {
                k: v for k, v in (updates or {}).items()
                if v is not None or k in self.nullable_columns
            }

            if not filtered_updates:
                return await self.find_by_id(id_value)

            if 'updated_at' not in filtered_updates:
                filtered_updates['updated_at'] = datetime.now(timezone.utc)

            set_clauses = [f"{col} = ${i+2}" for i, col in enumerate(filtered_updates.keys())]
            values = [id_value] + list(filtered_updates.values())

            query = f"""
                UPDATE {self.table_name}
                SET {', '.join(set_clauses)}
                WHERE {self.key_column} = $1
                RETURNING *
            """

            async with self.db_manager.get_postgres_connection() as conn:
                row = await conn.fetchrow(query, *values)

                if row:
                    self.logger.info("Record updated",
                                     table=self.table_name, key=id_value,
                                     fields=sorted(filtered_updates.keys()))
                    return self._row_to_model(row)

                return None

        except Exception as e:
            self.logger.error("Error updating record",
                              table=self.table_name, key=id_value, error=str(e))
            raise

    async def delete(self, id_value: Any) -> bool:
        """
        Delete a record by its key column.

        Returns:
            True if record was deleted, False if not found
        """
        try:
            query = f"DELETE FROM {self.table_name} WHERE {self.key_column} = $1"

            async with self.db_manager.get_postgres_connection() as conn:
                result = await conn.execute(query, id_value)

                deleted = result.split()[-1] == "1"  # "DELETE 1" or "DELETE 0"

                if deleted:
                    self.logger.info("Record deleted",
                                     table=self.table_name, key=id_value)

                return deleted

        except Exception as e:
            self.logger.error("Error deleting record",
                              table=self.table_name, key=id_value, error=str(e))
            raise

    async def find_by_criteria(self,
                               where_clause: str,
                               params: List[Any] = None,
                               order_by: str = "id",
                               limit: int = 1000,
                               offset: int = 0) -> List[T]:
        """
        Find records matching criteria.

        Args:
            where_clause: WHERE clause (without WHERE keyword)
            params: Parameters for the WHERE clause
            order_by: ORDER BY clause
            limit: Maximum number of records
            offset: Number of records to skip
        """
        try:
            params = params or []

            query = f"""
                SELECT * FROM {self.table_name}
                WHERE {where_clause}
                ORDER BY {order_by}
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            """

            async with self.db_manager.get_postgres_connection() as conn:
                rows = await conn.fetch(query, *params, limit, offset)

                return [self._row_to_model(row) for row in rows]

        except Exception as e:
            self.logger.error("Error finding records by criteria",
                              table=self.table_name, error=str(e))
            raise
