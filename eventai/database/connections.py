"""Database connection management for the Event AI server."""

import json
from pathlib import Path
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager
import asyncpg
import structlog

from eventai.models.config import EventAIConfig


logger = structlog.get_logger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


async def _init_connection(connection: asyncpg.Connection) -> None:
    """Register JSON codecs so jsonb columns round-trip as Python objects."""
    for type_name in ("json", "jsonb"):
        await connection.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


class DatabaseManager:
    """Manages the PostgreSQL connection pool."""

    def __init__(self, config: EventAIConfig):
        """
        Initialize database manager with configuration.

        Args:
            config: Application configuration containing database settings
        """
        self.config = config
        self.logger = logger.bind(component="database_manager")

        self._postgres_pool: Optional[asyncpg.Pool] = None

        self._postgres_pool_config = {
            "min_size": max(1, config.db_pool_size // 2),
            "max_size": config.db_pool_size,
            "max_inactive_connection_lifetime": 300,
            "timeout": config.db_pool_timeout,
            "command_timeout": 60,
            "init": _init_connection,
            "server_settings": {
                "application_name": "eventai_server",
                "timezone": "UTC"
            }
        }

    async def initialize(self) -> None:
        """Create the pool and verify it answers."""
        try:
            self.logger.info("Creating PostgreSQL connection pool",
                             database_url=self._mask_password(self.config.database_url))

            self._postgres_pool = await asyncpg.create_pool(
                self.config.database_url,
                **self._postgres_pool_config
            )

            async with self._postgres_pool.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                self.logger.info("PostgreSQL connection verified", version=version[:50])

        except Exception as e:
            self.logger.error("Failed to initialize database connections", error=str(e))
            await self.cleanup()
            raise

    async def cleanup(self) -> None:
        """Close the connection pool."""
        if self._postgres_pool:
            try:
                await self._postgres_pool.close()
                self.logger.info("PostgreSQL pool closed")
            except Exception as e:
                self.logger.error("Error closing PostgreSQL pool", error=str(e))
            finally:
                self._postgres_pool = None

    @asynccontextmanager
    async def get_postgres_connection(self):
        """
        Get a PostgreSQL connection from the pool.

        Yields:
            asyncpg.Connection: Database connection
        """
        if not self._postgres_pool:
            raise asyncpg.InterfaceError("PostgreSQL pool not initialized")

        async with self._postgres_pool.acquire() as connection:
            try:
                yield connection
            except Exception as e:
                self.logger.error("Database operation error", error=str(e))
                raise

    @asynccontextmanager
    async def get_postgres_transaction(self):
        """
        Get a PostgreSQL connection with an open transaction.

        Yields:
            asyncpg.Connection: Database connection with active transaction
        """
        async with self.get_postgres_connection() as conn:
            async with conn.transaction():
                yield conn

    async def apply_schema(self, schema_path: Path = SCHEMA_PATH) -> None:
        """Run the idempotent DDL in one transaction."""
        ddl = schema_path.read_text(encoding="utf-8")
        async with self.get_postgres_transaction() as conn:
            await conn.execute(ddl)
        self.logger.info("Schema applied", schema=schema_path.name)

    async def health_check(self) -> Dict[str, Any]:
        """Report pool status and whether a trivial query succeeds."""
        if not self._postgres_pool:
            return {"status": "not_initialized"}

        try:
            async with self.get_postgres_connection() as conn:
                await conn.fetchval("SELECT 1")
            return {
                "status": "healthy",
                "size": self._postgres_pool.get_size(),
                "idle_size": self._postgres_pool.get_idle_size()
            }
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}

    def _mask_password(self, database_url: str) -> str:
        """Mask password in database URL for logging."""
        if "://" not in database_url or "@" not in database_url:
            return database_url
        scheme, rest = database_url.split("://", 1)
        auth, host_part = rest.rsplit("@", 1)
        if ":" in auth:
            user, _ = auth.split(":", 1)
            return f"{scheme}://{user}:***@{host_part}"
        return database_url


# Global database manager instance
_database_manager: Optional[DatabaseManager] = None


async def initialize_database_manager(config: EventAIConfig) -> DatabaseManager:
    """
    Initialize the global database manager.

    Args:
        config: Application configuration

    Returns:
        DatabaseManager: Initialized database manager
    """
    global _database_manager

    if _database_manager is not None:
        await _database_manager.cleanup()

    _database_manager = DatabaseManager(config)
    await _database_manager.initialize()
    if config.db_apply_schema:
        await _database_manager.apply_schema()

    return _database_manager


async def cleanup_database_manager() -> None:
    """Clean up the global database manager."""
    global _database_manager

    if _database_manager is not None:
        await _database_manager.cleanup()
        _database_manager = None
