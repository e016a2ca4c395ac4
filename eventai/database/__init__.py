"""Database package for the Event AI server."""

from .connections import (
    DatabaseManager,
    cleanup_database_manager,
    initialize_database_manager,
)
from .repositories import EventRepository

__all__ = [
    "DatabaseManager",
    "initialize_database_manager",
    "cleanup_database_manager",
    "EventRepository",
]
