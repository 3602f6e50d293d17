"""Core module - configuration, database, logging and errors."""

from skyplanner.core.config import Settings, get_settings, settings
from skyplanner.core.database import (
    Base,
    async_session_maker,
    check_db_connection,
    engine,
    get_db,
)
from skyplanner.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "Base",
    "engine",
    "async_session_maker",
    "get_db",
    "check_db_connection",
]
