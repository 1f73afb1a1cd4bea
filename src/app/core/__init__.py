"""
Core module - Configuration, database, logging and timers.
"""

from app.core.config import get_settings, settings
from app.core.database import Base, close_db, get_db, init_db
from app.core.logging_setup import setup_logging
from app.core.scheduler import TimerRegistry

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Logging
    "setup_logging",
    # Timers
    "TimerRegistry",
]
