"""
Core module initialization.
Exports configuration, logging utilities, the clock and the error taxonomy.
"""

from app.core.config import get_settings, Settings, EnvironmentMode, StoreBackend
from app.core.clock import Clock, utc_now
from app.core.exceptions import (
    OrderItemError,
    NotFoundError,
    LockedItemError,
    InvalidTransitionError,
    InvalidItemError,
    PersistenceError,
    StaleRecordError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "StoreBackend",
    "Clock",
    "utc_now",
    "OrderItemError",
    "NotFoundError",
    "LockedItemError",
    "InvalidTransitionError",
    "InvalidItemError",
    "PersistenceError",
    "StaleRecordError",
]
