"""
Order Item Store Factory

Provides a single entry point for obtaining the order item store.
The rest of the application stays agnostic about which backend is used.

Usage:
    from app.services.store import get_order_item_store

    # Returns InMemoryOrderItemStore or SqlOrderItemStore
    store = get_order_item_store()

Backend selection:
    - STORE_BACKEND=memory   → InMemoryOrderItemStore
    - STORE_BACKEND=database → SqlOrderItemStore
    - unset: memory in development, database in staging/production
"""

import logging
from functools import lru_cache

from app.core.config import get_settings, StoreBackend
from app.services.store.base import BaseOrderItemStore, OrderItem
from app.services.store.memory import InMemoryOrderItemStore
from app.services.store.sql import SqlOrderItemStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_order_item_store() -> BaseOrderItemStore:
    """
    Get the configured order item store.

    The instance is cached so the API handlers and the in-process
    sweeper share one store (and, for memory, one set of items).

    Returns:
        BaseOrderItemStore: Configured store instance
    """
    settings = get_settings()
    backend = settings.resolved_store_backend

    if backend == StoreBackend.MEMORY:
        logger.info("Order Item Store: Using InMemoryOrderItemStore")
        return InMemoryOrderItemStore()

    # Imported here so memory-only processes never build an engine
    from app.database import get_session_maker

    logger.info(
        f"Order Item Store: Using SqlOrderItemStore "
        f"({settings.env_mode.value} mode)"
    )
    return SqlOrderItemStore(get_session_maker())


def reset_order_item_store() -> None:
    """
    Clear the cached store instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_order_item_store.cache_clear()
    logger.debug("Order item store cache cleared")


__all__ = [
    "get_order_item_store",
    "reset_order_item_store",
    "BaseOrderItemStore",
    "OrderItem",
    "InMemoryOrderItemStore",
    "SqlOrderItemStore",
]
