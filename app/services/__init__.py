"""
                        Services Module

Business logic for the order item holding window.

Services:
    - store: Persistence port with memory and database implementations
    - lifecycle: Order item state machine
    - sweeper: Periodic dispatch of expired pending items
"""

from app.services.lifecycle import OrderItemLifecycle, get_lifecycle
from app.services.sweeper import ExpirySweeper, SweepReport

__all__ = ["OrderItemLifecycle", "get_lifecycle", "ExpirySweeper", "SweepReport"]
