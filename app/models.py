"""
SQLAlchemy Database Models

Order item lifecycle persistence:
- Single state enum (draft / pending / dispatched / completed)
- Holding-window timer expiry
- Version column for compare-and-swap writes
"""

import enum

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Enum, Boolean, Index

from app.database import Base


class ItemState(str, enum.Enum):
    """Order item lifecycle."""
    DRAFT = "draft"
    PENDING = "pending"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"

    @property
    def is_locked(self) -> bool:
        """Locked once the item has left the editable phase."""
        return self in LOCKED_STATES


LOCKED_STATES = frozenset({ItemState.DISPATCHED, ItemState.COMPLETED})


class OrderItemRecord(Base):
    """
    Order item table - one row per line item on an order.

    Tracks the item from creation through the holding window to the
    kitchen/bar and completion. Orders, menu items and prep stations live
    in other systems; only their ids are stored here.
    """
    __tablename__ = "order_items"

    # Primary Key
    id = Column(String(32), primary_key=True)

    # =========================================================================
    # REFERENCES
    # =========================================================================
    order_id = Column(String(64), nullable=False, index=True)
    menu_item_id = Column(String(64), nullable=False, index=True)

    # =========================================================================
    # LINE DETAILS
    # =========================================================================
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    special_instructions = Column(Text, nullable=True)

    # =========================================================================
    # HOLDING WINDOW
    # =========================================================================
    delay_seconds = Column(Integer, nullable=False)
    state = Column(
        Enum(ItemState, name="order_item_state"),
        default=ItemState.DRAFT,
        nullable=False,
        index=True
    )
    # Written from state on every save; kept as a column for the sweeper query
    locked = Column(Boolean, nullable=False, default=False)
    expiry_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # FULFILLMENT
    # =========================================================================
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # BOOKKEEPING
    # =========================================================================
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_order_items_sweep", "state", "locked", "expiry_at"),
        Index("ix_order_items_order_state", "order_id", "state"),
    )

    def __repr__(self):
        return f"<OrderItem {self.id} - order {self.order_id} - {self.state.value}>"
