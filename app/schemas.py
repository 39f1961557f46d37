"""
Pydantic Schemas for Request/Response Validation

Order item holding-window API:
- Create / edit payloads
- Item, list and send responses
- Error and health responses
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from app.models import ItemState


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Request schema for adding an item to an order."""
    order_id: str = Field(..., min_length=1, max_length=64, examples=["table-12-order-3"])
    menu_item_id: str = Field(..., min_length=1, max_length=64, examples=["pizza-margherita"])
    quantity: int = Field(..., ge=1, le=999, examples=[2])
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, examples=["14.99"])
    special_instructions: Optional[str] = Field(None, max_length=500, examples=["No onions"])
    delay_seconds: Optional[int] = Field(
        None,
        ge=0,
        le=3600,
        description="Holding window; defaults to the configured delay",
    )


class OrderItemUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""
    quantity: Optional[int] = Field(None, ge=1, le=999, examples=[3])
    special_instructions: Optional[str] = Field(None, max_length=500)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(BaseModel):
    """Response schema for a single order item."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    menu_item_id: str
    quantity: int
    unit_price: Decimal
    special_instructions: Optional[str]
    delay_seconds: int
    state: ItemState
    locked: bool
    expiry_at: Optional[datetime]
    dispatched_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    version: int


class OrderItemListResponse(BaseModel):
    """Response for listing multiple items."""
    total: int
    items: List[OrderItemResponse]


class SendOrderResponse(BaseModel):
    """Response after sending an order's draft items."""
    order_id: str
    sent: int
    items: List[OrderItemResponse]
    unsent: List[str] = Field(
        default_factory=list,
        description="Ids still in draft after the call; send the order again to retry them",
    )


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    redis: str
    sweeper: str
    timestamp: datetime
