"""
FastAPI Application Entry Point

Order item holding-window service. Thin HTTP layer over the lifecycle
engine; every route maps to one engine operation.

Endpoints:
    - POST   /api/order-items: Add an item to an order (draft)
    - GET    /api/order-items: List items (filter by state / menu item)
    - GET    /api/order-items/{id}: Get one item
    - PATCH  /api/order-items/{id}: Edit an unlocked item
    - DELETE /api/order-items/{id}: Remove an unlocked item
    - POST   /api/order-items/{id}/send-now: Dispatch immediately
    - POST   /api/order-items/{id}/start: Mark preparation started
    - POST   /api/order-items/{id}/complete: Mark preparation finished
    - POST   /api/orders/{order_id}/send: Start the holding window for draft items
    - GET    /api/orders/{order_id}/items: Items of one order
    - GET    /health: System health check
"""

import asyncio
import sys
import logging
from datetime import datetime, timezone
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import redis

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from app.core.config import get_settings, setup_logging
from app.core.exceptions import (
    OrderItemError,
    NotFoundError,
    LockedItemError,
    InvalidTransitionError,
    InvalidItemError,
    PersistenceError,
)
from app.models import ItemState
from app.schemas import (
    OrderItemCreate,
    OrderItemUpdate,
    OrderItemResponse,
    OrderItemListResponse,
    SendOrderResponse,
    ErrorResponse,
    HealthResponse,
)
from app.services.lifecycle import OrderItemLifecycle, get_lifecycle
from app.services.store import get_order_item_store
from app.services.sweeper import ExpirySweeper

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFoundError: 404,
    LockedItemError: 409,
    InvalidTransitionError: 409,
    InvalidItemError: 422,
    PersistenceError: 503,
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    store = get_order_item_store()
    logger.info(f"✅ Order Item Store: {store.provider_name}")

    if store.provider_name == "database":
        from app.database import get_engine, init_db

        await init_db(get_engine())
        logger.info("✅ Database initialized")

    sweeper = ExpirySweeper(get_lifecycle())
    app.state.sweeper = sweeper
    if settings.sweeper_enabled:
        await sweeper.start()
    else:
        logger.warning("⚠️ Expiry sweeper disabled; pending items rely on an external worker")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await sweeper.stop()
    await store.close()
    if store.provider_name == "database":
        from app.database import dispose_db

        await dispose_db()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Tracks order line items through a short editable holding window "
        "before they are locked and dispatched to the kitchen or bar."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    request: Request,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> HealthResponse:
    """Verify all system components are operational."""

    store_status = "healthy" if await lifecycle.store.health_check() else "unhealthy"

    # Redis is only needed by the Celery beat sweeper
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2, socket_connect_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    sweeper: Optional[ExpirySweeper] = getattr(request.app.state, "sweeper", None)
    sweeper_status = "running" if sweeper is not None and sweeper.running else "stopped"

    overall = "operational" if store_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        store=store_status,
        redis=redis_status,
        sweeper=sweeper_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER ITEM ENDPOINTS
# =============================================================================

@app.post(
    "/api/order-items",
    response_model=OrderItemResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Order Items"],
    summary="Add Item to Order",
)
async def create_order_item(
    payload: OrderItemCreate,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemResponse:
    """Create a draft item. Nothing reaches the kitchen until the order is sent."""
    item = await lifecycle.create(**payload.model_dump())
    return OrderItemResponse.model_validate(item)


@app.get(
    "/api/order-items",
    response_model=OrderItemListResponse,
    tags=["Order Items"],
    summary="List Items",
)
async def list_order_items(
    state: Optional[ItemState] = Query(None),
    menu_item_id: Optional[str] = Query(None),
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemListResponse:
    """List items, optionally by state and/or menu item."""
    if menu_item_id is not None:
        items = await lifecycle.list_for_menu_item(menu_item_id)
        if state is not None:
            items = [item for item in items if item.state == state]
    elif state is not None:
        items = await lifecycle.list_by_state(state)
    else:
        items = await lifecycle.list_items()

    return OrderItemListResponse(
        total=len(items),
        items=[OrderItemResponse.model_validate(item) for item in items],
    )


@app.get(
    "/api/order-items/{item_id}",
    response_model=OrderItemResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
)
async def get_order_item(
    item_id: str,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemResponse:
    """Get a specific item by ID."""
    item = await lifecycle.get(item_id)
    return OrderItemResponse.model_validate(item)


@app.patch(
    "/api/order-items/{item_id}",
    response_model=OrderItemResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
    summary="Edit Item",
)
async def edit_order_item(
    item_id: str,
    payload: OrderItemUpdate,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemResponse:
    """Edit a draft or pending item. Editing a pending item restarts its timer."""
    item = await lifecycle.edit(item_id, **payload.model_dump(exclude_unset=True))
    return OrderItemResponse.model_validate(item)


@app.delete(
    "/api/order-items/{item_id}",
    status_code=204,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
    summary="Delete Item",
)
async def delete_order_item(
    item_id: str,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> Response:
    """Remove an item that has not been dispatched."""
    await lifecycle.delete(item_id)
    return Response(status_code=204)


@app.post(
    "/api/order-items/{item_id}/send-now",
    response_model=OrderItemResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
    summary="Dispatch Immediately",
)
async def send_order_item_now(
    item_id: str,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemResponse:
    """Skip the remaining holding window. Already dispatched items are returned as-is."""
    item = await lifecycle.send_now(item_id)
    return OrderItemResponse.model_validate(item)


@app.post(
    "/api/order-items/{item_id}/start",
    response_model=OrderItemResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
    summary="Mark Preparation Started",
)
async def start_order_item(
    item_id: str,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemResponse:
    item = await lifecycle.start(item_id)
    return OrderItemResponse.model_validate(item)


@app.post(
    "/api/order-items/{item_id}/complete",
    response_model=OrderItemResponse,
    responses=ERROR_RESPONSES,
    tags=["Order Items"],
    summary="Mark Preparation Finished",
)
async def complete_order_item(
    item_id: str,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemResponse:
    item = await lifecycle.complete(item_id)
    return OrderItemResponse.model_validate(item)


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders/{order_id}/send",
    response_model=SendOrderResponse,
    responses={503: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Send Order",
)
async def send_order(
    order_id: str,
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> SendOrderResponse:
    """
    Start the holding window for every draft item on the order.

    Items whose write failed stay in draft and are listed in `unsent`.
    """
    items = await lifecycle.send(order_id)
    unsent = await lifecycle.list_for_order_in_state(order_id, ItemState.DRAFT)
    return SendOrderResponse(
        order_id=order_id,
        sent=len(items),
        items=[OrderItemResponse.model_validate(item) for item in items],
        unsent=[item.id for item in unsent],
    )


@app.get(
    "/api/orders/{order_id}/items",
    response_model=OrderItemListResponse,
    tags=["Orders"],
    summary="List Order Items",
)
async def list_items_for_order(
    order_id: str,
    state: Optional[ItemState] = Query(None),
    lifecycle: OrderItemLifecycle = Depends(get_lifecycle),
) -> OrderItemListResponse:
    """Items of one order, e.g. state=pending for the ones still in their window."""
    if state is not None:
        items = await lifecycle.list_for_order_in_state(order_id, state)
    else:
        items = await lifecycle.list_for_order(order_id)

    return OrderItemListResponse(
        total=len(items),
        items=[OrderItemResponse.model_validate(item) for item in items],
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderItemError)
async def order_item_exception_handler(request: Request, exc: OrderItemError) -> JSONResponse:
    """Map the order item error taxonomy onto HTTP status codes."""
    status_code = next(
        (code for kind, code in ERROR_STATUS_CODES.items() if isinstance(exc, kind)),
        400,
    )
    if status_code >= 500:
        logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            detail=exc.message,
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
