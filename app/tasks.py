"""
Celery Tasks
Background tasks for enforcing holding-window expiry.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.pool import NullPool

from app.celery_worker import celery_app
from app.core.config import get_settings
from app.database import build_engine, build_session_maker
from app.services.lifecycle import OrderItemLifecycle
from app.services.store import BaseOrderItemStore, SqlOrderItemStore
from app.services.sweeper import ExpirySweeper, SweepReport

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_store() -> AsyncIterator[BaseOrderItemStore]:
    """
    Database store on a throwaway engine.

    Each task invocation runs its own event loop, so connections are
    not pooled across invocations.
    """
    settings = get_settings()
    engine = build_engine(settings.database_url, poolclass=NullPool)
    try:
        yield SqlOrderItemStore(build_session_maker(engine))
    finally:
        await engine.dispose()


async def _sweep() -> SweepReport:
    async with open_store() as store:
        sweeper = ExpirySweeper(OrderItemLifecycle(store))
        return await sweeper.sweep_once()


@celery_app.task(name='app.tasks.sweep_expired_items', bind=True)
def sweep_expired_items(self) -> dict:
    """
    Run one expiry sweep cycle.

    Per-item failures are logged by the sweeper and retried on the next
    beat tick; only a failed expired-items query fails the task.

    Returns:
        dict: Sweep summary
    """
    task_id = self.request.id
    start_time = time.time()

    report = asyncio.run(_sweep())

    elapsed = round(time.time() - start_time, 3)
    if report.dispatched or report.failed:
        logger.info(
            f"Task {task_id}: {len(report.dispatched)} dispatched, "
            f"{len(report.failed)} failed in {elapsed}s"
        )

    result = report.to_dict()
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed
    return result
