"""
Expiry Sweeper

Periodic background job that dispatches pending items whose holding
window has run out. Every cycle:

    1. Ask the store for pending, unlocked items with expiry_at <= now
    2. Run each one through the lifecycle engine's dispatch transition
    3. Log and skip per-item failures; the next cycle picks them up again

All state comes from the store, never from process memory, so the
sweeper survives restarts and several instances (API processes, Celery
beat workers) can run side by side. The engine's compare-and-swap
dispatch guarantees each item is dispatched once.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Optional

from app.core.config import get_settings
from app.core.exceptions import NotFoundError, PersistenceError
from app.services.lifecycle import OrderItemLifecycle

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """
    Outcome of one sweep cycle.

    Attributes:
        checked: Expired items returned by the store
        dispatched: Ids this cycle moved to dispatched
        skipped: Ids another writer handled first (sent, edited, deleted)
        failed: Ids whose dispatch hit a persistence error
    """
    checked: int = 0
    dispatched: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "checked": self.checked,
            "dispatched": list(self.dispatched),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
        }


class ExpirySweeper:
    """
    Drives timer expiry for the holding window.

    Example:
        >>> sweeper = ExpirySweeper(get_lifecycle())
        >>> await sweeper.start()   # background loop
        >>> report = await sweeper.sweep_once()   # or a single cycle
    """

    def __init__(
        self,
        lifecycle: OrderItemLifecycle,
        interval_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.lifecycle = lifecycle
        self.interval_seconds = (
            settings.sweeper_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.initial_delay_seconds = (
            settings.sweeper_initial_delay_seconds
            if initial_delay_seconds is None
            else initial_delay_seconds
        )
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Expiry sweeper started (every {self.interval_seconds}s "
            f"after {self.initial_delay_seconds}s grace)"
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def sweep_once(self) -> SweepReport:
        """
        Run one cycle.

        Raises:
            PersistenceError: The expired-items query itself failed
        """
        now = self.lifecycle.clock()
        expired = await self.lifecycle.store.find_expired_unlocked(now)
        report = SweepReport(checked=len(expired))

        for item in expired:
            try:
                _, dispatched = await self.lifecycle.dispatch(item.id, expired_as_of=now)
            except NotFoundError:
                logger.debug(f"Sweeper: item {item.id} deleted before dispatch")
                report.skipped.append(item.id)
            except PersistenceError:
                # Item stays pending past its timer until a later cycle succeeds
                logger.exception(f"Sweeper: failed to dispatch expired item {item.id}")
                report.failed.append(item.id)
            else:
                if dispatched:
                    report.dispatched.append(item.id)
                else:
                    report.skipped.append(item.id)

        if report.dispatched or report.failed:
            logger.info(
                f"Sweep: {report.checked} expired, {len(report.dispatched)} dispatched, "
                f"{len(report.failed)} failed"
            )
        return report

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            try:
                await self.sweep_once()
            except Exception as exc:  # pragma: no cover - background guard
                logger.exception("Sweep cycle failed: %s", exc)
            await asyncio.sleep(self.interval_seconds)
