"""Background task that cancels pending-payment orders past their reservation window."""

from __future__ import annotations

import asyncio
import logging

from src.core.config import DEFAULT_EXPIRATION_INTERVAL_MINUTES, MIN_EXPIRATION_INTERVAL_MINUTES
from src.services.order_service import OrderService

logger = logging.getLogger(__name__)


class OrderExpirationSweeper:
    """Runs ``OrderService.cancel_expired_orders`` on a fixed interval."""

    def __init__(
        self,
        order_service: OrderService,
        interval_minutes: float = DEFAULT_EXPIRATION_INTERVAL_MINUTES,
    ) -> None:
        if interval_minutes < MIN_EXPIRATION_INTERVAL_MINUTES:
            interval_minutes = DEFAULT_EXPIRATION_INTERVAL_MINUTES
        self.order_service = order_service
        self.interval_seconds = interval_minutes * 60
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop. The first cycle runs immediately."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            logger.info("Order expiration sweeper started (every %.1f minutes)", self.interval_seconds / 60)

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Order expiration sweeper stopped")

    async def _loop(self) -> None:
        while True:
            await self.run_cycle()
            await asyncio.sleep(self.interval_seconds)

    async def run_cycle(self) -> int:
        """Run one sweep. Never raises, so a bad cycle does not stop the loop.

        Returns:
            int: Orders cancelled in this cycle.
        """
        try:
            cancelled = await self.order_service.cancel_expired_orders()
        except Exception:
            logger.exception("Order expiration cycle failed")
            return 0
        if cancelled > 0:
            logger.info("Expired pending-payment orders cancelled: %d", cancelled)
        return cancelled
