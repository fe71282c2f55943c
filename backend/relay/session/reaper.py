"""Periodic cleanup of connections whose close notification never arrived."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relay.session.broker import Broker

REAPER_INTERVAL = 30  # seconds between stale-connection scans

logger = logging.getLogger(__name__)


class StaleConnectionReaper:
    """Run ``Broker.reap_stale`` on a fixed interval in a background task."""

    def __init__(self, broker: Broker, interval: float = REAPER_INTERVAL) -> None:
        self._broker = broker
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def run_once(self) -> int:
        cleaned = await self._broker.reap_stale()
        if cleaned:
            logger.info("cleaned up %d stale connections", cleaned)
        return cleaned

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("stale connection scan failed")
