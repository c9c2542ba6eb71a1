"""
Periodic refresh of platform statistics for the admin dashboard.

Fixed interval, no backoff, no jitter. A failed refresh is logged and the
next tick runs as usual.
"""

import asyncio
import logging
from typing import Callable, Optional

from ..core.config import get_settings
from .functions import FunctionsClient, RemoteFunctionError

logger = logging.getLogger(__name__)


class StatsPoller:
    def __init__(
        self,
        client: FunctionsClient,
        interval: Optional[float] = None,
        on_update: Optional[Callable[[dict], None]] = None,
    ):
        self.client = client
        self.interval = interval if interval is not None else get_settings().stats_refresh_seconds
        self.on_update = on_update
        self.latest: Optional[dict] = None
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> Optional[dict]:
        """Recompute and fetch stats once. Returns None when the call fails."""
        try:
            stats = await self.client.invoke("update-system-stats")
        except RemoteFunctionError as e:
            logger.error(f"Stats refresh failed: {e.message}")
            return None

        self.latest = stats
        if self.on_update:
            self.on_update(stats)
        return stats

    async def run(self, iterations: Optional[int] = None) -> None:
        """Refresh every interval seconds; forever unless iterations is given."""
        done = 0
        while iterations is None or done < iterations:
            await self.refresh()
            done += 1
            if iterations is not None and done >= iterations:
                break
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
