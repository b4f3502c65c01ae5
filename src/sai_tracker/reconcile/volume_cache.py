"""Protocol-wide volume cache with single-flight refresh per network."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()


class CachedValue(BaseModel):
    value: float
    last_refreshed: datetime


class VolumeCache:
    """One cached volume per network, refreshed in the background.

    Readers get whatever value is cached (possibly stale, possibly None
    before the first refresh) and never wait on a recomputation. A refresh
    replaces the entry in one assignment; at most one refresh per network
    runs at a time.
    """

    def __init__(
        self,
        compute: Callable[[str], Awaitable[float]],
        networks: tuple[str, ...] | list[str],
        refresh_interval_seconds: float = 6 * 3600,
    ) -> None:
        self._compute = compute
        self.networks = tuple(networks)
        self.refresh_interval_seconds = refresh_interval_seconds
        self._values: dict[str, CachedValue] = {}
        self._locks = {network: asyncio.Lock() for network in self.networks}
        self._task: asyncio.Task | None = None
        self._running = False

    def get(self, network: str) -> CachedValue | None:
        return self._values.get(network)

    async def refresh(self, network: str) -> CachedValue | None:
        """Recompute one network; joins an in-flight refresh instead of starting another."""
        lock = self._locks.setdefault(network, asyncio.Lock())
        if lock.locked():
            async with lock:
                return self._values.get(network)
        async with lock:
            started = datetime.now(timezone.utc)
            try:
                value = await self._compute(network)
            except Exception as e:
                logger.warning("volume_refresh_failed", network=network, error=str(e))
                return self._values.get(network)
            cached = CachedValue(value=value, last_refreshed=started)
            self._values[network] = cached
            logger.info("volume_refreshed", network=network, volume=value)
            return cached

    async def refresh_all(self) -> None:
        await asyncio.gather(*(self.refresh(network) for network in self.networks))

    def start(self) -> None:
        """Refresh now, then every ``refresh_interval_seconds``."""
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("volume_cache_started", networks=list(self.networks))

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("volume_cache_stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.refresh_all()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("volume_cache_loop_error")
            await asyncio.sleep(self.refresh_interval_seconds)
