"""Process wiring: one orchestrator, its acquirer and the background loops.

Example:
    >>> service = RadarCacheService(load_settings())
    >>> await service.start()      # startup recovery + refresh/cleanup loops
    >>> ...
    >>> await service.stop()
"""

import asyncio
import logging
from typing import Optional

from radarcache.cache.orchestrator import Acquirer, CacheOrchestrator
from radarcache.cache.refresh import CleanupScheduler, RefreshResult, RefreshScheduler
from radarcache.config import Settings

logger = logging.getLogger(__name__)


class RadarCacheService:
    """Owns the long-lived pieces of a running radar cache.

    Attributes:
        settings: Loaded settings
        acquirer: Acquisition backend (a browser session unless injected)
        orchestrator: CacheOrchestrator shared by the API and the loops
        refresh: Refresh loop
        cleanup: Retention cleanup loop
    """

    def __init__(self, settings: Settings, acquirer: Optional[Acquirer] = None):
        self.settings = settings
        if acquirer is None:
            from radarcache.scraping.browser import BrowserAcquirer
            acquirer = BrowserAcquirer(settings)
        self.acquirer = acquirer
        self.orchestrator = CacheOrchestrator(settings, acquirer)
        self.refresh = RefreshScheduler(
            self.orchestrator,
            settings,
            warm_up=getattr(acquirer, "warm_up", None),
        )
        self.cleanup = CleanupScheduler(self.orchestrator, settings)
        self._loops: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._loops)

    async def start(self, background: bool = True) -> None:
        """Recover from a previous crash, then start the background loops."""
        self.orchestrator.cleanup_incomplete_on_startup()
        if not background:
            return
        self._loops = [
            asyncio.create_task(self.refresh.run(), name="cache-refresh"),
            asyncio.create_task(self.cleanup.run(), name="cache-cleanup"),
        ]
        logger.info("Background refresh and cleanup loops started")

    async def stop(self) -> None:
        """Stop the loops, cancel in-flight updates and release the browser."""
        for task in self._loops:
            task.cancel()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        await self.orchestrator.shutdown()
        await self._close_acquirer()
        logger.info("Radar cache service stopped")

    async def _close_acquirer(self) -> None:
        close = getattr(self.acquirer, "close", None)
        if close is None:
            return
        try:
            await close()
        except Exception as e:
            logger.warning(f"Error closing acquirer: {e}")

    async def refresh_once(self) -> RefreshResult:
        """One refresh cycle that waits for every triggered update to finish.

        Incomplete folders are left alone: a server sharing the cache
        directory may be writing them. Crash recovery is ``--recover``.
        """
        try:
            await self.refresh.prewarm()
            result = await self.refresh.run_cycle()
            await self.orchestrator.wait_for_updates()
            return result
        finally:
            await self._close_acquirer()


def serve(settings: Settings, host: str = "0.0.0.0", port: int = 8080, log_level: str = "info") -> None:
    """Run the HTTP API with the background loops until interrupted."""
    import uvicorn

    from radarcache.api.app import create_app

    app = create_app(service=RadarCacheService(settings))
    logger.info(f"Serving radar cache API on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=log_level)
