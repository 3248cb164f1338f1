"""Headless Chromium session and the browser-backed acquirer.

One browser process is launched lazily and shared; every acquisition gets
its own context and page, closed when the acquisition ends.
"""

import asyncio
import logging
from typing import Optional

from playwright.async_api import async_playwright

from radarcache.cache.orchestrator import AcquisitionRequest
from radarcache.config import Settings
from radarcache.scraping.context import ScrapingContext
from radarcache.scraping.debug import BrowserLog, DebugRecorder
from radarcache.scraping.workflow import RadarWorkflow, WorkflowResult

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-notifications",
    "--no-first-run",
    "--no-default-browser-check",
    "--force-color-profile=srgb",
    # Software WebGL for the map canvas on hosts without a GPU
    "--enable-unsafe-swiftshader",
    "--use-gl=swiftshader",
]

EXTRA_HEADERS = {
    "Accept-Language": "en-AU,en;q=0.9",
}


class BrowserSession:
    """Lazily launched Chromium shared by all acquisitions."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def get_browser(self):
        async with self._lock:
            if not self.is_running:
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                logger.info(f"Launching Chromium (headless={self.settings.browser.headless})")
                self._browser = await self._playwright.chromium.launch(
                    headless=self.settings.browser.headless,
                    args=LAUNCH_ARGS,
                )
            return self._browser

    async def new_context(self):
        browser = await self.get_browser()
        options = self.settings.browser
        return await browser.new_context(
            viewport={"width": options.viewport_width, "height": options.viewport_height},
            device_scale_factor=options.device_scale_factor,
            user_agent=options.user_agent,
            locale=options.locale,
            timezone_id=self.settings.timezone,
            extra_http_headers=EXTRA_HEADERS,
        )

    async def initialize(self) -> None:
        """Pre-warm: launch the browser before the first acquisition needs it."""
        await self.get_browser()
        logger.info("Browser pre-warmed")

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser closed")


class BrowserAcquirer:
    """Runs the radar workflow in a fresh browser context per acquisition."""

    def __init__(self, settings: Settings, session: Optional[BrowserSession] = None):
        self.settings = settings
        self.session = session or BrowserSession(settings)

    async def warm_up(self) -> None:
        await self.session.initialize()

    async def close(self) -> None:
        await self.session.close()

    async def acquire(self, request: AcquisitionRequest) -> WorkflowResult:
        workflow = RadarWorkflow.from_settings(self.settings, request.metrics)
        browser_context = await self.session.new_context()
        try:
            page = await browser_context.new_page()
            debug = None
            if request.debug_folder is not None:
                log = BrowserLog()
                log.attach(page)
                debug = DebugRecorder(request.debug_folder, self.settings.debug.wait_ms, log)

            context = ScrapingContext(
                location=request.location,
                frame_paths=request.frame_paths,
                page=page,
                debug=debug,
            )
            logger.info(f"Executing {workflow.name} workflow for {request.location}")
            return await workflow.run(context, location_key=request.location_key)
        finally:
            await browser_context.close()
