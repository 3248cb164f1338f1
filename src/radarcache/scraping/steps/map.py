"""Radar map steps: wait for the map, pause the loop, rewind, measure the container."""

import logging

from radarcache.scraping import selectors
from radarcache.scraping.base import ScrapingStep
from radarcache.scraping.context import Clip, PageState, ScrapingContext, StepResult

logger = logging.getLogger(__name__)

MAP_LOAD_TIMEOUT_MS = 15000
ESRI_VIEW_TIMEOUT_MS = 30000
CONTAINER_TIMEOUT_MS = 10000
PAUSE_SETTLE_MS = 300
SEGMENT_SETTLE_MS = 500


class WaitForMapReadyStep(ScrapingStep):
    """Wait for the map canvas to render and tiles to load."""

    name = "WaitForMapReady"
    prerequisites = ("ClickRadarLink",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.RADAR_PAGE_LOADED)

    async def execute(self, context: ScrapingContext) -> StepResult:
        page = context.page
        try:
            logger.info(f"Step {self.name}: waiting for weather map page")
            await page.wait_for_load_state("domcontentloaded", timeout=MAP_LOAD_TIMEOUT_MS)
            canvas = selectors.get_locator(page, selectors.MAP_CANVAS)
            await canvas.wait_for(timeout=MAP_LOAD_TIMEOUT_MS)
            await page.wait_for_function(selectors.Scripts.WAIT_FOR_MAP_CANVAS, timeout=MAP_LOAD_TIMEOUT_MS)

            try:
                await page.wait_for_function(selectors.Scripts.WAIT_FOR_ESRI_VIEW, timeout=ESRI_VIEW_TIMEOUT_MS)
                logger.info(f"Step {self.name}: map view is ready")
            except Exception:
                logger.info(f"Step {self.name}: map view ready check timed out, continuing with fixed wait")

            await page.wait_for_timeout(self.settings.screenshot.tile_render_wait_ms)
            await self.save_debug(context, "weather_map_ready")
            context.state = PageState.MAP_READY
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to wait for map ready: {e}", e)


class PauseRadarStep(ScrapingStep):
    """Stop the radar animation loop so frames can be stepped manually."""

    name = "PauseRadar"
    prerequisites = ("WaitForMapReady",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.MAP_READY)

    async def _button_label(self, button) -> str:
        label = await button.locator(selectors.PLAY_PAUSE_LABEL.selectors[0]).first.text_content()
        return (label or "").strip().lower()

    async def execute(self, context: ScrapingContext) -> StepResult:
        try:
            button = selectors.get_locator(context.page, selectors.PLAY_PAUSE_BUTTON)
            await button.wait_for(timeout=selectors.PLAY_PAUSE_BUTTON.timeout_ms)

            if await self._button_label(button) == selectors.PAUSE_LABEL.lower():
                logger.info(f"Step {self.name}: radar is playing, pausing it")
                await button.click()
                await context.page.wait_for_timeout(PAUSE_SETTLE_MS)
                if await self._button_label(button) != selectors.PLAY_LABEL.lower():
                    logger.warning(f"Step {self.name}: radar may not be paused after click, continuing")
            else:
                logger.info(f"Step {self.name}: radar is already paused")

            await self.save_debug(context, "radar_paused")
            context.state = PageState.SLIDESHOW_PAUSED
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to pause radar: {e}", e)


class ResetToFirstFrameStep(ScrapingStep):
    """Select frame 0 (the oldest) on the scrubber."""

    name = "ResetToFirstFrame"
    prerequisites = ("PauseRadar",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.SLIDESHOW_PAUSED)

    async def _click_first_segment(self, page) -> None:
        # A script click avoids the scrubber thumb intercepting the pointer
        try:
            if await page.evaluate(selectors.Scripts.CLICK_FIRST_SEGMENT):
                logger.info(f"Step {self.name}: clicked frame 0 segment via script")
            else:
                segment = selectors.get_locator(page, selectors.FRAME_SEGMENT)
                await segment.wait_for(timeout=selectors.FRAME_SEGMENT.timeout_ms)
                await segment.click(force=True)
                logger.info(f"Step {self.name}: clicked frame 0 segment via forced click")
            await page.wait_for_timeout(SEGMENT_SETTLE_MS)
        except Exception as e:
            logger.warning(f"Step {self.name}: failed to click first frame segment, continuing: {e}")

    async def execute(self, context: ScrapingContext) -> StepResult:
        page = context.page
        try:
            await self._click_first_segment(page)
            await self.save_debug(context, "frame_0_selected")

            try:
                if await page.evaluate(selectors.Scripts.CHECK_ACTIVE_FRAME_SEGMENT):
                    logger.info(f"Step {self.name}: scrubber confirmed at position 0")
                else:
                    logger.debug(f"Step {self.name}: could not confirm scrubber position")
            except Exception as e:
                logger.debug(f"Step {self.name}: scrubber position check failed: {e}")

            await page.wait_for_timeout(self.settings.screenshot.tile_render_wait_ms)
            context.state = PageState.FRAME0_SELECTED
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to reset to first frame: {e}", e)


class CalculateMapBoundsStep(ScrapingStep):
    """Measure the map container used as the screenshot clip."""

    name = "CalculateMapBounds"
    prerequisites = ("ResetToFirstFrame",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.MAP_READY)

    async def execute(self, context: ScrapingContext) -> StepResult:
        page = context.page
        try:
            container = selectors.get_locator(page, selectors.MAP_CONTAINER)
            await container.wait_for(timeout=CONTAINER_TIMEOUT_MS)
            await page.wait_for_function(selectors.Scripts.WAIT_FOR_MAP_CONTAINER, timeout=CONTAINER_TIMEOUT_MS)

            box = await container.bounding_box()
            if not box or box["width"] <= 0 or box["height"] <= 0:
                width = box["width"] if box else 0
                height = box["height"] if box else 0
                return await self.fail(context, f"Map container has invalid bounds: {width}x{height}")

            context.map_container = container
            context.map_bounds = Clip(x=box["x"], y=box["y"], width=box["width"], height=box["height"])
            logger.debug(f"Step {self.name}: map bounds {context.map_bounds}")
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to calculate map bounds: {e}", e)
