"""Capture every radar frame as a cropped PNG."""

import logging
import time
from typing import Optional

from radarcache.cache.models import Frame, UpdatePhase, default_minutes_ago
from radarcache.scraping import selectors
from radarcache.scraping.base import ScrapingStep
from radarcache.scraping.context import Clip, ScrapingContext, StepResult
from radarcache.scraping.timeparse import minutes_ago_from_label

logger = logging.getLogger(__name__)

LABEL_SETTLE_MS = 300
LABEL_RETRY_MS = 200
LABEL_POLL_MS = 200
LABEL_CHANGE_TIMEOUT_MS = 5000
STEP_FALLBACK_WAIT_MS = 500
NETWORK_IDLE_TIMEOUT_MS = 5000


def calculate_crop(bounds: Clip, x: int = 0, y: int = 0, right_offset: int = 0, height: Optional[int] = None) -> Clip:
    """Apply the configured crop to the map container bounds.

    The crop never extends outside the container.

    Raises:
        ValueError: If the crop leaves no area
    """
    left = bounds.x + x
    top = bounds.y + y
    width = max(0.0, bounds.width - x - right_offset)
    crop_height = height if height is not None else max(0.0, bounds.height - y)

    if left < bounds.x or top < bounds.y:
        left, top = bounds.x, bounds.y

    width = min(width, bounds.width - (left - bounds.x))
    crop_height = min(crop_height, bounds.height - (top - bounds.y))

    if width <= 0 or crop_height <= 0:
        raise ValueError(f"Invalid crop dimensions: {width}x{crop_height}")
    return Clip(x=left, y=top, width=width, height=crop_height)


def clamp_to_viewport(clip: Clip, viewport_width: float, viewport_height: float) -> Clip:
    """Trim a clip so it lies within the viewport."""
    x, y, width, height = clip.x, clip.y, clip.width, clip.height
    if x < 0:
        width += x
        x = 0
    if y < 0:
        height += y
        y = 0
    if x + width > viewport_width:
        width = viewport_width - x
    if y + height > viewport_height:
        height = viewport_height - y
    return Clip(x=x, y=y, width=width, height=height)


class CaptureFramesStep(ScrapingStep):
    """Screenshot each frame, stepping the scrubber forward between frames.

    Minutes-ago for each frame comes from the time label under the map;
    when the label cannot be read, or still shows the previous frame's
    time, the default for that index (40 - 5*i) is used.
    """

    name = "CaptureFrames"
    prerequisites = ("ExtractMetadata", "CalculateMapBounds")

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.map_bounds is not None and context.map_container is not None

    def _default_minutes(self, context: ScrapingContext, frame_index: int) -> int:
        for index, minutes in context.frame_info:
            if index == frame_index:
                return minutes
        return default_minutes_ago(frame_index)

    async def _read_minutes_ago(self, page) -> Optional[int]:
        try:
            label = await selectors.get_locator(page, selectors.TIME_DISPLAY_LABEL).text_content()
        except Exception as e:
            logger.debug(f"Could not read time label: {e}")
            return None
        return minutes_ago_from_label(label, self.settings.tzinfo)

    async def _wait_for_label_change(self, page, current: int) -> None:
        deadline = time.monotonic() + LABEL_CHANGE_TIMEOUT_MS / 1000
        while time.monotonic() < deadline:
            value = await self._read_minutes_ago(page)
            if value is not None and value != current:
                return
            await page.wait_for_timeout(LABEL_POLL_MS)
        logger.debug(f"Time label did not change from {current} within {LABEL_CHANGE_TIMEOUT_MS}ms")

    async def _dismiss_overlays(self, page) -> None:
        try:
            if not await page.evaluate(selectors.Scripts.CHECK_MODAL_OVERLAY):
                return
            logger.debug("Modal overlay detected, dismissing")
            await page.keyboard.press("Escape")
            await page.wait_for_timeout(LABEL_RETRY_MS)
            if await page.evaluate(selectors.Scripts.CHECK_MODAL_OVERLAY):
                await selectors.get_locator(page, selectors.MAP_CONTAINER).click(force=True)
        except Exception as e:
            logger.debug(f"Error dismissing modal overlay, continuing: {e}")

    def _crop_area(self, bounds: Clip) -> Clip:
        crop = self.settings.screenshot.crop
        try:
            return calculate_crop(bounds, crop.x, crop.y, crop.right_offset, crop.height)
        except ValueError as e:
            logger.warning(f"{e}; using full container bounds")
            return bounds

    async def _viewport(self, page, bounds: Clip) -> tuple[float, float]:
        size = page.viewport_size
        if size:
            return size["width"], size["height"]
        try:
            size = await page.evaluate(selectors.Scripts.GET_VIEWPORT_SIZE)
            return size["width"], size["height"]
        except Exception as e:
            logger.warning(f"Failed to read viewport size: {e}")
            return bounds.width, bounds.height

    async def _screenshot(self, page, bounds: Clip, path) -> None:
        clip = clamp_to_viewport(self._crop_area(bounds), *await self._viewport(page, bounds))
        if clip.width <= 0 or clip.height <= 0:
            logger.error(f"Invalid crop {clip.width}x{clip.height} after viewport clamp, using full container")
            clip = bounds

        try:
            await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_TIMEOUT_MS)
        except Exception:
            logger.debug("Network did not go idle, capturing anyway")

        await self._dismiss_overlays(page)
        await page.screenshot(path=str(path), clip=clip.as_dict(), type="png", animations="disabled")
        logger.debug(f"Screenshot saved: {path} (crop {clip.x},{clip.y} {clip.width}x{clip.height})")

    async def _frame_minutes(self, context: ScrapingContext, frame_index: int, previous: Optional[int]) -> int:
        page = context.page
        minutes = await self._read_minutes_ago(page)
        if minutes is None:
            await page.wait_for_timeout(LABEL_RETRY_MS)
            minutes = await self._read_minutes_ago(page)
        if minutes is None:
            minutes = self._default_minutes(context, frame_index)
            logger.warning(f"Could not read minutes ago for frame {frame_index}, using default {minutes}")

        if frame_index > 0 and previous is not None and minutes == previous:
            logger.warning(f"Frame {frame_index} shows the same time as the previous frame, waiting for label")
            await self._wait_for_label_change(page, previous)
            minutes = await self._read_minutes_ago(page)
            if minutes is None or minutes == previous:
                minutes = self._default_minutes(context, frame_index)
                logger.warning(f"Time label did not update for frame {frame_index}, using default {minutes}")
        return minutes

    async def execute(self, context: ScrapingContext) -> StepResult:
        page = context.page
        total = context.frame_count
        tile_wait_ms = self.settings.screenshot.tile_render_wait_ms
        try:
            context.report(UpdatePhase.CAPTURING_FRAMES, 0, total)
            step_forward = selectors.get_locator(page, selectors.STEP_FORWARD_BUTTON)
            frames = []
            previous = None

            for frame_index, path in enumerate(context.frame_paths):
                logger.info(f"Step {self.name}: capturing frame {frame_index} of {total}")
                await page.wait_for_timeout(tile_wait_ms)
                await page.wait_for_timeout(LABEL_SETTLE_MS)

                minutes = await self._frame_minutes(context, frame_index, previous)
                path.parent.mkdir(parents=True, exist_ok=True)
                await self._screenshot(page, context.map_bounds, path)

                frames.append(Frame(frame_index=frame_index, image_path=path, minutes_ago=minutes))
                previous = minutes
                logger.info(f"Step {self.name}: frame {frame_index} saved ({minutes} minutes ago)")
                context.report(UpdatePhase.CAPTURING_FRAMES, frame_index + 1, total)
                await self.save_debug(context, f"frame_{frame_index}_captured")

                if frame_index < total - 1:
                    await self._dismiss_overlays(page)
                    current = await self._read_minutes_ago(page)
                    await step_forward.click(force=True)
                    if current is not None:
                        await self._wait_for_label_change(page, current)
                    else:
                        await page.wait_for_timeout(STEP_FALLBACK_WAIT_MS)

            logger.info(f"Step {self.name}: all {total} frames captured")
            context.frames = frames
            context.report(UpdatePhase.SAVING)
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to capture frames: {e}", e)
