"""Extract observation metadata and per-frame defaults from the map page."""

import logging

from radarcache.cache.models import default_minutes_ago
from radarcache.scraping import selectors
from radarcache.scraping.base import ScrapingStep
from radarcache.scraping.context import PageState, ScrapingContext, StepResult
from radarcache.scraping.timeparse import parse_last_updated

logger = logging.getLogger(__name__)


class ExtractMetadataStep(ScrapingStep):
    """Read the "Last updated" block and set default minutes-ago per frame."""

    name = "ExtractMetadata"
    prerequisites = ("ResetToFirstFrame",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.MAP_READY)

    async def _last_updated_text(self, page) -> str:
        text = await page.evaluate(selectors.Scripts.EXTRACT_WEATHER_METADATA)
        if not text:
            section = selectors.get_locator(page, selectors.WEATHER_METADATA)
            text = await section.text_content()
        return text or ""

    async def execute(self, context: ScrapingContext) -> StepResult:
        try:
            logger.info(f"Step {self.name}: extracting metadata and frame information")
            try:
                text = await self._last_updated_text(context.page)
            except Exception as e:
                logger.warning(f"Failed to read last updated text: {e}")
                text = ""
            context.metadata = parse_last_updated(text, self.settings.tzinfo)
            logger.info(
                f"Observation time {context.metadata.observation_time}, "
                f"station {context.metadata.weather_station or 'unknown'}"
            )

            context.frame_info = [(i, default_minutes_ago(i)) for i in range(context.frame_count)]
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to extract metadata: {e}", e)
