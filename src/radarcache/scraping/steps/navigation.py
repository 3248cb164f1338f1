"""Steps that move between pages: homepage, search modal, radar map link."""

import logging

from radarcache.scraping import selectors
from radarcache.scraping.base import ScrapingStep
from radarcache.scraping.context import PageState, ScrapingContext, StepResult

logger = logging.getLogger(__name__)

PAGE_LOAD_TIMEOUT_MS = 30000


class NavigateHomepageStep(ScrapingStep):
    """Open the BOM homepage and wait for the location search button."""

    name = "NavigateHomepage"
    prerequisites = ()

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state == PageState.INITIAL

    async def execute(self, context: ScrapingContext) -> StepResult:
        base_url = self.settings.scraping.base_url
        try:
            logger.info(f"Step {self.name}: navigating to {base_url}")
            await context.page.goto(base_url, wait_until="domcontentloaded", timeout=PAGE_LOAD_TIMEOUT_MS)
            button = selectors.get_locator(context.page, selectors.SEARCH_BUTTON)
            await button.wait_for(state="visible", timeout=selectors.SEARCH_BUTTON.timeout_ms)
            await self.save_debug(context, "homepage_loaded")
            context.state = PageState.HOMEPAGE_LOADED
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to navigate to homepage: {e}", e)


class ClickSearchButtonStep(ScrapingStep):
    """Open the location search modal."""

    name = "ClickSearchButton"
    prerequisites = ("NavigateHomepage",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.HOMEPAGE_LOADED)

    async def execute(self, context: ScrapingContext) -> StepResult:
        try:
            logger.info(f"Step {self.name}: clicking 'Search for a location'")
            button = await selectors.find_element(context.page, selectors.SEARCH_BUTTON)
            if button is None:
                return await self.fail(context, selectors.SEARCH_BUTTON.error_message)
            await button.click()
            search_input = selectors.get_locator(context.page, selectors.SEARCH_INPUT)
            await search_input.wait_for(state="visible", timeout=selectors.SEARCH_INPUT.timeout_ms)
            await self.save_debug(context, "search_button_clicked")
            context.state = PageState.SEARCH_MODAL_OPEN
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to click search button: {e}", e)


class ClickRadarLinkStep(ScrapingStep):
    """Follow the 'Rain radar and weather map' link from the forecast page."""

    name = "ClickRadarLink"
    prerequisites = ("SelectSearchResult",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.FORECAST_PAGE_LOADED)

    async def execute(self, context: ScrapingContext) -> StepResult:
        try:
            logger.info(f"Step {self.name}: looking for radar map link")
            link = await selectors.find_element(context.page, selectors.RADAR_LINK)
            if link is None:
                return await self.fail(
                    context,
                    f"Could not find 'Rain radar and weather map' link for {context.location}",
                )
            await link.click()
            await self.save_debug(context, "radar_link_clicked")
            context.state = PageState.RADAR_PAGE_LOADED
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to click radar link: {e}", e)
