"""Location search steps: type the suburb, wait for results, pick the best match."""

import logging

from radarcache.scraping import selectors
from radarcache.scraping.base import ScrapingStep
from radarcache.scraping.context import PageState, ScrapingContext, StepResult

logger = logging.getLogger(__name__)

RESULTS_TIMEOUT_MS = 10000
FORECAST_LOAD_TIMEOUT_MS = 15000


class FillSearchInputStep(ScrapingStep):
    name = "FillSearchInput"
    prerequisites = ("ClickSearchButton",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.SEARCH_MODAL_OPEN)

    async def execute(self, context: ScrapingContext) -> StepResult:
        try:
            logger.info(f"Step {self.name}: searching for suburb {context.suburb}")
            search_input = selectors.get_locator(context.page, selectors.SEARCH_INPUT)
            await search_input.fill(context.suburb)
            await self.save_debug(context, "search_input_filled")
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to fill search input: {e}", e)


class WaitForSearchResultsStep(ScrapingStep):
    name = "WaitForSearchResults"
    prerequisites = ("FillSearchInput",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.SEARCH_MODAL_OPEN)

    async def execute(self, context: ScrapingContext) -> StepResult:
        try:
            logger.info(f"Step {self.name}: waiting for autocomplete suggestions")
            await context.page.wait_for_function(selectors.Scripts.WAIT_FOR_SEARCH_RESULTS, timeout=RESULTS_TIMEOUT_MS)
            context.state = PageState.SEARCH_RESULTS_VISIBLE
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to wait for search results: {e}", e)


class SelectSearchResultStep(ScrapingStep):
    """Click the result best matching the suburb and state.

    Falls back to the first result when none matches both.
    """

    name = "SelectSearchResult"
    prerequisites = ("WaitForSearchResults",)

    def can_execute(self, context: ScrapingContext) -> bool:
        return context.state.at_least(PageState.SEARCH_RESULTS_VISIBLE)

    async def _reported_count(self, page):
        title = await selectors.find_element(page, selectors.RESULTS_TITLE)
        if title is None:
            return None
        summary = await title.text_content()
        match = selectors.RESULTS_COUNT_PATTERN.search(summary or "")
        return int(match.group(2)) if match else None

    async def _extract_results(self, page) -> list[tuple[str, str, str]]:
        try:
            rows = await page.evaluate(selectors.Scripts.EXTRACT_SEARCH_RESULTS)
            return [
                (
                    row[0] if len(row) > 0 else "",
                    row[1] if len(row) > 1 else "",
                    row[2] if len(row) > 2 else "",
                )
                for row in rows
            ]
        except Exception as e:
            logger.warning(f"Structured result extraction failed, falling back to text content: {e}")
            texts = await page.evaluate(selectors.Scripts.EXTRACT_SEARCH_RESULTS_FALLBACK)
            return [("", "", text) for text in texts]

    async def execute(self, context: ScrapingContext) -> StepResult:
        page = context.page
        try:
            logger.info(f"Step {self.name}: looking for result matching {context.location}")
            results = await self._extract_results(page)
            count = await self._reported_count(page)
            if count is not None and len(results) > count:
                results = results[:count]
            logger.info(f"Found {len(results)} location results")

            index = selectors.select_best_result(results, context.suburb, context.state_name)
            if index is None:
                logger.info("No exact match found, using first result")
            else:
                logger.info(f"Using best matching result at index {index}: {results[index][0]}")
            context.search_results = results
            context.selected_result_index = index

            items = page.locator(selectors.SEARCH_RESULT_ITEM.selectors[0])
            target = items.nth(index) if index is not None else items.first
            await target.click()
            await self.save_debug(context, "search_result_selected")

            await page.wait_for_load_state("domcontentloaded", timeout=FORECAST_LOAD_TIMEOUT_MS)
            await page.wait_for_timeout(self.settings.screenshot.dynamic_content_wait_ms)
            await self.save_debug(context, "forecast_page_loaded")

            context.state = PageState.FORECAST_PAGE_LOADED
            return StepResult.ok()
        except Exception as e:
            return await self.fail(context, f"Failed to select search result: {e}", e)
