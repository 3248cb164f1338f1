"""Page selectors, in-page scripts and state-name matching for the BOM site.

Every element lookup goes through a SelectorConfig holding one or more CSS
selectors tried in order, so a markup change can be absorbed by adding a
fallback selector here rather than touching the steps.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectorConfig:
    """An element lookup with fallback selectors.

    Attributes:
        name: Human-readable element name for logs
        selectors: CSS selectors tried in order (first visible match wins)
        timeout_ms: Wait budget when waiting for the element
        required: Whether absence is an error
        error_message: Message used when a required element is missing
    """

    name: str
    selectors: tuple[str, ...]
    timeout_ms: int = 5000
    required: bool = True
    error_message: Optional[str] = None


SEARCH_BUTTON = SelectorConfig(
    name="SearchButton",
    selectors=(
        "button[data-testid='search-location-button']",
        "button:has-text('Search for a location')",
        "button[aria-label*='Search']",
    ),
    timeout_ms=15000,
    error_message="Could not find 'Search for a location' button on BOM homepage.",
)
SEARCH_INPUT = SelectorConfig(
    name="SearchInput",
    selectors=("input[id='search-location']", "input[type='search']", "input[placeholder*='location']"),
    timeout_ms=10000,
)
RESULTS_TITLE = SelectorConfig(name="ResultsTitle", selectors=("#location-results-title",), required=False)
SEARCH_RESULT_ITEM = SelectorConfig(
    name="SearchResultItem",
    selectors=("ul[aria-labelledby='location-results-title'] li.bom-linklist__item[role='listitem']",),
)
RADAR_LINK = SelectorConfig(
    name="RadarLink",
    selectors=(
        "a:has-text('Rain radar and weather map')",
        "a[href*='weather-map']",
    ),
    timeout_ms=10000,
)
MAP_CANVAS = SelectorConfig(name="MapCanvas", selectors=(".esri-view-surface canvas",), timeout_ms=15000)
MAP_CONTAINER = SelectorConfig(name="MapContainer", selectors=(".esri-view-surface",), timeout_ms=10000)
PLAY_PAUSE_BUTTON = SelectorConfig(
    name="PlayPauseButton",
    selectors=("button[data-testid='bom-scrub-play-pause']", "button[aria-label*='Play'], button[aria-label*='Pause']"),
)
PLAY_PAUSE_LABEL = SelectorConfig(name="PlayPauseLabel", selectors=("span",))
FRAME_SEGMENT = SelectorConfig(name="FrameSegment", selectors=("[data-testid='bom-scrub-segment'][data-id='0']",))
STEP_FORWARD_BUTTON = SelectorConfig(
    name="StepForwardButton",
    selectors=("button[data-testid='bom-scrub-step-forward']", "button[aria-label*='Step forward']"),
)
TIME_DISPLAY_LABEL = SelectorConfig(
    name="TimeDisplayLabel",
    selectors=("[data-testid='bom-scrub-time-label']", ".bom-scrub__time"),
    required=False,
)
WEATHER_METADATA = SelectorConfig(
    name="WeatherMetadata",
    selectors=("section[data-testid='weatherMetadata'], section[aria-label='Last updated']",),
    required=False,
)

PLAY_LABEL = "Play"
PAUSE_LABEL = "Pause"

RESULTS_COUNT_PATTERN = re.compile(r"(\d+)\s+of\s+(\d+)", re.IGNORECASE)


class Scripts:
    """JavaScript evaluated in the page."""

    WAIT_FOR_SEARCH_RESULTS = """() => {
        const results = Array.from(document.querySelectorAll('li.bom-linklist__item[role="listitem"]'));
        return results.length > 0 && results.some(r => r.offsetParent !== null);
    }"""

    EXTRACT_SEARCH_RESULTS = """() => {
        const list = document.querySelector('ul[aria-labelledby="location-results-title"]');
        if (!list) return [];
        return Array.from(list.querySelectorAll('li.bom-linklist__item[role="listitem"]')).map((r) => {
            const nameEl = r.querySelector('[data-testid="location-name"]');
            const descEl = r.querySelector('.bom-linklist-item__desc');
            const name = nameEl ? (nameEl.textContent || '').trim() : '';
            const desc = descEl ? (descEl.textContent || '').trim() : '';
            return [name, desc, (r.textContent || '').trim()];
        });
    }"""

    EXTRACT_SEARCH_RESULTS_FALLBACK = """() => Array.from(
        document.querySelectorAll('li.bom-linklist__item[role="listitem"]')
    ).map(r => r.textContent || '')"""

    WAIT_FOR_MAP_CANVAS = """() => {
        const canvas = document.querySelector('.esri-view-surface canvas');
        return canvas && canvas.width > 0 && canvas.height > 0 && canvas.offsetWidth > 0 && canvas.offsetHeight > 0;
    }"""

    WAIT_FOR_ESRI_VIEW = """() => {
        try {
            for (const el of document.querySelectorAll('.esri-view')) {
                if (el.__view && el.__view.ready) return true;
            }
        } catch (e) {}
        return false;
    }"""

    WAIT_FOR_MAP_CONTAINER = """() => {
        const container = document.querySelector('.esri-view-surface');
        return container && container.offsetWidth > 0 && container.offsetHeight > 0;
    }"""

    CLICK_FIRST_SEGMENT = """() => {
        const segment = document.querySelector('[data-testid="bom-scrub-segment"][data-id="0"]');
        if (segment) { segment.click(); return true; }
        return false;
    }"""

    CHECK_ACTIVE_FRAME_SEGMENT = """() => {
        const segments = Array.from(document.querySelectorAll('[data-testid="bom-scrub-segment"]'));
        const active = segments.find(s => window.getComputedStyle(s).backgroundColor !== 'rgb(148, 148, 148)');
        return !!active && active.getAttribute('data-id') === '0';
    }"""

    COUNT_FRAME_SEGMENTS = """() => document.querySelectorAll('[data-testid="bom-scrub-segment"]').length"""

    CHECK_MODAL_OVERLAY = """() => {
        const overlay = document.querySelector('.bom-modal-overlay--after-open');
        if (overlay && overlay.style.display !== 'none') return true;
        for (const selector of ['.g-recaptcha', '#g-recaptcha', '.rc-anchor-container']) {
            const el = document.querySelector(selector);
            if (el) {
                const style = window.getComputedStyle(el);
                const rect = el.getBoundingClientRect();
                if (style.display !== 'none' && style.visibility !== 'hidden' && rect.width > 200 && rect.height > 200) {
                    return true;
                }
            }
        }
        for (const form of document.querySelectorAll('form')) {
            const action = form.getAttribute('action') || '';
            const id = form.getAttribute('id') || '';
            if (action.includes('feedback') || id.includes('feedback')) {
                const rect = form.getBoundingClientRect();
                if (window.getComputedStyle(form).display !== 'none' && rect.width > 200 && rect.height > 200) {
                    return true;
                }
            }
        }
        return false;
    }"""

    GET_VIEWPORT_SIZE = """() => ({ width: window.innerWidth, height: window.innerHeight })"""

    EXTRACT_WEATHER_METADATA = """() => {
        const section = document.querySelector('section[data-testid="weatherMetadata"]') ||
                        document.querySelector('section[aria-label="Last updated"]');
        if (!section) return null;
        return Array.from(section.querySelectorAll('div'))
            .map(div => div.textContent.trim())
            .filter(text => text)
            .join(' ');
    }"""


# Australian states and territories: abbreviation -> full name
AUSTRALIAN_STATES = {
    "nsw": "new south wales",
    "vic": "victoria",
    "qld": "queensland",
    "sa": "south australia",
    "wa": "western australia",
    "tas": "tasmania",
    "nt": "northern territory",
    "act": "australian capital territory",
}


def is_known_state(state: str) -> bool:
    """Whether state is an Australian state abbreviation or full name."""
    value = state.strip().lower()
    return value in AUSTRALIAN_STATES or value in AUSTRALIAN_STATES.values()


def matches_state(text: str, state: str) -> bool:
    """Whether text mentions the given state by abbreviation or full name.

    Abbreviations must match as whole words so "sa" does not match "usa".
    """
    text = text.lower()
    state = state.strip().lower()
    if not state:
        return False

    abbreviation = state
    full_name = AUSTRALIAN_STATES.get(state)
    if full_name is None:
        for abbr, name in AUSTRALIAN_STATES.items():
            if name == state:
                abbreviation, full_name = abbr, name
                break

    if re.search(rf"\b{re.escape(abbreviation)}\b", text):
        return True
    return bool(full_name and full_name in text)


def score_suburb_match(name: str, full_text: str, suburb: str) -> int:
    """Score how well a search result matches the suburb (0 = no match).

    Named results score 100 exact, 80 prefix, 60 parenthesised, 40 contains;
    results without a name score 20 when the full text mentions the suburb.
    """
    suburb = suburb.strip().lower()
    name = name.strip().lower()
    if name:
        if name == suburb:
            return 100
        if name.startswith(suburb + " ") or name.startswith(suburb + "("):
            return 80
        if f"({suburb})" in name or f"({suburb} " in name:
            return 60
        if suburb in name:
            return 40
        return 0
    return 20 if suburb in full_text.lower() else 0


def select_best_result(
    results: list[tuple[str, str, str]],
    suburb: str,
    state: str,
) -> Optional[int]:
    """Index of the highest-scoring result that also matches the state.

    Returns:
        Index into results, or None when nothing matches both suburb and
        state (callers then fall back to the first result)
    """
    best_index = None
    best_score = 0
    for i, (name, desc, full_text) in enumerate(results):
        score = score_suburb_match(name, full_text, suburb)
        state_ok = (bool(desc) and matches_state(desc, state)) or matches_state(full_text, state)
        logger.debug(f"Result {i}: name={name!r} desc={desc!r} score={score} state_match={state_ok}")
        if score > best_score and state_ok:
            best_index, best_score = i, score
    return best_index


async def find_element(page, config: SelectorConfig):
    """First visible element matching any of config's selectors, or None."""
    for selector in config.selectors:
        try:
            locator = page.locator(selector).first
            if await locator.is_visible():
                logger.info(f"Found {config.name} with selector: {selector}")
                return locator
        except Exception as e:
            logger.debug(f"Selector {selector} not usable for {config.name}: {e}")

    if config.required:
        logger.warning(config.error_message or f"Required element {config.name} not found with any selector")
    else:
        logger.debug(f"Optional element {config.name} not found with any selector")
    return None


def get_locator(page, config: SelectorConfig):
    """Locator for config's primary selector."""
    if not config.selectors:
        raise ValueError(f"No selectors configured for {config.name}")
    return page.locator(config.selectors[0]).first
