"""Live smoke test for the browser acquisition workflow.

Drives a real headless Chromium against the BOM site. Slow and requires
network access plus installed Playwright browsers. Skipped by default.

Run with: pytest tests/live/ -v --run-live

Why this test exists:
- Unit tests use fake pages and don't catch markup changes on the site
- A renamed data-testid or moved search button breaks acquisition silently
"""

import asyncio

import pytest

from radarcache.cache.models import Location
from radarcache.cache.orchestrator import CacheOrchestrator

# All tests in this file are live tests
pytestmark = pytest.mark.live


class TestBrowserAcquisitionLive:
    """End-to-end acquisition for one well-known location."""

    def test_acquire_pomona(self, settings_factory):
        """A full update writes a complete folder with every frame."""
        from radarcache.scraping.browser import BrowserAcquirer

        settings = settings_factory(debug={"enabled": True})
        acquirer = BrowserAcquirer(settings)
        location = Location("Pomona", "QLD")

        async def scenario():
            orchestrator = CacheOrchestrator(settings, acquirer)
            try:
                status = await orchestrator.trigger_update(location)
                await orchestrator.wait_for_updates()
                return orchestrator, status
            finally:
                await acquirer.close()

        orchestrator, status = asyncio.run(scenario())

        assert status.update_triggered
        snapshot = orchestrator.get_cached_radar(location)
        assert snapshot is not None, "Acquisition should produce a complete folder"
        assert len(snapshot.frames) == settings.radar.frame_count
        assert all(frame.image_path.stat().st_size > 1000 for frame in snapshot.frames)
        assert snapshot.metadata.observation_time is not None
