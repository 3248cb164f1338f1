"""Tests for service wiring and lifecycle."""

import asyncio
from datetime import timedelta

from radarcache.cache.models import Location, utc_now
from radarcache.service import RadarCacheService


class TestRadarCacheService:
    """Tests for start, stop and one-shot refresh."""

    def test_start_recovers_and_runs_loops(self, settings, acquirer_factory, location, cache_folder):
        """Startup removes incomplete folders, then both loops run until stopped."""
        partial = cache_folder(location, utc_now() - timedelta(hours=1), complete=False)
        service = RadarCacheService(settings, acquirer=acquirer_factory())

        async def scenario():
            await service.start()
            running = service.is_running
            await service.stop()
            return running

        assert asyncio.run(scenario())
        assert not partial.exists()
        assert not service.is_running
        assert service.acquirer.closed

    def test_start_without_background(self, settings, acquirer_factory):
        """Loops can be left off, e.g. for tests and one-shot commands."""
        service = RadarCacheService(settings, acquirer=acquirer_factory())

        async def scenario():
            await service.start(background=False)
            return service.is_running

        assert asyncio.run(scenario()) is False

    def test_refresh_once(self, settings, acquirer_factory, cache_folder):
        """One cycle updates stale locations, waits for them and closes the acquirer."""
        cache_folder(Location("Pomona", "QLD"), utc_now() - timedelta(hours=2))
        acquirer = acquirer_factory()
        service = RadarCacheService(settings, acquirer=acquirer)

        result = asyncio.run(service.refresh_once())

        assert result.success == 1
        assert acquirer.warmed_up
        assert acquirer.closed
        assert service.orchestrator.get_cache_status(Location("Pomona", "QLD")).cache_is_valid

    def test_refresh_once_leaves_incomplete_folders(self, settings, acquirer_factory, cache_folder):
        """A one-shot refresh does not run crash recovery over another process's writes."""
        in_progress = cache_folder(Location("Noosa", "QLD"), utc_now() - timedelta(minutes=1), complete=False)
        service = RadarCacheService(settings, acquirer=acquirer_factory())

        asyncio.run(service.refresh_once())

        assert in_progress.exists()

    def test_refresh_once_failed_update(self, settings, acquirer_factory, location, cache_folder):
        """A failed acquisition leaves the previous folder as the newest complete one."""
        existing = cache_folder(location, utc_now() - timedelta(hours=2))
        service = RadarCacheService(settings, acquirer=acquirer_factory(fail=True))

        asyncio.run(service.refresh_once())

        folders = service.orchestrator.get_all_folders(location)
        assert [f.path for f in folders] == [existing]
