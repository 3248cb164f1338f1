"""Background refresh and retention cleanup for the radar cache.

The refresh loop keeps every known location fresh. Locations are discovered
from the cache folder names, so a location is managed once it has been
requested at least once:

    1. wait initial_delay_seconds, then pre-warm the browser
    2. trigger_update each location, location_stagger_seconds apart
    3. every check_interval_minutes, rediscover locations and repeat

The cleanup loop deletes cache folders and debug request folders last
written more than retention_hours ago.

Usage:
    python -m radarcache.cache.refresh            # One refresh cycle, wait for updates
    python -m radarcache.cache.refresh --status   # Show cache status
    python -m radarcache.cache.refresh --cleanup  # One retention cleanup pass
    python -m radarcache.cache.refresh --recover  # Remove incomplete folders left by a crash
    python -m radarcache.cache.refresh --serve    # HTTP API plus both background loops
"""

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Awaitable, Callable, Optional

from radarcache.cache.models import Location, utc_now
from radarcache.cache.orchestrator import CacheOrchestrator
from radarcache.cache.storage import DeletionResult
from radarcache.config import Settings, load_settings
from radarcache.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Result of one refresh cycle.

    success counts triggered updates; skipped counts locations whose cache
    was valid or already updating.
    """

    total: int
    success: int
    failed: int
    skipped: int
    duration_ms: int

    @property
    def success_rate(self) -> float:
        """Percentage of locations that needed and got an update."""
        if self.total == 0:
            return 0.0
        return (self.success / self.total) * 100

    def __str__(self) -> str:
        return (
            f"Refresh complete: {self.success}/{self.total} updates triggered, "
            f"{self.failed} failed, {self.skipped} skipped "
            f"({self.duration_ms}ms)"
        )


async def refresh_locations(
    orchestrator: CacheOrchestrator,
    locations: Optional[list[Location]] = None,
    stagger_seconds: float = 0,
) -> RefreshResult:
    """Trigger an update for every location whose cache is stale.

    Args:
        orchestrator: CacheOrchestrator instance
        locations: Locations to check. Defaults to those discovered on disk.
        stagger_seconds: Pause between locations

    Returns:
        RefreshResult with counts of triggered/failed/skipped locations
    """
    if locations is None:
        locations = orchestrator.discover_locations()

    start_time = time.time()
    total = len(locations)
    success = 0
    failed = 0
    skipped = 0

    logger.info(f"Starting cache check for {total} locations...")

    for i, location in enumerate(locations, 1):
        try:
            status = await orchestrator.trigger_update(location)
            if status.update_triggered:
                logger.info(f"[{i}/{total}] {location}: {status.message}")
                success += 1
            elif status.cache_is_valid:
                expires = status.cache_expires_at.strftime("%Y-%m-%d %H:%M:%S UTC")
                logger.info(f"[{i}/{total}] {location}: cache valid (expires {expires})")
                skipped += 1
            else:
                logger.info(f"[{i}/{total}] {location}: {status.message}")
                skipped += 1
        except Exception as e:
            logger.error(f"[{i}/{total}] {location}: failed - {e}")
            failed += 1

        if stagger_seconds and i < total:
            await asyncio.sleep(stagger_seconds)

    duration_ms = int((time.time() - start_time) * 1000)

    result = RefreshResult(
        total=total,
        success=success,
        failed=failed,
        skipped=skipped,
        duration_ms=duration_ms,
    )

    logger.info(str(result))
    return result


class RefreshScheduler:
    """Periodic freshness check over every discovered location."""

    def __init__(
        self,
        orchestrator: CacheOrchestrator,
        settings: Settings,
        warm_up: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """Initialize scheduler.

        Args:
            orchestrator: CacheOrchestrator to trigger updates through
            settings: Loaded settings (refresh section)
            warm_up: Optional coroutine function run once before the first cycle
        """
        self.orchestrator = orchestrator
        self.initial_delay = settings.refresh.initial_delay_seconds
        self.check_interval = timedelta(minutes=settings.refresh.check_interval_minutes)
        self.stagger_seconds = settings.refresh.location_stagger_seconds
        self.warm_up = warm_up
        self.cycles = 0
        self.last_result: Optional[RefreshResult] = None

    async def run_cycle(self) -> RefreshResult:
        """Rediscover locations and trigger updates where needed."""
        result = await refresh_locations(self.orchestrator, stagger_seconds=self.stagger_seconds)
        self.cycles += 1
        self.last_result = result
        return result

    async def prewarm(self) -> None:
        if self.warm_up is None:
            return
        logger.info("Pre-warming browser before cache updates")
        try:
            await self.warm_up()
        except Exception as e:
            logger.warning(f"Failed to pre-warm browser, continuing anyway: {e}")

    async def run(self) -> None:
        """Run until cancelled."""
        logger.info(f"Cache refresh loop started. Check interval: {self.check_interval}")
        await asyncio.sleep(self.initial_delay)
        await self.prewarm()

        while True:
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Error during cache refresh cycle: {e}", exc_info=True)
            await asyncio.sleep(self.check_interval.total_seconds())


class CleanupScheduler:
    """Periodic deletion of cache and debug folders past the retention window."""

    def __init__(self, orchestrator: CacheOrchestrator, settings: Settings):
        self.orchestrator = orchestrator
        self.retention = timedelta(hours=settings.cleanup.retention_hours)
        self.interval = timedelta(hours=settings.cleanup.interval_hours)

    def run_once(self) -> tuple[DeletionResult, DeletionResult]:
        """Delete folders last written before now - retention.

        Folders with an update in flight are never deleted.

        Returns:
            Tuple of (cache folder result, debug folder result)
        """
        cutoff = utc_now() - self.retention
        store = self.orchestrator.store

        cache_result = store.delete_older_than(cutoff, exclude=self.orchestrator.registry.folders())
        if cache_result.deleted > 0:
            logger.info(
                f"Cache cleanup completed. Deleted {cache_result.deleted} folders "
                f"({cache_result.megabytes_freed:.2f} MB)"
            )
        if cache_result.failed > 0:
            logger.warning(f"Cache cleanup could not delete {cache_result.failed} folders")

        debug_result = store.delete_debug_older_than(cutoff)
        if debug_result.deleted > 0:
            logger.info(f"Deleted {debug_result.deleted} old debug folders")

        return cache_result, debug_result

    async def run(self) -> None:
        """Run until cancelled, cleaning once immediately."""
        logger.info(
            f"Cache cleanup loop started. Retention: {self.retention}, "
            f"Interval: {self.interval}"
        )
        while True:
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Error during cache cleanup: {e}", exc_info=True)
            await asyncio.sleep(self.interval.total_seconds())


def get_cache_status(orchestrator: CacheOrchestrator) -> dict:
    """Get current cache status.

    Args:
        orchestrator: CacheOrchestrator over the cache directory

    Returns:
        Dict with cache statistics and per-location status
    """
    location_status = []

    for location in orchestrator.discover_locations():
        status = orchestrator.get_cache_status(location)
        cache_range = orchestrator.get_cache_range(location)
        metadata = orchestrator.get_metadata(location)

        location_status.append({
            "name": str(location),
            "suburb": location.suburb,
            "state": location.state,
            "cache_exists": status.cache_exists,
            "cache_is_valid": status.cache_is_valid,
            "is_updating": orchestrator.is_updating(location),
            "folder_count": cache_range.total_count,
            "observation_time": metadata.observation_time if metadata else None,
            "expires_at": status.cache_expires_at,
        })

    return {
        "cache_dir": str(orchestrator.store.directory),
        "expiration_minutes": orchestrator.settings.cache.expiration_minutes,
        "total_locations": len(location_status),
        "valid_count": sum(1 for s in location_status if s["cache_is_valid"]),
        "folder_count": sum(s["folder_count"] for s in location_status),
        "step_metrics": orchestrator.metrics.get_step_metrics(),
        "locations": location_status,
    }


def print_status(status: dict) -> None:
    """Print cache status in human-readable format."""
    print()
    print("=" * 60)
    print("Radar Cache Status")
    print("=" * 60)
    print(f"Cache directory: {status['cache_dir']}")
    print(f"Expiration: {status['expiration_minutes']} minutes")
    print(f"Locations: {status['total_locations']}")
    print()
    print(f"Valid caches: {status['valid_count']}/{status['total_locations']}")
    print(f"Complete folders: {status['folder_count']}")

    print()
    print("Location Status:")
    print("-" * 60)

    for location in status["locations"]:
        if location["is_updating"]:
            state = "UPDATING"
        elif location["cache_is_valid"]:
            state = "OK"
        elif location["cache_exists"]:
            state = "STALE"
        else:
            state = "MISSING"
        observed = (
            location["observation_time"].strftime("%Y-%m-%d %H:%M UTC")
            if location["observation_time"] else "N/A"
        )

        print(f"  {location['name']:<30} {state:<9} folders:{location['folder_count']:<3} observed {observed}")

    print("=" * 60)


def main():
    """CLI entry point for cache refresh and maintenance."""
    parser = argparse.ArgumentParser(
        description="Refresh and maintain the radar image cache",
        epilog="""
Examples:
  python -m radarcache.cache.refresh            # One refresh cycle
  python -m radarcache.cache.refresh --status   # Show status
  python -m radarcache.cache.refresh --serve    # API + background loops

Configuration is read from --config, $RADARCACHE_CONFIG, ./radarcache.toml
or ~/.config/radarcache/config.toml, with RADARCACHE__SECTION__FIELD
environment overrides.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (TOML)",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show current cache status",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Run one retention cleanup pass",
    )
    parser.add_argument(
        "--recover",
        action="store_true",
        help="Delete incomplete cache folders left by a crash",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP API with the refresh and cleanup loops",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Bind address for --serve (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for --serve (default: 8080)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress output except errors",
    )

    args = parser.parse_args()

    # Configure logging
    if args.quiet:
        level = logging.ERROR
    elif args.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    from radarcache.service import RadarCacheService, serve

    if args.serve:
        serve(settings, host=args.host, port=args.port, log_level=logging.getLevelName(level).lower())
        return 0

    service = RadarCacheService(settings)

    if args.status:
        print_status(get_cache_status(service.orchestrator))
        return 0

    if args.recover:
        deleted = service.orchestrator.cleanup_incomplete_on_startup()
        print(f"Removed {deleted} incomplete cache folder(s)")
        return 0

    if args.cleanup:
        cache_result, debug_result = service.cleanup.run_once()
        print(f"Cache folders: {cache_result}")
        print(f"Debug folders: {debug_result}")
        return 1 if cache_result.failed or debug_result.failed else 0

    result = asyncio.run(service.refresh_once())
    return 1 if result.failed > 0 else 0


if __name__ == "__main__":
    sys.exit(main())
