"""Per-request debug artefacts: screenshots, HTML and browser logs for each step.

Layout when debug capture is enabled:

    {cache_dir}/debug/{yyyyMMdd_HHmmss}_{uuidhex}/
        step_01_homepage_loaded/
            screenshot.png
            page.html
            console.log
            network.log
        ...
        error/
            error.txt
            screenshot.png
            page.html

Capturing artefacts never fails an acquisition; problems are logged.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from radarcache.cache.models import utc_now

logger = logging.getLogger(__name__)

NETWORK_IDLE_TIMEOUT_MS = 10000


@dataclass
class BrowserLog:
    """Console messages and network requests observed on a page."""

    console: list[tuple[datetime, str, str]] = field(default_factory=list)
    network: list[dict] = field(default_factory=list)

    def attach(self, page) -> None:
        """Subscribe to the page's console and network events."""
        page.on("console", lambda msg: self.console.append((utc_now(), msg.type, msg.text)))
        page.on("request", self._on_request)
        page.on("response", self._on_response)
        page.on("requestfailed", self._on_request_failed)

    def _on_request(self, request) -> None:
        self.network.append({
            "timestamp": utc_now(),
            "method": request.method,
            "url": request.url,
            "status": None,
            "resource_type": request.resource_type,
        })

    def _on_response(self, response) -> None:
        for entry in reversed(self.network):
            if entry["url"] == response.url and entry["status"] is None:
                entry["status"] = response.status
                return

    def _on_request_failed(self, request) -> None:
        self.console.append((utc_now(), "error", f"Request failed: {request.method} {request.url} - {request.failure}"))

    def console_text(self) -> str:
        return "\n".join(f"[{ts:%H:%M:%S.%f}] [{kind}] {text}" for ts, kind, text in list(self.console))

    def network_text(self) -> str:
        return "\n".join(
            f"[{e['timestamp']:%H:%M:%S.%f}] {e['method']} {e['url']} -> "
            f"{e['status'] if e['status'] is not None else 'pending'} ({e['resource_type']})"
            for e in list(self.network)
        )


class DebugRecorder:
    """Writes numbered step folders below one request folder."""

    def __init__(self, folder: Path, wait_ms: int = 1000, log: Optional[BrowserLog] = None):
        """Initialize recorder.

        Args:
            folder: Request folder (created by the orchestrator)
            wait_ms: Settle time before each capture
            log: Browser log to dump alongside each capture
        """
        self.folder = Path(folder)
        self.wait_ms = wait_ms
        self.log = log or BrowserLog()
        self._step_number = 0

    async def _write_page(self, target: Path, page) -> None:
        await page.screenshot(path=str(target / "screenshot.png"), full_page=True)
        (target / "page.html").write_text(await page.content(), encoding="utf-8")

    def _write_logs(self, target: Path) -> None:
        if self.log.console:
            (target / "console.log").write_text(self.log.console_text(), encoding="utf-8")
        if self.log.network:
            (target / "network.log").write_text(self.log.network_text(), encoding="utf-8")

    async def save_step(self, page, label: str) -> Optional[Path]:
        """Capture the page after a step."""
        self._step_number += 1
        target = self.folder / f"step_{self._step_number:02d}_{label}"
        try:
            try:
                await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_TIMEOUT_MS)
            except Exception:
                logger.debug(f"Network did not go idle before debug capture {label}")
            await page.wait_for_timeout(self.wait_ms)
            target.mkdir(parents=True, exist_ok=True)
            await self._write_page(target, page)
            self._write_logs(target)
            logger.debug(f"Saved debug files for step {self._step_number} ({label}) to {target}")
            return target
        except Exception as e:
            logger.warning(f"Failed to save debug files for step {self._step_number} ({label}): {e}")
            return None

    async def save_error(self, page, message: str) -> Optional[Path]:
        """Record an error message and, when possible, the page state."""
        target = self.folder / "error"
        try:
            target.mkdir(parents=True, exist_ok=True)
            (target / "error.txt").write_text(message, encoding="utf-8")
            if page is not None:
                await self._write_page(target, page)
            self._write_logs(target)
            logger.debug(f"Saved error debug files to {target}")
            return target
        except Exception as e:
            logger.warning(f"Failed to save error debug files: {e}")
            return None
