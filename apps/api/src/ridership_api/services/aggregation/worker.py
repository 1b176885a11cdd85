"""Background worker that runs the periodic analytics job on an interval."""

from __future__ import annotations

import asyncio
import uuid
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Optional

from ridership_api.config import get_settings
from ridership_api.logging import bind_request_context, clear_request_context, get_logger
from ridership_api.services.aggregation.periodic import PeriodicAnalyticsJob

logger = get_logger(__name__)


class AnalyticsWorker:
    """Runs PeriodicAnalyticsJob on a schedule.

    Usage:
        worker = AnalyticsWorker()
        await worker.start()   # launches background task
        await worker.stop()    # cancels background task

        # Or run a single pass:
        report = await worker.run_once()
    """

    def __init__(self, job: Optional[PeriodicAnalyticsJob] = None) -> None:
        settings = get_settings()
        self._interval = settings.analytics_interval_sec
        self._job = job or PeriodicAnalyticsJob()

        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._run_count = 0
        self._last_run_at: datetime | None = None
        self._last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def run_count(self) -> int:
        return self._run_count

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            logger.warning("Analytics worker already running, ignoring start request")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Analytics worker started", interval_sec=self._interval)

    async def stop(self) -> None:
        """Stop the background loop."""
        if not self._running:
            return

        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Analytics worker stopped")

    async def run_once(self) -> dict[str, Any]:
        """Execute a single analytics pass and return its report."""
        run_tag = str(uuid.uuid4())[:8]
        self._run_count += 1
        self._last_run_at = datetime.now(timezone.utc)

        bind_request_context(analytics_run=run_tag)
        try:
            report = await self._job.run()
        except Exception as exc:
            self._last_error = str(exc)
            raise
        finally:
            clear_request_context()

        self._last_error = None
        return report

    async def get_status(self) -> dict[str, Any]:
        """Get current worker status for health/meta endpoints."""
        return {
            "running": self._running,
            "run_count": self._run_count,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_error": self._last_error,
            "interval_sec": self._interval,
        }

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Analytics pass failed unexpectedly", exc_info=exc)

            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break


# Singleton instance for the app lifecycle
_worker_instance: AnalyticsWorker | None = None


def get_worker() -> AnalyticsWorker:
    """Get or create the singleton worker instance."""
    global _worker_instance
    if _worker_instance is None:
        _worker_instance = AnalyticsWorker()
    return _worker_instance


def reset_worker() -> None:
    """Reset the singleton (for testing)."""
    global _worker_instance
    _worker_instance = None
