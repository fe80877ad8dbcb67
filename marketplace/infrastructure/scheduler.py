"""In-process periodic job scheduler.

Runs async jobs on fixed intervals inside the FastAPI event loop. Used for
the auto-approve sweep; a deployment with several replicas can leave it on
everywhere because the sweep claims rows with SKIP LOCKED.
"""

import asyncio
from typing import Any, Callable, Coroutine

from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)

Job = Callable[[], Coroutine[Any, Any, Any]]


class PeriodicScheduler:
    """Lightweight periodic job scheduler using asyncio."""

    def __init__(self) -> None:
        self._jobs: list[tuple[str, float, Job]] = []
        self._running = False
        self._handles: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def job_names(self) -> list[str]:
        return [name for name, _, _ in self._jobs]

    def register(self, name: str, interval_seconds: float, func: Job) -> None:
        """Register a periodic job.

        Args:
            name: Job name used in log events.
            interval_seconds: Seconds between the end of one run and the next.
            func: Async callable taking no arguments.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._jobs.append((name, interval_seconds, func))

    async def start(self) -> None:
        """Start every registered job."""
        if self._running:
            return
        self._running = True
        for name, interval, func in self._jobs:
            handle = asyncio.create_task(self._run_periodic(name, interval, func))
            self._handles.append(handle)
        logger.info("scheduler_started", job_count=len(self._jobs))

    async def stop(self) -> None:
        """Cancel every job and wait for them to unwind."""
        self._running = False
        for handle in self._handles:
            handle.cancel()
        await asyncio.gather(*self._handles, return_exceptions=True)
        self._handles.clear()
        logger.info("scheduler_stopped")

    async def _run_periodic(self, name: str, interval: float, func: Job) -> None:
        while self._running:
            try:
                await func()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("periodic_job_error", job=name, error=str(e))
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
