"""Recurring refresh of the token cache."""

import asyncio
import time
from typing import Protocol

import structlog

from ..core.types import BatchResult

logger = structlog.get_logger(__name__)


class Refresher(Protocol):
    """Operations driven by the refresh timer."""

    async def add_new_tokens(
        self,
        days: float = 1,
        max_new_tokens: int = 500,
        stop_event: asyncio.Event | None = None,
    ) -> BatchResult: ...

    async def update_all_scores(
        self, concurrency: int = 10, stop_event: asyncio.Event | None = None
    ) -> BatchResult: ...


class RefreshScheduler:
    """Timer that adds new tokens then re-scores the whole cache.

    Owns a cancellation token: ``stop()`` ends the timer wait and lets a
    running batch finish its current chunk before returning.
    """

    def __init__(
        self,
        refresher: Refresher,
        interval_seconds: float = 3600,
        new_token_days: float = 1,
        max_new_tokens: int = 300,
        concurrency: int = 10,
        run_on_start: bool = False,
    ) -> None:
        self.refresher = refresher
        self.interval_seconds = interval_seconds
        self.new_token_days = new_token_days
        self.max_new_tokens = max_new_tokens
        self.concurrency = concurrency
        self.run_on_start = run_on_start

        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """Run both refresh phases; a failing phase is logged and skipped."""
        started = time.monotonic()
        logger.info("Refresh started", run=self.runs + 1)

        try:
            added = await self.refresher.add_new_tokens(
                days=self.new_token_days,
                max_new_tokens=self.max_new_tokens,
                stop_event=self._stop_event,
            )
            logger.info("Refresh phase 1 complete", added=added.updated, failed=added.failed)
        except Exception as e:
            logger.error("Refresh phase 1 failed", error=str(e), error_type=type(e).__name__)

        if self._stop_event.is_set():
            logger.info("Refresh stopped before phase 2")
        else:
            try:
                rescored = await self.refresher.update_all_scores(
                    concurrency=self.concurrency, stop_event=self._stop_event
                )
                logger.info(
                    "Refresh phase 2 complete",
                    updated=rescored.updated,
                    failed=rescored.failed,
                )
            except Exception as e:
                logger.error("Refresh phase 2 failed", error=str(e), error_type=type(e).__name__)

        self.runs += 1
        logger.info(
            "Refresh finished",
            run=self.runs,
            duration_minutes=round((time.monotonic() - started) / 60, 2),
        )

    async def _run_forever(self) -> None:
        if self.run_on_start:
            await self.run_once()

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.run_once()

    async def start(self) -> None:
        """Start the timer on the current event loop."""
        if self.running:
            logger.warning("Refresh scheduler already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_forever())
        logger.info(
            "Refresh scheduler started",
            interval_seconds=self.interval_seconds,
            run_on_start=self.run_on_start,
        )

    async def stop(self) -> None:
        """Signal cancellation and wait for the in-flight chunk to settle."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Refresh scheduler stopped", runs=self.runs)
