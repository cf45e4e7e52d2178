"""Background event loop shared by the HTTP surface and the scheduler."""

import asyncio
import threading
from collections.abc import Coroutine
from concurrent.futures import Future
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class LoopThread:
    """Runs an asyncio event loop in a daemon thread.

    Synchronous callers (Flask handlers, ``main``) block on ``run`` or hand off
    fire-and-forget work with ``submit``.
    """

    def __init__(self, name: str = "trendscan-loop") -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> "LoopThread":
        self._thread.start()
        logger.debug("Event loop thread started", thread=self._thread.name)
        return self

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run a coroutine on the loop and block for its result.

        Raises:
            TimeoutError: If ``timeout`` elapses first
            Exception: Whatever the coroutine raised
        """
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def submit(self, coro: Coroutine[Any, Any, Any], name: str = "background") -> Future:
        """Schedule a coroutine without waiting; failures are logged."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)

        def _log_outcome(done: Future) -> None:
            if done.cancelled():
                logger.warning("Background task cancelled", task=name)
                return
            error = done.exception()
            if error is not None:
                logger.error(
                    "Background task failed",
                    task=name,
                    error=str(error),
                    error_type=type(error).__name__,
                )
            else:
                logger.info("Background task finished", task=name)

        future.add_done_callback(_log_outcome)
        logger.info("Background task started", task=name)
        return future

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop and join its thread."""
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=timeout)
        if not self._thread.is_alive():
            self.loop.close()
        logger.debug("Event loop thread stopped", thread=self._thread.name)
