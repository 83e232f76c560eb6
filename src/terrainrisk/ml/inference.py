"""Off-loop execution of fire-risk analyses.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> analysis

The request coroutine hands the blocking analysis to a worker thread and
awaits its result back on the event loop. Requests that cannot get a slot
within the queue timeout raise TimeoutError (mapped to 503 by the API).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from terrainrisk.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Bounds concurrent analyses and runs them on a dedicated thread pool."""

    def __init__(self, settings: Settings) -> None:
        self._queue_timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="fire-risk-analysis",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on the pool and return its result.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
        """
        with self._tracking("_queue_depth"):
            try:
                await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
            except TimeoutError:
                logger.warning("No analysis slot free after %.1fs", self._queue_timeout)
                raise

        try:
            with self._tracking("_active_count"):
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()

    @property
    def active_count(self) -> int:
        """Number of analyses currently running."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Wait for running analyses and stop the worker threads."""
        self._executor.shutdown(wait=True)

    @contextmanager
    def _tracking(self, counter: str) -> Iterator[None]:
        with self._counter_lock:
            setattr(self, counter, getattr(self, counter) + 1)
        try:
            yield
        finally:
            with self._counter_lock:
                setattr(self, counter, getattr(self, counter) - 1)
