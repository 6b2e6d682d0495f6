"""
Bounded fetch pool.

A fixed number of asyncio workers pull fetch units from one queue, so every
window computation in the process shares the same concurrency ceiling.
Batches wait for all of their units to settle; a failed unit is reported in
`FetchBatch.failures` and never aborts the rest of the batch. Cancelling the
coroutine awaiting a batch cancels its queued and in-flight units.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from config import FETCH_WORKERS

logger = logging.getLogger("collector.pool")

MIN_WORKERS = 1


@dataclass
class FetchBatch:
    """Settled results of one batch."""
    results: Dict[Hashable, Any] = field(default_factory=dict)
    failures: Dict[Hashable, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


_Job = Tuple[Callable[[], Awaitable[Any]], "asyncio.Future[Any]"]


class FetchPool:
    """Queue-fed worker pool with a fixed concurrency ceiling."""

    def __init__(self, workers: int = FETCH_WORKERS):
        self.size = max(MIN_WORKERS, int(workers))
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.active = 0
        self.peak_active = 0

    def _ensure_started(self):
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            # First use, or the previous loop is gone (e.g. a new asyncio.run)
            self._queue = asyncio.Queue()
            self._workers = [
                loop.create_task(self._worker(i), name=f"fetch-worker-{i}")
                for i in range(self.size)
            ]
            self._loop = loop

    async def _worker(self, index: int):
        assert self._queue is not None
        while True:
            call, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue
                await self._run_one(call, future)
            finally:
                self._queue.task_done()

    async def _run_one(self, call: Callable[[], Awaitable[Any]], future: "asyncio.Future[Any]"):
        task = asyncio.ensure_future(call())
        future.add_done_callback(lambda f: task.cancel() if f.cancelled() else None)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            result = await task
        except asyncio.CancelledError:
            if future.cancelled():
                return
            # Worker itself is shutting down
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self.active -= 1

    async def run_all(
        self,
        units: Iterable[Hashable],
        fetch: Callable[[Hashable], Awaitable[Any]],
    ) -> FetchBatch:
        """
        Run `fetch(unit)` for every unit through the pool and wait for all.

        Returns a FetchBatch with per-unit results and failures.
        """
        self._ensure_started()
        assert self._queue is not None
        loop = asyncio.get_running_loop()

        futures: Dict[Hashable, asyncio.Future] = {}
        for unit in units:
            if unit in futures:
                continue
            future = loop.create_future()
            futures[unit] = future
            self._queue.put_nowait((lambda u=unit: fetch(u), future))

        batch = FetchBatch()
        if not futures:
            return batch

        try:
            await asyncio.wait(list(futures.values()))
        except asyncio.CancelledError:
            for future in futures.values():
                future.cancel()
            raise

        for unit, future in futures.items():
            if future.cancelled():
                batch.failures[unit] = asyncio.CancelledError()
                continue
            exc = future.exception()
            if exc is not None:
                batch.failures[unit] = exc
            else:
                batch.results[unit] = future.result()

        if batch.failures:
            logger.warning(f"{len(batch.failures)}/{len(futures)} fetch unit(s) failed")
        return batch

    async def close(self):
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        self._loop = None
