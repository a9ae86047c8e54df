"""
Fetch Dispatcher.

Every upstream fetch goes through one `Dispatcher`. It bounds how hard the
service leans on the upstream API:

- at most `concurrency` jobs run at once;
- at most `interval_cap` jobs start within any sliding `interval` seconds;
- once more than `max_backlog` jobs are waiting to start, new work is refused
  with `OverloadedError`.

Jobs are keyed by canonical account name. Submitting a key that already has a
job queued or running returns that job's future instead of starting a second
fetch, so concurrent requests for one profile share a single upstream call.

A job runs to completion regardless of whether anyone is still waiting on its
future; callers race the future against their own timeout with
`asyncio.shield`.
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Set

from core.exceptions import OverloadedError
from core.logging_config import get_logger

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class Dispatcher:
    """Bounded, rate-limited, coalescing job runner"""

    def __init__(
        self,
        concurrency: int = 2,
        interval: float = 1.0,
        interval_cap: int = 2,
        max_backlog: int = 1,
    ):
        self.concurrency = concurrency
        self.interval = interval
        self.interval_cap = interval_cap
        self.max_backlog = max_backlog

        self._semaphore = asyncio.Semaphore(concurrency)
        self._window_lock = asyncio.Lock()
        self._starts: Deque[float] = deque()
        self._inflight: Dict[str, asyncio.Future] = {}
        self._tasks: Set[asyncio.Task] = set()

        self.waiting = 0
        self.admitted = 0
        self.active = 0
        self.completed = 0
        self.failed = 0
        self.rejected = 0
        self.coalesced = 0

    def submit(self, key: str, factory: JobFactory) -> asyncio.Future:
        """
        Schedule `factory()` under `key` and return a future for its result.

        Raises OverloadedError when the backlog is over the admission limit and
        no job for `key` exists yet.
        """
        existing = self._inflight.get(key)
        if existing is not None:
            self.coalesced += 1
            logger.debug(f"Attached to in-flight fetch for key: {key}")
            return existing

        if self.waiting > self.max_backlog:
            self.rejected += 1
            logger.warning(
                f"Fetch queue is too large, rejecting key: {key}",
                extra={"waiting": self.waiting, "active": self.active},
            )
            raise OverloadedError(self.waiting, self.max_backlog)

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        future.add_done_callback(self._consume_exception)
        self._inflight[key] = future
        self.waiting += 1
        self.admitted += 1

        task = loop.create_task(self._run(key, factory, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.debug(
            f"Queued fetch for key: {key}",
            extra={"waiting": self.waiting, "active": self.active},
        )
        return future

    async def _run(self, key: str, factory: JobFactory, future: asyncio.Future):
        started = False
        try:
            async with self._semaphore:
                await self._wait_for_window()
                self.waiting -= 1
                self.active += 1
                started = True
                try:
                    result = await factory()
                finally:
                    self.active -= 1
        except Exception as e:
            self.failed += 1
            logger.error(f"Fetch job failed for key: {key}: {e}", exc_info=e)
            future.set_exception(e)
        else:
            self.completed += 1
            future.set_result(result)
        finally:
            if not started:
                self.waiting -= 1
            self._finish(key)
            if not future.done():
                # Cancelled job; waiters must not hang on it
                self.failed += 1
                logger.warning(f"Fetch job cancelled for key: {key}")
                future.set_exception(RuntimeError(f"Fetch job for {key} was cancelled"))

    async def _wait_for_window(self) -> None:
        loop = asyncio.get_running_loop()
        async with self._window_lock:
            while True:
                now = loop.time()
                while self._starts and now - self._starts[0] >= self.interval:
                    self._starts.popleft()
                if len(self._starts) < self.interval_cap:
                    self._starts.append(now)
                    return
                await asyncio.sleep(self.interval - (now - self._starts[0]))

    def _finish(self, key: str) -> None:
        # Later submissions for this key must start a fresh job
        self._inflight.pop(key, None)

    @staticmethod
    def _consume_exception(future: asyncio.Future) -> None:
        # Failures are logged in _run; abandoned futures must not warn again on GC
        if not future.cancelled():
            future.exception()

    def is_inflight(self, key: str) -> bool:
        return key in self._inflight

    def stats(self) -> Dict[str, Any]:
        return {
            "concurrency": self.concurrency,
            "interval_seconds": self.interval,
            "interval_cap": self.interval_cap,
            "max_backlog": self.max_backlog,
            "waiting": self.waiting,
            "active": self.active,
            "inflight_keys": len(self._inflight),
            "admitted": self.admitted,
            "completed": self.completed,
            "failed": self.failed,
            "rejected": self.rejected,
            "coalesced": self.coalesced,
        }
