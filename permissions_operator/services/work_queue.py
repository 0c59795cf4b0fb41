from __future__ import annotations

import asyncio

import structlog

logger = structlog.get_logger(__name__)


class WorkQueue:
    """Deduplicating work queue of GroupPermission keys.

    A key is handed to at most one worker at a time; adding a key that is
    being processed marks it dirty so it is queued again once `done` is
    called. Failed keys are retried after an exponential delay capped at
    `backoff_max`.
    """

    def __init__(self, backoff_base: float = 0.5, backoff_max: float = 300.0) -> None:
        if backoff_base <= 0:
            raise ValueError("backoff_base must be greater than zero")
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, tuple[float, asyncio.TimerHandle]] = {}
        self._shutting_down = False

    def add(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending[0] <= when:
                return
            pending[1].cancel()
        self._timers[key] = (when, loop.call_at(when, self._fire, key))

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def backoff(self, key: str) -> float:
        failures = self._failures.get(key, 0)
        return min(self.backoff_base * (2 ** failures), self.backoff_max)

    def add_rate_limited(self, key: str) -> float:
        delay = self.backoff(key)
        self._failures[key] = self._failures.get(key, 0) + 1
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str | None:
        """Next key to process, or None once the queue is shut down."""
        key = await self._queue.get()
        if key is None:
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self, waiters: int = 1) -> None:
        self._shutting_down = True
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for _ in range(waiters):
            self._queue.put_nowait(None)
        logger.info("work_queue.shutdown", pending=len(self._dirty))

    def __len__(self) -> int:
        return len(self._dirty)
