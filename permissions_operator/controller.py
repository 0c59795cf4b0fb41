"""
Controller runtime: worker tasks draining the work queue, a periodic resync,
and the GroupPermission watcher feeding the queue.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from .config import Settings, get_settings
from .exceptions import OperatorError
from .reconcile import GroupPermissionReconciler, ReconcileResult
from .services.work_queue import WorkQueue

logger = structlog.get_logger(__name__)


class Controller:
    def __init__(
        self,
        reconciler: GroupPermissionReconciler,
        queue: WorkQueue,
        store,
        watcher: Any | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.queue = queue
        self.store = store
        self.watcher = watcher
        self.settings = settings or get_settings()
        self._tasks: list[asyncio.Task] = []
        self._stopped = asyncio.Event()
        self.running = False
        self.synced = False

    async def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        for n in range(self.settings.workers):
            task = asyncio.create_task(self._worker(n))
            task.set_name(f"reconcile_worker_{n}")
            self._tasks.append(task)

        resync = asyncio.create_task(self._resync_loop())
        resync.set_name("resync")
        self._tasks.append(resync)

        if self.watcher is not None:
            await self.watcher.start()
        self.running = True
        logger.info("controller.started", workers=self.settings.workers, dry_run=self.settings.dry_run)

    async def stop(self) -> None:
        if not self.running:
            return
        logger.info("controller.stopping")
        self._stopped.set()
        if self.watcher is not None:
            await self.watcher.stop()
        self.queue.shutdown(waiters=self.settings.workers)
        for task in self._tasks:
            if task.get_name() == "resync":
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.running = False
        logger.info("controller.stopped")

    async def _worker(self, n: int) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                logger.debug("controller.worker_exit", worker=n)
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: str) -> ReconcileResult | None:
        try:
            result = await self.reconciler.reconcile(key)
        except Exception:
            logger.exception("controller.reconcile_crashed", key=key)
            self.queue.add_rate_limited(key)
            return None
        self.handle_result(result)
        return result

    def handle_result(self, result: ReconcileResult) -> None:
        key = result.key
        if not result.requeue:
            self.queue.forget(key)
            if result.error is not None:
                logger.error("controller.not_retrying", key=key, error=result.error.message, code=result.error.code)
            return

        if result.requeue_after is not None:
            self.queue.add_after(key, result.requeue_after)
            return

        delay = self.queue.add_rate_limited(key)
        logger.info(
            "controller.requeued",
            key=key,
            delay=delay,
            attempts=self.queue.num_requeues(key),
            error=result.error.message if result.error else None,
        )

    async def resync(self) -> int:
        """Enqueue every GroupPermission in scope; returns how many were enqueued."""
        items = await self.store.list_group_permissions()
        for gp in items:
            self.queue.add(gp.key)
        self.synced = True
        logger.info("controller.resync", count=len(items))
        return len(items)

    async def _resync_loop(self) -> None:
        while not self._stopped.is_set():
            try:
                await self.resync()
            except OperatorError as exc:
                logger.warning("controller.resync_failed", error=exc.message)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.settings.resync_period_seconds)
            except asyncio.TimeoutError:
                continue
