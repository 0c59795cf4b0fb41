from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog
from kubernetes import client, watch
from kubernetes.client import ApiException

from ..config import Settings, get_settings
from ..scheme import GROUP_PERMISSION_KIND, Scheme
from ..schemas import object_key

logger = structlog.get_logger(__name__)


class GroupPermissionWatcher:
    """Watch GroupPermission resources and hand their keys to `on_change`.

    Status-only updates do not change metadata.generation and are ignored,
    so the operator's own status writes do not trigger another pass.
    """

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        scheme: Scheme,
        on_change: Callable[[str], None],
        settings: Settings | None = None,
    ) -> None:
        self.custom_api = custom_api
        self.settings = settings or get_settings()
        self.on_change = on_change
        self._gp = scheme.resource(GROUP_PERMISSION_KIND)
        self._generations: dict[str, int | None] = {}
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        logger.info("watcher.starting", kind=GROUP_PERMISSION_KIND, namespace=self.settings.watch_namespace or "*")
        self._stop_event.clear()
        self._task = asyncio.create_task(self._watch_loop())
        self._task.set_name("watch_grouppermissions")

    async def stop(self) -> None:
        logger.info("watcher.stopping")
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        logger.info("watcher.stopped")

    def _stream(self):
        kwargs: dict[str, Any] = {"timeout_seconds": self.settings.watch_timeout_seconds}
        if self.settings.watch_namespace:
            return watch.Watch().stream(
                self.custom_api.list_namespaced_custom_object,
                self._gp.group,
                self._gp.version,
                self.settings.watch_namespace,
                self._gp.plural,
                **kwargs,
            )
        return watch.Watch().stream(
            self.custom_api.list_cluster_custom_object,
            self._gp.group,
            self._gp.version,
            self._gp.plural,
            **kwargs,
        )

    async def _watch_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._watch_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("watcher.error", error=str(e))
                await asyncio.sleep(2)

    async def _watch_once(self) -> None:
        loop = asyncio.get_running_loop()

        def _run_watch() -> None:
            try:
                for event in self._stream():
                    if not self._dispatch(loop, event):
                        return
            except ApiException as e:
                if e.status == 410:  # resource version too old
                    logger.info("watcher.rewatch")
                    return
                raise

        await asyncio.to_thread(_run_watch)

    def _dispatch(self, loop: asyncio.AbstractEventLoop, event: dict[str, Any]) -> bool:
        """Hand one event to the loop from the watch thread; False once the watcher is stopped."""
        if self._stop_event.is_set():
            return False
        # events are handled on the loop as they arrive, not when the watch times out
        try:
            loop.call_soon_threadsafe(self.handle_event, event)
        except RuntimeError:
            # the loop closed while this thread was still blocked on the stream
            return False
        return True

    def handle_event(self, event: dict[str, Any]) -> str | None:
        """Enqueue the key affected by one watch event; returns it, or None when skipped."""
        event_type = str(event.get("type", "")).upper()
        obj = event.get("object")
        if not isinstance(obj, dict):
            return None
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            return None
        key = object_key(metadata.get("namespace"), name)
        generation = metadata.get("generation")

        if event_type == "DELETED":
            self._generations.pop(key, None)
        elif event_type == "MODIFIED":
            if key in self._generations and self._generations[key] == generation:
                return None
            self._generations[key] = generation
        elif event_type == "ADDED":
            self._generations[key] = generation
        else:
            return None

        logger.debug("watcher.event", event_type=event_type, key=key, generation=generation)
        self.on_change(key)
        return key
