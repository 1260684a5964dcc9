"""Own the offline sync components and their background lifecycle."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from aiohttp import ClientSession

from .cache import DatasetCache
from .client import ApiClient
from .config import OfflineSyncConfig
from .connectivity import ConnectivityMonitor
from .const import META_LAST_DRAIN, NS_META
from .exceptions import OfflineSyncError
from .fetch import OfflineFetch
from .models import ConnectivityState, DrainSummary, utcnow
from .offline_queue import OfflineQueue
from .prefetch import PrefetchManager
from .processor import QueueProcessor
from .storage import SQLiteBackend, StorageBackend

_LOGGER = logging.getLogger(__name__)

NotificationListener = Callable[[dict[str, Any]], Awaitable[None] | None]


class OfflineSyncManager:
    """Explicitly constructed owner of the queue, cache, and HTTP session.

    Nothing here is a process-wide singleton: create one per client, call
    :meth:`async_start`, and :meth:`async_stop` on shutdown (or use it as an
    async context manager).
    """

    def __init__(
        self,
        config: OfflineSyncConfig,
        *,
        session: ClientSession | None = None,
        backend: StorageBackend | None = None,
        initial_online: bool = True,
    ) -> None:
        self.config = config
        self.backend = backend if backend is not None else SQLiteBackend(config.store_path)
        self.queue = OfflineQueue(self.backend)
        self.cache = DatasetCache(self.backend, default_ttl=config.default_ttl)
        self.connectivity = ConnectivityMonitor(initial_online=initial_online)
        self._session = session
        self._owns_session = session is None
        self._client: ApiClient | None = None
        self._fetch: OfflineFetch | None = None
        self._processor: QueueProcessor | None = None
        self._prefetch: PrefetchManager | None = None
        self._tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._notification_listeners: list[NotificationListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._last_manual_sync_at: datetime | None = None
        if session is not None:
            self._build(session)

    # ------------------------------------------------------------------
    @property
    def started(self) -> bool:
        return bool(self._tasks)

    @property
    def fetch(self) -> OfflineFetch:
        if self._fetch is None:
            raise OfflineSyncError("offline sync manager is not started", reason="not_started")
        return self._fetch

    @property
    def processor(self) -> QueueProcessor:
        if self._processor is None:
            raise OfflineSyncError("offline sync manager is not started", reason="not_started")
        return self._processor

    @property
    def prefetch(self) -> PrefetchManager:
        if self._prefetch is None:
            raise OfflineSyncError("offline sync manager is not started", reason="not_started")
        return self._prefetch

    def _build(self, session: ClientSession) -> None:
        self._client = ApiClient(
            session,
            self.config.base_url,
            timeout=self.config.request_timeout,
            headers=self.config.headers,
        )
        self.connectivity.client = self._client
        self._prefetch = PrefetchManager(
            self._client,
            self.cache,
            self.connectivity,
            datasets=self.config.datasets,
        )
        self._processor = QueueProcessor(
            self._client,
            self.queue,
            self.connectivity,
            max_retries=self.config.max_retries,
        )
        self._processor.add_listener(self._on_drain)
        self._fetch = OfflineFetch(
            self._client,
            self.queue,
            self._prefetch,
            self.connectivity,
            on_queued=self._on_queued,
        )
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.add_listener(self._on_connectivity)

    # ------------------------------------------------------------------
    async def async_start(self, *, background: bool = True) -> None:
        """Probe connectivity, then start the probe, drain and refresh loops."""

        if self.started:
            return
        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True
        if self._client is None:
            self._build(self._session)
        await self.connectivity.probe()
        if not background:
            return
        self._tasks = [
            asyncio.create_task(self.connectivity.run_probe_loop(interval_seconds=self.config.probe_interval)),
            asyncio.create_task(self.processor.run_periodic(interval_seconds=self.config.drain_interval)),
            asyncio.create_task(self.prefetch.run_periodic(interval_seconds=self.config.prefetch_interval)),
        ]
        _LOGGER.info("Offline sync started for %s (%s)", self.config.base_url, self.connectivity.state.value)

    async def async_stop(self) -> None:
        """Stop background loops and release the HTTP session."""

        tasks = [*self._tasks, *self._background]
        for task in tasks:
            task.cancel()
        # Failures were already logged by _task_done.
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._background.clear()
        if self._processor is not None:
            await self._processor.async_stop()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._client = None
            self._fetch = None
            self._processor = None
            self._prefetch = None
            self.connectivity.client = None
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None

    async def __aenter__(self) -> OfflineSyncManager:
        await self.async_start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.async_stop()

    async def async_sync_now(self, *, drain: bool = True, prefetch: bool = True) -> dict[str, Any]:
        """Run one drain and/or dataset refresh immediately."""

        if not drain and not prefetch:
            raise OfflineSyncError("at least one of drain/prefetch must be enabled", reason="invalid_request")
        result: dict[str, Any] = {"drain": None, "prefetch": None}
        if drain:
            summary = await self.processor.drain()
            result["drain"] = summary.to_dict()
        if prefetch:
            status = await self.prefetch.prefetch_all()
            result["prefetch"] = status.to_dict()
        self._last_manual_sync_at = utcnow()
        result["status"] = self.status()
        return result

    # ------------------------------------------------------------------
    def register_notification_listener(self, listener: NotificationListener) -> Callable[[], None]:
        """Receive ``{"level", "message", ...}`` dicts for user notifications."""

        self._notification_listeners.append(listener)

        def _remove() -> None:
            if listener in self._notification_listeners:
                self._notification_listeners.remove(listener)

        return _remove

    def status(self) -> dict[str, Any]:
        """Runtime state for the pending-count and connectivity indicator."""

        last_drain: dict[str, Any] | None
        if self._processor is not None and self._processor.last_summary is not None:
            last_drain = self._processor.last_summary.to_dict()
        else:
            last_drain = self.backend.get(NS_META, META_LAST_DRAIN)
        return {
            "connection": self.connectivity.status(),
            "pending": self.queue.count(),
            "dead_letters": self.queue.dead_letter_count(),
            "draining": self._processor.draining if self._processor is not None else False,
            "cached_datasets": self.cache.count(),
            "cache_oldest_age_seconds": self.cache.oldest_age(),
            "last_drain": last_drain,
            "last_prefetch": self._prefetch.status() if self._prefetch is not None else None,
            "last_manual_sync_at": self._last_manual_sync_at.isoformat() if self._last_manual_sync_at else None,
        }

    # ------------------------------------------------------------------
    def _on_connectivity(self, old: ConnectivityState, new: ConnectivityState) -> None:
        if new is ConnectivityState.RECONNECTING:
            self._spawn(self._reconnect())

    def _on_queued(self, request_id: str) -> None:
        # Queued while online only because earlier writes are still pending.
        if self.connectivity.is_online and self._processor is not None:
            self._spawn(self._processor.drain())

    async def _reconnect(self) -> None:
        try:
            await self.processor.drain()
        except Exception as err:
            _LOGGER.error("Drain after reconnect failed: %s", err)
        self.connectivity.reconnect_complete()

    def _on_drain(self, summary: DrainSummary) -> None:
        if summary.succeeded:
            self._notify(
                {
                    "level": "info",
                    "message": f"Synced {summary.succeeded} offline change(s)",
                    "pending": summary.pending,
                }
            )
        for item in summary.dead_letters:
            self._notify(
                {
                    "level": "error",
                    "message": f"Offline change rejected: {item.request.description}",
                    "request_id": item.id,
                    "status": item.status,
                    "reason": item.reason,
                }
            )

    def _notify(self, notification: dict[str, Any]) -> None:
        for listener in list(self._notification_listeners):
            try:
                result = listener(notification)
                if asyncio.iscoroutine(result):
                    self._spawn(result)
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Notification listener raised error: %s", err, exc_info=True)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.error("Background sync task failed: %s", err, exc_info=err)
