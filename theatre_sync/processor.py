"""Replay queued mutations once the API is reachable again."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from .client import ApiClient
from .connectivity import ConnectivityMonitor
from .const import DEFAULT_MAX_RETRIES, META_LAST_DRAIN, NS_META
from .exceptions import NetworkError, StorageError
from .models import DrainSummary, QueuedRequest, utcnow
from .offline_queue import OfflineQueue

_LOGGER = logging.getLogger(__name__)

DrainListener = Callable[[DrainSummary], Any]


class QueueProcessor:
    """Sequential FIFO replay of the offline queue.

    Per item: 2xx removes it; 4xx dead-letters it (retrying a rejected
    request is never correct); 5xx counts a retry and stops, or dead-letters
    once ``max_retries`` is reached; no response at all stops the drain and
    leaves the item and everything after it queued.
    """

    def __init__(
        self,
        client: ApiClient,
        queue: OfflineQueue,
        connectivity: ConnectivityMonitor,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.client = client
        self.queue = queue
        self.connectivity = connectivity
        self.max_retries = max_retries
        self.last_summary: DrainSummary | None = None
        self._inflight: asyncio.Task[DrainSummary] | None = None
        self._listeners: list[DrainListener] = []
        self._pending: set[asyncio.Future] = set()

    @property
    def draining(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def add_listener(self, listener: DrainListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def drain(self) -> DrainSummary:
        """Replay the queue; overlapping callers share the running drain."""

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._drain())
        return await asyncio.shield(self._inflight)

    async def async_stop(self) -> None:
        """Cancel a running drain; the interrupted item stays queued unchanged."""

        tasks = [task for task in (self._inflight, *self._pending) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._inflight = None
        self._pending.clear()

    async def run_periodic(self, *, interval_seconds: float = 30) -> None:
        while True:
            try:
                if self.connectivity.is_reachable and self.queue.count():
                    await self.drain()
            except asyncio.CancelledError:
                raise
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.exception("Unexpected drain error: %s", err)
            await asyncio.sleep(interval_seconds)

    # ------------------------------------------------------------------
    async def _drain(self) -> DrainSummary:
        summary = DrainSummary()
        attempted: set[str] = set()
        while True:
            item = self._next(attempted)
            if item is None:
                break
            attempted.add(item.id)
            summary.attempted += 1
            if not await self._replay(item, summary):
                break
        summary.pending = self.queue.count()
        summary.finished_at = utcnow()
        self.last_summary = summary
        self._record(summary)
        self._notify(summary)
        if summary.succeeded or summary.dead_lettered or summary.stopped:
            _LOGGER.info(
                "Drain finished: %d synced, %d dead-lettered, %d pending%s",
                summary.succeeded,
                summary.dead_lettered,
                summary.pending,
                f" (stopped: {summary.stopped})" if summary.stopped else "",
            )
        return summary

    def _next(self, attempted: set[str]) -> QueuedRequest | None:
        # Re-read the head each time so writes queued mid-drain follow in order.
        for item in self.queue.list():
            if item.id not in attempted:
                return item
        return None

    async def _replay(self, item: QueuedRequest, summary: DrainSummary) -> bool:
        """Replay one item; returns False when the drain must stop."""

        try:
            response = await self.client.request(item.method, item.endpoint, item.body, headers=item.headers)
        except NetworkError as err:
            self._mark_failed(item, str(err))
            self.connectivity.report_network_failure(str(err))
            summary.stopped = "network"
            return False

        if 200 <= response.status < 300:
            self.queue.remove(item.id)
            summary.succeeded += 1
            return True

        error = _describe(response.status, response.body)
        if 400 <= response.status < 500:
            summary.dead_letters.append(
                self.queue.dead_letter(item.failed(error), reason="rejected", status=response.status)
            )
            summary.dead_lettered += 1
            return True

        failed = item.failed(error)
        if failed.retry_count >= self.max_retries:
            summary.dead_letters.append(
                self.queue.dead_letter(failed, reason="retries_exhausted", status=response.status)
            )
            summary.dead_lettered += 1
            return True
        self.queue.update(failed)
        summary.stopped = "server_error"
        return False

    def _mark_failed(self, item: QueuedRequest, error: str) -> None:
        try:
            self.queue.update(item.failed(error))
        except StorageError as err:
            _LOGGER.warning("Could not record replay failure for %s: %s", item.id, err)

    def _record(self, summary: DrainSummary) -> None:
        try:
            self.queue.backend.put(NS_META, META_LAST_DRAIN, summary.to_dict())
        except StorageError as err:
            _LOGGER.debug("Could not record drain summary: %s", err)

    def _notify(self, summary: DrainSummary) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(summary)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Drain listener raised error: %s", err, exc_info=True)


def _describe(status: int, body: Any) -> str:
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        if message:
            return f"{status}: {message}"
    return f"status {status}"
