from __future__ import annotations

import asyncio
from typing import Any

import pytest

from theatre_sync.cache import DatasetCache
from theatre_sync.client import ApiResponse
from theatre_sync.connectivity import ConnectivityMonitor
from theatre_sync.exceptions import NetworkError
from theatre_sync.fetch import OfflineFetch
from theatre_sync.offline_queue import OfflineQueue
from theatre_sync.prefetch import PrefetchManager
from theatre_sync.processor import QueueProcessor
from theatre_sync.storage import MemoryBackend
from theatre_sync.utils.logging import reset_warnings

THEATRE_DATASETS = [
    {"key": "theatres", "path": "/api/theatres", "ttl": 3600},
    {"key": "today-allocations", "path": "/api/allocations?date=today", "ttl": 900},
]


class FakeApi:
    """Scripted stand-in for :class:`ApiClient`.

    ``respond`` queues outcomes per ``(method, path)``; the last one sticks.
    Outcomes are status codes, :class:`ApiResponse` objects or exceptions.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any]] = []
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.offline = False
        self.gate: asyncio.Event | None = None

    def respond(self, method: str, path: str, *outcomes: Any) -> None:
        self.routes.setdefault((method.upper(), path), []).extend(outcomes)

    def sent(self, method: str | None = None) -> list[str]:
        return [path for verb, path, _ in self.calls if method is None or verb == method]

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
    ) -> ApiResponse:
        method = method.upper()
        self.calls.append((method, path, body))
        outcome = self._next(method, path)
        if self.gate is not None:
            await self.gate.wait()
        if self.offline:
            raise NetworkError(f"{method} {path} unreachable: connection refused")
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ApiResponse):
            return outcome
        return ApiResponse(status=int(outcome), body={"ok": True})

    def _next(self, method: str, path: str) -> Any:
        scripted = self.routes.get((method, path))
        if not scripted:
            return ApiResponse(status=200, body={"path": path})
        return scripted.pop(0) if len(scripted) > 1 else scripted[0]


@pytest.fixture(autouse=True)
def _reset_warn_once():
    reset_warnings()
    yield
    reset_warnings()


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def queue(backend) -> OfflineQueue:
    return OfflineQueue(backend)


@pytest.fixture
def cache(backend) -> DatasetCache:
    return DatasetCache(backend, default_ttl=1800)


@pytest.fixture
def connectivity(api) -> ConnectivityMonitor:
    return ConnectivityMonitor(client=api)


@pytest.fixture
def prefetch(api, cache, connectivity) -> PrefetchManager:
    return PrefetchManager(api, cache, connectivity, datasets=THEATRE_DATASETS)


@pytest.fixture
def processor(api, queue, connectivity) -> QueueProcessor:
    return QueueProcessor(api, queue, connectivity, max_retries=3)


@pytest.fixture
def fetch(api, queue, prefetch, connectivity) -> OfflineFetch:
    return OfflineFetch(api, queue, prefetch, connectivity)
