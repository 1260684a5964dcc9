"""Offline-aware request entry point used by UI code."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

from .client import ApiClient
from .connectivity import ConnectivityMonitor
from .const import API_PREFIX, MUTATING_METHODS, READ_METHODS
from .exceptions import NetworkError, StorageError
from .models import FetchResult, QueuedResponse, ServerResponse, entity_type_for
from .offline_queue import OfflineQueue
from .prefetch import PrefetchManager

_LOGGER = logging.getLogger(__name__)


def is_api_path(endpoint: str) -> bool:
    return urlsplit(endpoint).path.startswith(API_PREFIX)


class OfflineFetch:
    """Route each request live, into the offline queue or to the cache.

    * Mutations go live when online. With no response at all they are queued
      and a :class:`QueuedResponse` is returned. A server error status is a
      real answer and is returned as-is, never queued.
    * Reads are never queued. When the API cannot be reached the prefetch
      manager answers from its snapshots.
    """

    def __init__(
        self,
        client: ApiClient,
        queue: OfflineQueue,
        prefetch: PrefetchManager,
        connectivity: ConnectivityMonitor,
        *,
        on_queued: Callable[[str], Any] | None = None,
    ) -> None:
        self.client = client
        self.queue = queue
        self.prefetch = prefetch
        self.connectivity = connectivity
        self.on_queued = on_queued

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        *,
        description: str = "",
        cache_key: str | None = None,
        ttl: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        method = method.upper()
        if not is_api_path(endpoint) or method not in READ_METHODS | MUTATING_METHODS:
            response = await self.client.request(method, endpoint, body, headers=headers)
            return ServerResponse(status=response.status, body=response.body, headers=response.headers)
        if method in READ_METHODS:
            return await self._read(method, endpoint, cache_key=cache_key, ttl=ttl, headers=headers)
        return await self._mutate(method, endpoint, body, description=description, headers=headers)

    async def get(self, endpoint: str, **kwargs: Any) -> FetchResult:
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs: Any) -> FetchResult:
        return await self.request("POST", endpoint, body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs: Any) -> FetchResult:
        return await self.request("PUT", endpoint, body, **kwargs)

    async def patch(self, endpoint: str, body: Any = None, **kwargs: Any) -> FetchResult:
        return await self.request("PATCH", endpoint, body, **kwargs)

    async def delete(self, endpoint: str, body: Any = None, **kwargs: Any) -> FetchResult:
        return await self.request("DELETE", endpoint, body, **kwargs)

    # ------------------------------------------------------------------
    async def _read(
        self,
        method: str,
        endpoint: str,
        *,
        cache_key: str | None,
        ttl: float | None,
        headers: dict[str, str] | None,
    ) -> FetchResult:
        key = cache_key or self.prefetch.key_for(endpoint)
        if not self.connectivity.is_reachable:
            return self.prefetch.fallback(key)
        try:
            response = await self.client.request(method, endpoint, headers=headers)
        except NetworkError as err:
            self.connectivity.report_network_failure(str(err))
            return self.prefetch.fallback(key)
        if not isinstance(response.body, dict | list) and 200 <= response.status < 300:
            # Only JSON documents are worth keeping offline.
            return ServerResponse(status=response.status, body=response.body, headers=response.headers)
        return self.prefetch.accept_live(key, response, ttl=ttl)

    async def _mutate(
        self,
        method: str,
        endpoint: str,
        body: Any,
        *,
        description: str,
        headers: dict[str, str] | None,
    ) -> FetchResult:
        entity_type = entity_type_for(endpoint)
        if self.connectivity.is_online and not self._has_pending(entity_type):
            try:
                response = await self.client.request(method, endpoint, body, headers=headers)
            except NetworkError as err:
                self.connectivity.report_network_failure(str(err))
            else:
                return ServerResponse(status=response.status, body=response.body, headers=response.headers)
        # StorageError propagates: the caller must learn the write was not saved.
        request_id = self.queue.enqueue(
            method,
            endpoint,
            body,
            headers=headers,
            description=description,
            entity_type=entity_type,
        )
        queued = self.queue.get(request_id)
        if queued is None:  # pragma: no cover - backend dropped the record we just wrote
            raise StorageError(f"{method} {endpoint} could not be queued")
        if self.on_queued is not None:
            self.on_queued(request_id)
        return QueuedResponse(request=queued)

    def _has_pending(self, entity_type: str) -> bool:
        # Later writes must not overtake queued ones for the same resource.
        if not self.queue.count():
            return False
        return any(item.entity_type == entity_type for item in self.queue.list())
