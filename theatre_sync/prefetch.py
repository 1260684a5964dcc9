"""Pre-fetch reference datasets and serve them when the API is unreachable."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from .cache import DatasetCache, cache_key_for
from .client import ApiClient, ApiResponse
from .connectivity import ConnectivityMonitor
from .const import META_LAST_PREFETCH, NS_META, OFFLINE_DATASETS, DatasetSpec
from .exceptions import NetworkError, StorageError
from .models import CachedResponse, FetchResult, PrefetchStatus, ServerResponse, Unavailable, utcnow

_LOGGER = logging.getLogger(__name__)


class PrefetchManager:
    """Keep named snapshots of read-heavy data available offline."""

    def __init__(
        self,
        client: ApiClient,
        cache: DatasetCache,
        connectivity: ConnectivityMonitor,
        *,
        datasets: Sequence[DatasetSpec] = OFFLINE_DATASETS,
    ) -> None:
        self.client = client
        self.cache = cache
        self.connectivity = connectivity
        self.datasets: dict[str, DatasetSpec] = {spec["key"]: spec for spec in datasets}
        self._keys_by_path = {cache_key_for(spec["path"]): spec["key"] for spec in datasets}
        self._generation = 0
        self.last_status: PrefetchStatus | None = None

    # ------------------------------------------------------------------
    async def prefetch_all(self) -> PrefetchStatus:
        """Refresh every configured dataset.

        Each snapshot is replaced whole on success and kept untouched on
        failure. A later call supersedes this one: results arriving after
        that point are discarded.
        """

        self._generation += 1
        generation = self._generation
        status = PrefetchStatus(total=len(self.datasets))
        if not self.connectivity.is_reachable:
            status.failed = list(self.datasets)
            return self._finish(status, generation)

        outcomes = await asyncio.gather(
            *(self._fetch(spec) for spec in self.datasets.values()),
            return_exceptions=True,
        )
        for spec, outcome in zip(self.datasets.values(), outcomes, strict=True):
            key = spec["key"]
            if generation != self._generation:
                status.superseded = True
                break
            if isinstance(outcome, ApiResponse) and 200 <= outcome.status < 300:
                try:
                    self.cache.store(key, outcome.body, ttl=spec["ttl"])
                except StorageError as err:
                    _LOGGER.warning("Could not cache dataset %s: %s", key, err)
                    status.failed.append(key)
                    continue
                status.cached += 1
                continue
            if isinstance(outcome, NetworkError):
                self.connectivity.report_network_failure(str(outcome))
            elif isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            status.failed.append(key)
        return self._finish(status, generation)

    async def get(self, key: str, *, path: str | None = None, ttl: float | None = None) -> FetchResult:
        """Live data when reachable, otherwise the latest snapshot.

        Returns :class:`Unavailable` instead of raising when neither exists.
        """

        spec = self.datasets.get(key)
        path = path or (spec["path"] if spec else None)
        if ttl is None and spec:
            ttl = spec["ttl"]
        if path is None or not self.connectivity.is_reachable:
            return self.fallback(key)
        try:
            response = await self.client.request("GET", path)
        except NetworkError as err:
            self.connectivity.report_network_failure(str(err))
            return self.fallback(key)
        return self.accept_live(key, response, ttl=ttl)

    def accept_live(self, key: str, response: ApiResponse, *, ttl: float | None = None) -> FetchResult:
        """Cache a successful live read, or fall back to cache on a failed one."""

        if ttl is None and key in self.datasets:
            ttl = self.datasets[key]["ttl"]
        live = ServerResponse(status=response.status, body=response.body, headers=response.headers)
        if live.ok:
            try:
                self.cache.store(key, response.body, ttl=ttl)
            except StorageError as err:
                _LOGGER.warning("Could not cache dataset %s: %s", key, err)
            return live
        cached = self._cached_response(key, offline=False)
        return cached if cached is not None else live

    def key_for(self, endpoint: str) -> str:
        """Dataset key when ``endpoint`` is a pre-fetched path, else its cache key."""

        key = cache_key_for(endpoint)
        return self._keys_by_path.get(key, key)

    def fallback(self, key: str) -> CachedResponse | Unavailable:
        cached = self._cached_response(key, offline=True)
        if cached is not None:
            _LOGGER.debug("Serving cached %s (stale=%s)", key, cached.is_stale)
            return cached
        return Unavailable(key=key, error="Offline with no cached data")

    async def run_periodic(self, *, interval_seconds: float = 3600) -> None:
        """Best-effort background refresh; failures keep the existing cache."""

        while True:
            try:
                if self.connectivity.is_reachable:
                    await self.prefetch_all()
            except asyncio.CancelledError:
                raise
            except Exception as err:
                _LOGGER.warning("Background dataset refresh failed: %s", err)
            await asyncio.sleep(interval_seconds)

    def status(self) -> dict[str, Any]:
        if self.last_status is not None:
            return self.last_status.to_dict()
        try:
            stored = self.cache.backend.get(NS_META, META_LAST_PREFETCH)
        except StorageError:
            return {}
        return stored or {}

    # ------------------------------------------------------------------
    async def _fetch(self, spec: DatasetSpec) -> ApiResponse:
        return await self.client.request("GET", spec["path"])

    def _cached_response(self, key: str, *, offline: bool) -> CachedResponse | None:
        try:
            dataset = self.cache.cached(key)
        except StorageError as err:
            _LOGGER.warning("Cached dataset %s unreadable: %s", key, err)
            return None
        if dataset is None:
            return None
        now = utcnow()
        return CachedResponse(
            dataset=dataset,
            is_stale=dataset.is_stale(now),
            age_seconds=dataset.age(now),
            offline=offline,
        )

    def _finish(self, status: PrefetchStatus, generation: int) -> PrefetchStatus:
        if generation != self._generation:
            status.superseded = True
            return status
        if status.cached:
            status.last_full_sync = utcnow()
        self.last_status = status
        try:
            self.cache.backend.put(NS_META, META_LAST_PREFETCH, status.to_dict())
        except StorageError as err:
            _LOGGER.debug("Could not record prefetch status: %s", err)
        _LOGGER.info(
            "Prefetched %d/%d datasets (failed: %s)",
            status.cached,
            status.total,
            ", ".join(status.failed) or "none",
        )
        return status
