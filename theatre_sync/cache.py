from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

from .const import CACHE_KEY_PREFIX, DEFAULT_TTL, NS_DATASETS
from .models import CachedDataset, utcnow
from .storage import StorageBackend

_LOGGER = logging.getLogger(__name__)


def cache_key_for(path: str) -> str:
    """Cache key for an API read: path plus query, origin stripped."""

    parts = urlsplit(path)
    query = f"?{parts.query}" if parts.query else ""
    return f"{CACHE_KEY_PREFIX}{parts.path or '/'}{query}"


class DatasetCache:
    """Named snapshots of reference data with replace-whole semantics."""

    def __init__(self, backend: StorageBackend, *, default_ttl: float = DEFAULT_TTL) -> None:
        self.backend = backend
        self.default_ttl = default_ttl

    def store(
        self,
        key: str,
        payload: Any,
        *,
        ttl: float | None = None,
        fetched_at: datetime | None = None,
    ) -> CachedDataset:
        dataset = CachedDataset(
            key=key,
            payload=payload,
            fetched_at=fetched_at or utcnow(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        # A single put replaces the whole record; readers never see a mix.
        self.backend.put(NS_DATASETS, key, dataset.to_dict())
        _LOGGER.debug("Cached dataset %s", key)
        return dataset

    def cached(self, key: str) -> CachedDataset | None:
        raw = self.backend.get(NS_DATASETS, key)
        return None if raw is None else CachedDataset.from_dict(raw)

    def remove(self, key: str) -> bool:
        return self.backend.delete(NS_DATASETS, key)

    def all(self) -> list[CachedDataset]:
        return [CachedDataset.from_dict(raw) for raw in self.backend.list_all(NS_DATASETS)]

    def count(self) -> int:
        return self.backend.count(NS_DATASETS)

    def clear_expired(self, *, now: datetime | None = None) -> int:
        """Drop snapshots past their freshness window; returns how many."""

        now = now or utcnow()
        cleared = 0
        for dataset in self.all():
            if dataset.is_stale(now) and self.remove(dataset.key):
                cleared += 1
        if cleared:
            _LOGGER.info("Cleared %d expired cached datasets", cleared)
        return cleared

    def newest_fetch(self) -> datetime | None:
        stamps = [dataset.fetched_at for dataset in self.all()]
        return max(stamps) if stamps else None

    def oldest_age(self, *, now: datetime | None = None) -> float | None:
        datasets = self.all()
        if not datasets:
            return None
        return max(dataset.age(now) for dataset in datasets)
