"""Offline-first synchronisation for the operating theatre management API."""

from .cache import DatasetCache, cache_key_for
from .client import ApiClient, ApiResponse
from .config import OfflineSyncConfig, load_config
from .connectivity import ConnectivityMonitor
from .exceptions import ApplicationError, NetworkError, OfflineSyncError, StorageError
from .fetch import OfflineFetch
from .manager import OfflineSyncManager
from .models import (
    CachedDataset,
    CachedResponse,
    ConnectivityState,
    DeadLetter,
    DrainSummary,
    FetchResult,
    PrefetchStatus,
    QueuedRequest,
    QueuedResponse,
    ServerResponse,
    Unavailable,
)
from .offline_queue import OfflineQueue
from .prefetch import PrefetchManager
from .processor import QueueProcessor
from .storage import MemoryBackend, SQLiteBackend, StorageBackend

__all__ = [
    "ApiClient",
    "ApiResponse",
    "ApplicationError",
    "CachedDataset",
    "CachedResponse",
    "ConnectivityMonitor",
    "ConnectivityState",
    "DatasetCache",
    "DeadLetter",
    "DrainSummary",
    "FetchResult",
    "MemoryBackend",
    "NetworkError",
    "OfflineFetch",
    "OfflineQueue",
    "OfflineSyncConfig",
    "OfflineSyncError",
    "OfflineSyncManager",
    "PrefetchManager",
    "PrefetchStatus",
    "QueueProcessor",
    "QueuedRequest",
    "QueuedResponse",
    "SQLiteBackend",
    "ServerResponse",
    "StorageBackend",
    "StorageError",
    "Unavailable",
    "cache_key_for",
    "load_config",
]
