from __future__ import annotations

from typing import TypedDict

API_PREFIX = "/api/"
HEALTH_ENDPOINT = "/api/health"
CACHE_KEY_PREFIX = "api-cache:"

# Storage namespaces
NS_QUEUE = "offline_queue"
NS_DEAD_LETTER = "dead_letters"
NS_DATASETS = "cached_data"
NS_META = "sync_meta"

META_SEQUENCE = "queue_sequence"
META_LAST_DRAIN = "last_drain"
META_LAST_PREFETCH = "offline_sync_status"

QUEUED_HEADER = "X-Offline-Queued"
CACHE_HEADER = "X-Offline-Cache"
STALE_HEADER = "X-Cache-Stale"

READ_METHODS = frozenset({"GET", "HEAD"})
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CONF_BASE_URL = "base_url"
CONF_STORE_PATH = "store_path"
CONF_REQUEST_TIMEOUT = "request_timeout"
CONF_DRAIN_INTERVAL = "drain_interval"
CONF_PREFETCH_INTERVAL = "prefetch_interval"
CONF_PROBE_INTERVAL = "probe_interval"
CONF_MAX_RETRIES = "max_retries"
CONF_DEFAULT_TTL = "default_ttl"
CONF_DATASETS = "datasets"
CONF_HEADERS = "headers"

DEFAULT_STORE_PATH = ".theatre_sync.db"
DEFAULT_REQUEST_TIMEOUT = 15.0
DEFAULT_DRAIN_INTERVAL = 30
DEFAULT_PREFETCH_INTERVAL = 60 * 60
DEFAULT_PROBE_INTERVAL = 15
DEFAULT_MAX_RETRIES = 5
DEFAULT_TTL = 30 * 60


class DatasetSpec(TypedDict):
    """Reference data endpoint kept available for offline use."""

    key: str
    path: str
    ttl: int


# Read-heavy endpoints pre-fetched for the theatre dashboards
OFFLINE_DATASETS: list[DatasetSpec] = [
    {"key": "dashboard-stats", "path": "/api/dashboard/stats", "ttl": 60 * 60},
    {"key": "surgeries", "path": "/api/surgeries", "ttl": 30 * 60},
    {"key": "patients", "path": "/api/patients", "ttl": 30 * 60},
    {"key": "inventory", "path": "/api/inventory", "ttl": 30 * 60},
    {"key": "theatres", "path": "/api/theatres", "ttl": 60 * 60},
    {"key": "today-allocations", "path": "/api/allocations?date=today", "ttl": 15 * 60},
    {"key": "sub-stores", "path": "/api/sub-stores", "ttl": 30 * 60},
    {"key": "roster", "path": "/api/roster", "ttl": 60 * 60},
    {"key": "transfers", "path": "/api/transfers", "ttl": 30 * 60},
    {"key": "alerts", "path": "/api/alerts", "ttl": 15 * 60},
    {"key": "theatre-setup", "path": "/api/theatre-setup", "ttl": 60 * 60},
    {"key": "preop-reviews", "path": "/api/preop-reviews", "ttl": 30 * 60},
    {"key": "prescriptions", "path": "/api/prescriptions", "ttl": 30 * 60},
    {"key": "power-status", "path": "/api/power-status", "ttl": 15 * 60},
    {"key": "water-supply", "path": "/api/water-supply", "ttl": 15 * 60},
    {"key": "users", "path": "/api/users", "ttl": 60 * 60},
    {"key": "emergency-booking", "path": "/api/emergency-booking", "ttl": 15 * 60},
]
