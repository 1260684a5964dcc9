from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, Literal

from .const import CACHE_HEADER, QUEUED_HEADER, STALE_HEADER
from .exceptions import ApplicationError


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_timestamp(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=UTC)
    if not isinstance(raw, str) or not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def request_fingerprint(method: str, endpoint: str, body: Any) -> str:
    """Stable hash identifying a mutation by method, endpoint and body."""

    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(f"{method.upper()} {endpoint}\n{canonical}".encode())
    return digest.hexdigest()


def entity_type_for(endpoint: str) -> str:
    """Derive the resource family from ``/api/<entity>/...`` style paths."""

    path = endpoint.split("?", 1)[0]
    if "/api/" not in path:
        return "unknown"
    tail = path.split("/api/", 1)[1]
    head = tail.split("/", 1)[0]
    return head or "unknown"


class ConnectivityState(StrEnum):
    """Process-wide belief about network reachability."""

    ONLINE = "online"
    OFFLINE = "offline"
    RECONNECTING = "reconnecting"


@dataclass(slots=True)
class QueuedRequest:
    """A mutation deferred because it could not reach the server."""

    id: str
    sequence: int
    method: str
    endpoint: str
    body: Any = None
    created_at: datetime = field(default_factory=utcnow)
    retry_count: int = 0
    last_error: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    description: str = ""
    entity_type: str = "unknown"
    fingerprint: str = ""

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not self.fingerprint:
            self.fingerprint = request_fingerprint(self.method, self.endpoint, self.body)

    def failed(self, error: str) -> QueuedRequest:
        return replace(self, retry_count=self.retry_count + 1, last_error=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "sequence": self.sequence,
            "method": self.method,
            "endpoint": self.endpoint,
            "body": self.body,
            "created_at": _format_ts(self.created_at),
            "retry_count": self.retry_count,
            "headers": dict(self.headers),
            "description": self.description,
            "entity_type": self.entity_type,
            "fingerprint": self.fingerprint,
        }
        if self.last_error is not None:
            payload["last_error"] = self.last_error
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> QueuedRequest:
        return cls(
            id=str(payload["id"]),
            sequence=int(payload["sequence"]),
            method=str(payload["method"]),
            endpoint=str(payload["endpoint"]),
            body=payload.get("body"),
            created_at=parse_timestamp(payload.get("created_at")) or utcnow(),
            retry_count=int(payload.get("retry_count", 0)),
            last_error=payload.get("last_error"),
            headers=dict(payload.get("headers") or {}),
            description=str(payload.get("description") or ""),
            entity_type=str(payload.get("entity_type") or "unknown"),
            fingerprint=str(payload.get("fingerprint") or ""),
        )


@dataclass(slots=True)
class DeadLetter:
    """A queued request abandoned after a definitive rejection."""

    request: QueuedRequest
    reason: Literal["rejected", "retries_exhausted"]
    status: int | None = None
    failed_at: datetime = field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return self.request.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "reason": self.reason,
            "status": self.status,
            "failed_at": _format_ts(self.failed_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DeadLetter:
        status = payload.get("status")
        return cls(
            request=QueuedRequest.from_dict(payload["request"]),
            reason=payload.get("reason", "rejected"),
            status=int(status) if status is not None else None,
            failed_at=parse_timestamp(payload.get("failed_at")) or utcnow(),
        )


@dataclass(slots=True, frozen=True)
class CachedDataset:
    """Snapshot of server-provided reference data, replaced whole."""

    key: str
    payload: Any
    fetched_at: datetime
    ttl: float

    @property
    def expires_at(self) -> datetime:
        return self.fetched_at + timedelta(seconds=self.ttl)

    def age(self, now: datetime | None = None) -> float:
        now = now or utcnow()
        return max((now - self.fetched_at).total_seconds(), 0.0)

    def is_stale(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "payload": self.payload,
            "fetched_at": _format_ts(self.fetched_at),
            "ttl": self.ttl,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CachedDataset:
        return cls(
            key=str(payload["key"]),
            payload=payload.get("payload"),
            fetched_at=parse_timestamp(payload.get("fetched_at")) or utcnow(),
            ttl=float(payload.get("ttl", 0)),
        )


# ----------------------------------------------------------------------
# Fetch results: every request resolves to exactly one of these variants.


@dataclass(slots=True, frozen=True)
class ServerResponse:
    """A real answer from the remote API, successful or not."""

    status: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    kind: Literal["server"] = "server"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    def raise_for_status(self) -> None:
        if not self.ok:
            raise ApplicationError(self.status, self.body)


@dataclass(slots=True, frozen=True)
class QueuedResponse:
    """The mutation was stored offline and will replay on reconnect."""

    request: QueuedRequest
    message: str = "Saved offline and will sync when connected"
    kind: Literal["queued"] = "queued"

    @property
    def ok(self) -> bool:
        return True

    @property
    def headers(self) -> dict[str, str]:
        return {QUEUED_HEADER: "true"}


@dataclass(slots=True, frozen=True)
class CachedResponse:
    """A read served from the last cached snapshot."""

    dataset: CachedDataset
    is_stale: bool
    age_seconds: float
    offline: bool = True
    kind: Literal["cached"] = "cached"

    @property
    def ok(self) -> bool:
        return True

    @property
    def body(self) -> Any:
        return self.dataset.payload

    @property
    def headers(self) -> dict[str, str]:
        return {CACHE_HEADER: "true", STALE_HEADER: "true" if self.is_stale else "false"}


@dataclass(slots=True, frozen=True)
class Unavailable:
    """No live answer and no cached data for the read."""

    key: str
    error: str
    offline: bool = True
    kind: Literal["unavailable"] = "unavailable"

    @property
    def ok(self) -> bool:
        return False

    @property
    def body(self) -> Any:
        return None


FetchResult = ServerResponse | QueuedResponse | CachedResponse | Unavailable


@dataclass(slots=True)
class DrainSummary:
    """Outcome of a single replay pass over the offline queue."""

    succeeded: int = 0
    dead_lettered: int = 0
    pending: int = 0
    attempted: int = 0
    stopped: str | None = None
    dead_letters: list[DeadLetter] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "dead_lettered": self.dead_lettered,
            "pending": self.pending,
            "attempted": self.attempted,
            "stopped": self.stopped,
            "dead_letter_ids": [item.id for item in self.dead_letters],
            "started_at": _format_ts(self.started_at),
            "finished_at": _format_ts(self.finished_at) if self.finished_at else None,
        }


@dataclass(slots=True)
class PrefetchStatus:
    total: int = 0
    cached: int = 0
    failed: list[str] = field(default_factory=list)
    last_full_sync: datetime | None = None
    superseded: bool = False

    @property
    def fully_cached(self) -> bool:
        return not self.failed and not self.superseded

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "cached": self.cached,
            "failed": list(self.failed),
            "last_full_sync": _format_ts(self.last_full_sync) if self.last_full_sync else None,
            "fully_cached": self.fully_cached,
            "superseded": self.superseded,
        }
