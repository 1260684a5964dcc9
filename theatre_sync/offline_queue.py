"""Durable FIFO of mutations made while the API was unreachable."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Literal

from .const import META_SEQUENCE, NS_DEAD_LETTER, NS_META, NS_QUEUE
from .models import DeadLetter, QueuedRequest, entity_type_for, utcnow
from .storage import StorageBackend

_LOGGER = logging.getLogger(__name__)


class OfflineQueue:
    """Offline mutation queue with a dead-letter list.

    Ordering is defined by a persisted, monotonically increasing sequence so
    replay order never depends on backend iteration details.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend
        self._count: int | None = None

    # ------------------------------------------------------------------
    def enqueue(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        description: str = "",
        entity_type: str | None = None,
    ) -> str:
        """Persist a deferred request and return its id.

        Raises :class:`StorageError` when the write fails; the request is then
        not queued.
        """

        request = QueuedRequest(
            id=uuid.uuid4().hex,
            sequence=self._next_sequence(),
            method=method,
            endpoint=endpoint,
            body=body,
            created_at=utcnow(),
            headers=dict(headers or {}),
            description=description or f"{method.upper()} {endpoint}",
            entity_type=entity_type or entity_type_for(endpoint),
        )
        self.backend.put(NS_QUEUE, request.id, request.to_dict())
        if self._count is not None:
            self._count += 1
        _LOGGER.info("Queued offline %s (%s)", request.description, request.id)
        return request.id

    def list(self) -> list[QueuedRequest]:
        """Return pending requests, oldest first."""

        items = [QueuedRequest.from_dict(raw) for raw in self.backend.list_all(NS_QUEUE)]
        items.sort(key=lambda item: item.sequence)
        return items

    def get(self, request_id: str) -> QueuedRequest | None:
        raw = self.backend.get(NS_QUEUE, request_id)
        return None if raw is None else QueuedRequest.from_dict(raw)

    def remove(self, request_id: str) -> None:
        """Delete a request; removing an unknown id is a no-op."""

        removed = self.backend.delete(NS_QUEUE, request_id)
        if removed and self._count is not None:
            self._count = max(self._count - 1, 0)

    def update(self, request: QueuedRequest) -> None:
        """Persist retry bookkeeping for a request still in the queue."""

        if self.backend.get(NS_QUEUE, request.id) is None:
            return
        self.backend.put(NS_QUEUE, request.id, request.to_dict())

    def count(self) -> int:
        if self._count is None:
            self._count = self.backend.count(NS_QUEUE)
        return self._count

    def clear(self) -> int:
        removed = self.backend.clear(NS_QUEUE)
        self._count = 0
        return removed

    # ------------------------------------------------------------------
    def dead_letter(
        self,
        request: QueuedRequest,
        *,
        reason: Literal["rejected", "retries_exhausted"],
        status: int | None = None,
    ) -> DeadLetter:
        """Move ``request`` out of the active queue into the dead-letter list."""

        item = DeadLetter(request=request, reason=reason, status=status)
        self.backend.put(NS_DEAD_LETTER, request.id, item.to_dict())
        self.remove(request.id)
        _LOGGER.warning(
            "Dead-lettered %s (%s): %s status=%s",
            request.description,
            request.id,
            reason,
            status,
        )
        return item

    def dead_letters(self) -> list[DeadLetter]:
        return [DeadLetter.from_dict(raw) for raw in self.backend.list_all(NS_DEAD_LETTER)]

    def dead_letter_count(self) -> int:
        return self.backend.count(NS_DEAD_LETTER)

    def requeue_dead_letter(self, request_id: str) -> str | None:
        """Append a dead-lettered request to the tail of the queue again."""

        raw = self.backend.get(NS_DEAD_LETTER, request_id)
        if raw is None:
            return None
        original = DeadLetter.from_dict(raw).request
        new_id = self.enqueue(
            original.method,
            original.endpoint,
            original.body,
            headers=original.headers,
            description=original.description,
            entity_type=original.entity_type,
        )
        self.backend.delete(NS_DEAD_LETTER, request_id)
        return new_id

    def discard_dead_letter(self, request_id: str) -> bool:
        return self.backend.delete(NS_DEAD_LETTER, request_id)

    # ------------------------------------------------------------------
    def _next_sequence(self) -> int:
        meta = self.backend.get(NS_META, META_SEQUENCE)
        if meta:
            current = int(meta["value"])
        else:
            # Counter missing: continue after the newest queued item.
            current = max((int(raw.get("sequence", 0)) for raw in self.backend.list_all(NS_QUEUE)), default=0)
        nxt = current + 1
        self.backend.put(NS_META, META_SEQUENCE, {"value": nxt})
        return nxt
