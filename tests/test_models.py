from __future__ import annotations

from datetime import UTC, datetime, timedelta

from theatre_sync.models import (
    CachedDataset,
    DeadLetter,
    DrainSummary,
    QueuedRequest,
    entity_type_for,
    parse_timestamp,
    request_fingerprint,
)


def test_entity_type_for() -> None:
    assert entity_type_for("/api/theatres/3") == "theatres"
    assert entity_type_for("https://theatre.example/api/duty-logs?x=1") == "duty-logs"
    assert entity_type_for("/api/") == "unknown"
    assert entity_type_for("/health") == "unknown"


def test_fingerprint_ignores_key_order() -> None:
    first = request_fingerprint("post", "/api/surgeries", {"a": 1, "b": 2})
    second = request_fingerprint("POST", "/api/surgeries", {"b": 2, "a": 1})

    assert first == second
    assert first != request_fingerprint("PUT", "/api/surgeries", {"a": 1, "b": 2})


def test_queued_request_from_stored_record() -> None:
    request = QueuedRequest.from_dict(
        {
            "id": "abc",
            "sequence": "4",
            "method": "patch",
            "endpoint": "/api/theatres/2",
            "created_at": "2026-10-19T07:30:00Z",
        }
    )

    assert request.method == "PATCH"
    assert request.sequence == 4
    assert request.created_at == datetime(2026, 10, 19, 7, 30, tzinfo=UTC)
    assert request.last_error is None
    assert "last_error" not in request.to_dict()
    assert request.failed("status 502").to_dict()["last_error"] == "status 502"
    assert request.retry_count == 0


def test_dead_letter_record() -> None:
    request = QueuedRequest(id="abc", sequence=1, method="POST", endpoint="/api/alerts")
    letter = DeadLetter.from_dict(DeadLetter(request=request, reason="retries_exhausted", status=500).to_dict())

    assert letter.id == "abc"
    assert letter.reason == "retries_exhausted"
    assert letter.status == 500


def test_cached_dataset_staleness() -> None:
    fetched = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)
    dataset = CachedDataset(key="theatres", payload=[], fetched_at=fetched, ttl=900)

    assert dataset.expires_at == fetched + timedelta(minutes=15)
    assert not dataset.is_stale(fetched + timedelta(minutes=10))
    assert dataset.is_stale(fetched + timedelta(minutes=16))
    assert dataset.age(fetched - timedelta(minutes=1)) == 0.0


def test_parse_timestamp_rejects_garbage() -> None:
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("2026-10-19T08:00:00").tzinfo is UTC


def test_drain_summary_to_dict() -> None:
    request = QueuedRequest(id="abc", sequence=1, method="POST", endpoint="/api/alerts")
    summary = DrainSummary(succeeded=2, dead_letters=[DeadLetter(request=request, reason="rejected", status=400)])

    payload = summary.to_dict()

    assert payload["dead_letter_ids"] == ["abc"]
    assert payload["finished_at"] is None
