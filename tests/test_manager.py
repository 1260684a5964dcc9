from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from theatre_sync.config import OfflineSyncConfig
from theatre_sync.exceptions import OfflineSyncError, StorageError
from theatre_sync.manager import OfflineSyncManager
from theatre_sync.models import ConnectivityState
from theatre_sync.storage import MemoryBackend

THEATRE_DATASETS = [
    {"key": "theatres", "path": "/api/theatres", "ttl": 3600},
    {"key": "today-allocations", "path": "/api/allocations?date=today", "ttl": 900},
]


def make_manager(api, **kwargs) -> OfflineSyncManager:
    config = OfflineSyncConfig.from_options({"base_url": "https://theatre.example", "datasets": THEATRE_DATASETS})
    with patch("theatre_sync.manager.ApiClient", return_value=api):
        return OfflineSyncManager(config, session=MagicMock(), backend=MemoryBackend(), **kwargs)


async def settle(manager: OfflineSyncManager) -> None:
    while manager._background:
        await asyncio.gather(*list(manager._background))


def test_components_require_start(tmp_path) -> None:
    config = OfflineSyncConfig.from_options(
        {"base_url": "https://theatre.example", "store_path": str(tmp_path / "sync.db")}
    )
    manager = OfflineSyncManager(config)

    with pytest.raises(OfflineSyncError) as err:
        _ = manager.fetch
    assert err.value.reason == "not_started"

    status = manager.status()
    assert status["pending"] == 0
    assert status["connection"]["state"] == "online"
    assert status["last_drain"] is None
    assert status["cache_oldest_age_seconds"] is None


@pytest.mark.asyncio
async def test_reconnect_drains_queue_then_goes_online(api) -> None:
    manager = make_manager(api, initial_online=False)
    notifications = []
    manager.register_notification_listener(notifications.append)

    queued = await manager.fetch.post("/api/duty-logs", {"action": "start"}, description="Start duty")
    assert queued.kind == "queued"
    assert api.calls == []

    manager.connectivity.set_online(True)
    assert manager.connectivity.state is ConnectivityState.RECONNECTING
    await settle(manager)

    assert manager.connectivity.state is ConnectivityState.ONLINE
    assert manager.queue.count() == 0
    assert api.sent("POST") == ["/api/duty-logs"]
    assert notifications == [{"level": "info", "message": "Synced 1 offline change(s)", "pending": 0}]


@pytest.mark.asyncio
async def test_rejected_replay_notifies_error(api) -> None:
    manager = make_manager(api, initial_online=False)
    notifications = []
    manager.register_notification_listener(notifications.append)
    api.respond("POST", "/api/surgeries", 409)

    queued = await manager.fetch.post("/api/surgeries", {"slot": "08:00"}, description="Book 08:00 slot")
    manager.connectivity.set_online(True)
    await settle(manager)

    assert notifications == [
        {
            "level": "error",
            "message": "Offline change rejected: Book 08:00 slot",
            "request_id": queued.request.id,
            "status": 409,
            "reason": "rejected",
        }
    ]
    assert manager.status()["dead_letters"] == 1


@pytest.mark.asyncio
async def test_sync_now_runs_drain_and_prefetch(api) -> None:
    manager = make_manager(api)
    manager.queue.enqueue("POST", "/api/alerts", {"level": "high"})

    result = await manager.async_sync_now()

    assert result["drain"]["succeeded"] == 1
    assert result["prefetch"]["cached"] == 2
    status = result["status"]
    assert status["pending"] == 0
    assert status["cached_datasets"] == 2
    assert status["last_manual_sync_at"] is not None
    assert status["last_drain"]["succeeded"] == 1


@pytest.mark.asyncio
async def test_sync_now_requires_an_action(api) -> None:
    manager = make_manager(api)

    with pytest.raises(OfflineSyncError) as err:
        await manager.async_sync_now(drain=False, prefetch=False)

    assert err.value.reason == "invalid_request"


@pytest.mark.asyncio
async def test_start_probes_and_stop_cancels_loops(api) -> None:
    manager = make_manager(api)
    with (
        patch.object(manager.processor, "run_periodic", return_value=asyncio.sleep(3600)),
        patch.object(manager.prefetch, "run_periodic", return_value=asyncio.sleep(3600)),
        patch.object(manager.connectivity, "run_probe_loop", return_value=asyncio.sleep(3600)),
    ):
        await manager.async_start()
        assert manager.started
        assert api.sent() == ["/api/health"]
        await manager.async_start()
        assert api.sent() == ["/api/health"]

    await manager.async_stop()
    assert not manager.started


@pytest.mark.asyncio
async def test_stop_cancels_running_drain(api) -> None:
    manager = make_manager(api, initial_online=False)
    await manager.fetch.post("/api/duty-logs", {"action": "start"})
    await manager.fetch.post("/api/duty-logs", {"action": "handover"})
    api.gate = asyncio.Event()

    manager.connectivity.set_online(True)
    for _ in range(5):
        await asyncio.sleep(0)
    assert manager.processor.draining
    assert len(api.calls) == 1

    await manager.async_stop()
    assert not manager.processor.draining

    api.gate.set()
    for _ in range(5):
        await asyncio.sleep(0)

    assert len(api.calls) == 1
    assert manager.queue.count() == 2
    assert [item.retry_count for item in manager.queue.list()] == [0, 0]
    assert manager.processor.last_summary is None


@pytest.mark.asyncio
async def test_failed_background_drain_is_logged(api, caplog) -> None:
    manager = make_manager(api)
    manager.queue.enqueue("POST", "/api/transfers", {"patient": "p-7"})

    with patch.object(manager.processor, "drain", AsyncMock(side_effect=StorageError("disk full"))):
        result = await manager.fetch.post("/api/transfers", {"patient": "p-8"})
        assert result.kind == "queued"
        for _ in range(5):
            await asyncio.sleep(0)

    assert not manager._background
    assert "Background sync task failed: disk full" in caplog.text
