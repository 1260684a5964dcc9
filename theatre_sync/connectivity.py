"""Connectivity detection: the only writer of :class:`ConnectivityState`."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .client import ApiClient
from .const import HEALTH_ENDPOINT
from .exceptions import NetworkError
from .models import ConnectivityState, utcnow
from .utils.logging import warn_once

_LOGGER = logging.getLogger(__name__)

StateListener = Callable[[ConnectivityState, ConnectivityState], Any]


class ConnectivityMonitor:
    """Track ONLINE / OFFLINE / RECONNECTING transitions.

    ONLINE -> OFFLINE on a status change or a request-level network failure.
    OFFLINE -> RECONNECTING when the network reports online again.
    RECONNECTING -> ONLINE once the queue drain finishes.
    RECONNECTING -> OFFLINE if connectivity drops mid-drain.
    """

    def __init__(
        self,
        *,
        initial_online: bool = True,
        client: ApiClient | None = None,
        health_path: str = HEALTH_ENDPOINT,
    ) -> None:
        self._state = ConnectivityState.ONLINE if initial_online else ConnectivityState.OFFLINE
        self.client = client
        self.health_path = health_path
        self.last_changed_at: datetime = utcnow()
        self.last_error: str | None = None
        self._listeners: list[StateListener] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is ConnectivityState.ONLINE

    @property
    def is_reachable(self) -> bool:
        """True unless the monitor believes the network is down."""

        return self._state is not ConnectivityState.OFFLINE

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener(old, new)``; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    def set_online(self, online: bool) -> None:
        """Apply a runtime network-status signal."""

        if not online:
            self._transition(ConnectivityState.OFFLINE)
            return
        if self._state is ConnectivityState.OFFLINE:
            self.last_error = None
            self._transition(ConnectivityState.RECONNECTING)

    def report_network_failure(self, error: str | None = None) -> None:
        if error:
            self.last_error = error
        if self._state is not ConnectivityState.OFFLINE:
            warn_once(_LOGGER, "network_unreachable", "switching to offline mode (%s)", error or "no response")
        self._transition(ConnectivityState.OFFLINE)

    def reconnect_complete(self) -> None:
        if self._state is ConnectivityState.RECONNECTING:
            self._transition(ConnectivityState.ONLINE)

    # ------------------------------------------------------------------
    async def probe(self) -> bool:
        """Check reachability against the API health endpoint.

        Any HTTP answer counts as reachable; only a missing response does not.
        """

        if self.client is None:
            return self.is_reachable
        try:
            await self.client.request("GET", self.health_path)
        except NetworkError as err:
            self.last_error = str(err)
            self.set_online(False)
            return False
        self.set_online(True)
        return True

    async def run_probe_loop(self, *, interval_seconds: float = 15) -> None:
        while True:
            try:
                await self.probe()
            except asyncio.CancelledError:
                raise
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.exception("Connectivity probe failed: %s", err)
            await asyncio.sleep(interval_seconds)

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "online": self.is_online,
            "last_changed_at": self.last_changed_at.isoformat(),
            "last_error": self.last_error,
        }

    # ------------------------------------------------------------------
    def _transition(self, new: ConnectivityState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        self.last_changed_at = utcnow()
        _LOGGER.info("Connectivity %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            try:
                result = listener(old, new)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
            except Exception as err:  # pragma: no cover - defensive log
                _LOGGER.debug("Connectivity listener raised error: %s", err, exc_info=True)
