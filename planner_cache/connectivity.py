from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Callable, Optional, Union

log = logging.getLogger("planner_cache.connectivity")

ONLINE_MESSAGE = "Back online - syncing data..."
OFFLINE_MESSAGE = "You are offline. Changes will sync when back online."


class Signal(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    SYNC_REQUESTED = "sync_requested"


class ConnectivityMonitor:
    """Edge-triggered online/offline tracker.

    Producers post signals onto one channel; a single consumer task applies
    them in arrival order. Repeating the current state is ignored, and there is
    no polling or retry timer: only signals cause callbacks.
    """

    def __init__(
        self,
        initial_online: Union[bool, Callable[[], bool]] = True,
        on_online: Optional[Callable[[], object]] = None,
        on_offline: Optional[Callable[[], object]] = None,
        on_sync_requested: Optional[Callable[[], object]] = None,
        on_status: Optional[Callable[[str, dict], None]] = None,
    ) -> None:
        self._online = bool(initial_online() if callable(initial_online) else initial_online)
        self.on_online = on_online
        self.on_offline = on_offline
        # Defaults to the online callback: both start a sync attempt.
        self.on_sync_requested = on_sync_requested
        self.on_status_cb = on_status
        self._signals: asyncio.Queue[Signal] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    def is_online(self) -> bool:
        return self._online

    # ------------------------------------------------------------------ producers

    def report_online(self) -> None:
        self._signals.put_nowait(Signal.ONLINE)

    def report_offline(self) -> None:
        self._signals.put_nowait(Signal.OFFLINE)

    def request_sync(self) -> None:
        self._signals.put_nowait(Signal.SYNC_REQUESTED)

    # ------------------------------------------------------------------ consumer

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def join(self) -> None:
        """Wait until every posted signal has been handled."""
        await self._signals.join()

    async def run(self) -> None:
        while True:
            signal = await self._signals.get()
            try:
                self.handle(signal)
            except Exception:
                log.exception("Connectivity handler error (signal=%s)", signal.value)
            finally:
                self._signals.task_done()

    def handle(self, signal: Signal) -> None:
        if signal is Signal.SYNC_REQUESTED:
            log.info("Sync requested")
            self._call(self.on_sync_requested or self.on_online, "on_sync_requested")
            return

        online = signal is Signal.ONLINE
        if online == self._online:
            log.debug("Ignoring repeated %s signal", signal.value)
            return
        self._online = online

        if online:
            log.info("Back online")
            self._call(self.on_online, "on_online")
            self._emit_status("connectivity_online", {"level": "success", "message": ONLINE_MESSAGE})
        else:
            log.info("Gone offline")
            self._call(self.on_offline, "on_offline")
            self._emit_status("connectivity_offline", {"level": "warning", "message": OFFLINE_MESSAGE})

    def _call(self, cb: Optional[Callable[[], object]], name: str) -> None:
        if cb is None:
            return
        try:
            cb()
        except Exception:
            log.exception("Connectivity callback error (%s)", name)

    def _emit_status(self, typ: str, details: dict) -> None:
        try:
            if self.on_status_cb:
                self.on_status_cb(typ, details)
        except Exception:
            log.exception("Status callback error (type=%s)", typ)
