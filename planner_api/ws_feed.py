import asyncio
import contextlib
import json
import logging
import os
import random
import ssl
from typing import Callable, Optional

from websockets.asyncio.client import connect as ws_connect  # type: ignore
from websockets.exceptions import ConnectionClosed  # type: ignore

from planner_api.protocols import is_sync_required, parse_change_message
from planner_cache import settings
from planner_cache.realtime import QueueChangeChannel


def store_url(base_url: str, store: str) -> str:
    sep = "&" if "?" in base_url else "?"
    return f"{base_url}{sep}store={store}"


class WebSocketChangeChannel(QueueChangeChannel):
    """One store's change feed over a websocket, with keepalive and auto-reconnect.

    Parsed change events are queued for the listener; ``sync_required``
    control messages go to ``on_sync_required`` instead.
    """

    def __init__(
        self,
        ws_url: str,
        store: str,
        on_status: Optional[Callable[[str, dict], None]] = None,
        on_sync_required: Optional[Callable[[], None]] = None,
        insecure_tls: bool = False,
        ping_interval_s: int = 20,
        ping_timeout_s: int = 60,
        reconnect_backoff_s: float = 1.0,
        reconnect_backoff_max_s: float = 30.0,
        open_timeout_s: float = 10.0,
        recv_poll_timeout_s: float = 5.0,
        max_queue: int = 256,
    ):
        super().__init__(maxsize=max_queue)
        self.ws_url = ws_url
        self.store = store
        self.on_status_cb = on_status
        self.on_sync_required = on_sync_required
        self.insecure_tls = insecure_tls

        self.ping_interval_s = max(0, int(ping_interval_s))
        self.ping_timeout_s = max(1, int(ping_timeout_s))
        self.reconnect_backoff_s = max(0.0, float(reconnect_backoff_s))
        self.reconnect_backoff_max_s = max(self.reconnect_backoff_s, float(reconnect_backoff_max_s))
        self.open_timeout_s = max(1.0, float(open_timeout_s))
        self.recv_poll_timeout_s = max(0.01, float(recv_poll_timeout_s))
        self.max_queue = max(1, int(max_queue))

        self._ws = None
        self._stop = False
        self._log = logging.getLogger("websocket")
        self._task: Optional[asyncio.Task] = None

    def _emit_status(self, typ: str, details: dict) -> None:
        try:
            if self.on_status_cb:
                self.on_status_cb(typ, {"store": self.store, **details})
        except Exception:
            self._log.exception("Status callback error (type=%s)", typ)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run_async())
        return self._task

    async def close(self) -> None:
        self._stop = True
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        await super().close()

    async def _ping_loop(self) -> None:
        if self.ping_interval_s <= 0 or self._ws is None:
            return
        while not self._stop:
            await asyncio.sleep(self.ping_interval_s)
            if self._stop or self._ws is None:
                return
            try:
                payload = os.urandom(4)
                pong_waiter = await self._ws.ping(payload)
                self._emit_status("ws_ping", {"nbytes": len(payload)})
                await asyncio.wait_for(pong_waiter, timeout=self.ping_timeout_s)
                self._emit_status("ws_pong", {"nbytes": len(payload)})
            except Exception as exc:
                self._emit_status("ws_ping_timeout", {"error": str(exc)})
                try:
                    await self._ws.close()
                except Exception:
                    pass
                return

    async def _read_loop(self) -> None:
        assert self._ws is not None
        while not self._stop:
            try:
                msg = await asyncio.wait_for(self._ws.recv(), timeout=self.recv_poll_timeout_s)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as exc:
                if not self._stop:
                    rcvd = getattr(exc, "rcvd", None)
                    self._emit_status("ws_close", {"code": getattr(rcvd, "code", None), "msg": str(exc)})
                return
            except Exception as exc:
                self._emit_status("ws_error", {"error": str(exc)})
                return

            if msg is None:
                return

            try:
                payload = json.loads(msg)
            except Exception:
                self._log.exception("Failed to parse WS message (store=%s)", self.store)
                continue

            if is_sync_required(payload):
                self._emit_status("sync_required", {})
                if self.on_sync_required:
                    try:
                        self.on_sync_required()
                    except Exception:
                        self._log.exception("sync_required callback error (store=%s)", self.store)
                continue

            event = parse_change_message(payload)
            if event is None:
                self._log.debug("Ignoring WS message (store=%s): %s", self.store, payload)
                continue
            await self.put(event)

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.insecure_tls:
            return None
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    async def _run_async(self) -> None:
        attempt = 0
        url = store_url(self.ws_url, self.store)

        while not self._stop:
            attempt += 1
            ssl_ctx = self._ssl_context()
            try:
                connect_kwargs = {
                    "ping_interval": None,
                    "ping_timeout": None,
                    "close_timeout": 5,
                    "open_timeout": self.open_timeout_s,
                    "max_queue": self.max_queue,
                }
                if ssl_ctx is not None:
                    connect_kwargs["ssl"] = ssl_ctx
                async with ws_connect(url, **connect_kwargs) as ws:
                    self._ws = ws
                    attempt = 0
                    self._emit_status("ws_connect", {"url": url})

                    ping_task = asyncio.create_task(self._ping_loop())
                    try:
                        await self._read_loop()
                    finally:
                        ping_task.cancel()
                        with contextlib.suppress(asyncio.CancelledError, Exception):
                            await ping_task
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._emit_status("ws_run_exception", {"error": str(exc)})
                self._log.warning("WebSocket run exception (store=%s): %s", self.store, exc)
            finally:
                self._ws = None

            if self._stop:
                break

            # Exponential backoff with jitter.
            base = self.reconnect_backoff_s
            cap = self.reconnect_backoff_max_s
            if base <= 0.0 or cap <= 0.0:
                backoff = 0.0
            else:
                backoff = min(cap, base * (2 ** max(0, attempt - 1)))
                backoff = backoff * (0.7 + 0.6 * random.random())
            self._emit_status("ws_reconnect_wait", {"sleep_s": float(backoff), "attempt": attempt})
            await asyncio.sleep(backoff)


class WebSocketChangeFeed:
    """Opens one websocket channel per store against a shared feed URL."""

    def __init__(
        self,
        url: Optional[str] = None,
        on_status: Optional[Callable[[str, dict], None]] = None,
        on_sync_required: Optional[Callable[[], None]] = None,
        **channel_kwargs,
    ) -> None:
        self.url = url or settings.FEED_URL
        self.on_status = on_status
        self.on_sync_required = on_sync_required
        self.channel_kwargs = {
            "insecure_tls": settings.INSECURE_TLS,
            "ping_interval_s": settings.WS_PING_INTERVAL_S,
            "ping_timeout_s": settings.WS_PING_TIMEOUT_S,
            "reconnect_backoff_s": settings.WS_RECONNECT_BACKOFF_S,
            "reconnect_backoff_max_s": settings.WS_RECONNECT_BACKOFF_MAX_S,
            "open_timeout_s": settings.WS_OPEN_TIMEOUT_S,
            "max_queue": settings.WS_MAX_QUEUE,
            **channel_kwargs,
        }

    def open(self, store: str) -> WebSocketChangeChannel:
        channel = WebSocketChangeChannel(
            self.url,
            store,
            on_status=self.on_status,
            on_sync_required=self.on_sync_required,
            **self.channel_kwargs,
        )
        channel.start()
        return channel
