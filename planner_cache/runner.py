# planner_cache/runner.py
import asyncio
import logging
import os
import signal
import sys

import yaml

from planner_api.remote_client import RestRemoteDataClient
from planner_api.ws_feed import WebSocketChangeFeed
from planner_cache import settings
from planner_cache.context import feed_status_to_connectivity, open_context
from planner_cache.errors import StorageUnavailable
from planner_cache.logging_config import setup_logging


def load_config(path: str) -> dict:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _log_status(typ: str, details: dict) -> None:
    log = logging.getLogger("planner_cache.status")
    message = details.get("message")
    if message:
        log.info("[%s] %s", typ, message)
    else:
        log.debug("[%s] %s", typ, details)


async def run(cfg: dict) -> int:
    log = logging.getLogger("runner")
    api_cfg = cfg.get("api") or {}
    feed_cfg = cfg.get("feed") or {}

    stores = list(settings.DEFAULT_STORES)
    for name in cfg.get("stores") or []:
        if name not in stores:
            stores.append(name)

    remote = RestRemoteDataClient(
        base_url=api_cfg.get("base_url"),
        api_key=api_cfg.get("key"),
        timeout_s=api_cfg.get("timeout_s"),
    )
    try:
        ctx = await open_context(
            remote,
            db_path=cfg.get("db_path"),
            stores=stores,
            version=int(cfg.get("schema_version", settings.SCHEMA_VERSION)),
            initial_online=bool(cfg.get("start_online", True)),
            on_status=_log_status,
        )
    except StorageUnavailable as exc:
        log.error("Local cache unavailable: %s", exc)
        return 2

    feed = WebSocketChangeFeed(
        url=feed_cfg.get("url"),
        on_status=feed_status_to_connectivity(ctx.monitor, _log_status),
        on_sync_required=ctx.monitor.request_sync,
    )
    ctx.attach_feed(feed)
    subscribed = ctx.subscribe(cfg.get("subscribe") or [])
    ctx.start()

    last_sync = await ctx.engine.get_last_sync()
    pending = await ctx.queue.size()
    log.info(
        "Planner cache running db=%s subscribed=%s pending=%d last_sync=%s",
        ctx.store.db_path,
        ",".join(subscribed) or "-",
        pending,
        last_sync or "never",
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
    finally:
        log.info("Shutting down")
        await ctx.close()
    return 0


def main() -> None:
    cfg_path = sys.argv[1] if len(sys.argv) > 1 else os.getenv("PLANNER_CONFIG", "config/config.example.yaml")
    cfg = load_config(cfg_path)
    setup_logging(cfg.get("log_level", "INFO"), component="planner_cache")
    raise SystemExit(asyncio.run(run(cfg)))


if __name__ == "__main__":
    main()
