from __future__ import annotations

import importlib
import logging


def test_invalid_env_does_not_crash(monkeypatch):
    monkeypatch.setenv("WS_PING_INTERVAL_S", "not-a-number")
    monkeypatch.setenv("WS_RECONNECT_BACKOFF_S", "nope")
    monkeypatch.setenv("PLANNER_API_TIMEOUT_S", "soon")
    monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "invalid")
    monkeypatch.setenv("PLANNER_DB_PATH", "   ")

    import planner_cache.settings as settings_mod

    try:
        importlib.reload(settings_mod)
        assert settings_mod.WS_PING_INTERVAL_S == 20
        assert settings_mod.WS_RECONNECT_BACKOFF_S == 1.0
        assert settings_mod.API_TIMEOUT_S == 10.0
        assert settings_mod.SQLITE_BUSY_TIMEOUT_MS == 30000
        assert settings_mod.DB_PATH == "data/planner_cache.sqlite3"
    finally:
        monkeypatch.undo()
        importlib.reload(settings_mod)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("WS_MAX_QUEUE", "32")
    monkeypatch.setenv("INSECURE_TLS", "yes")
    monkeypatch.setenv("PLANNER_FEED_URL", "wss://feed.example/changes")

    import planner_cache.settings as settings_mod

    try:
        importlib.reload(settings_mod)
        assert settings_mod.WS_MAX_QUEUE == 32
        assert settings_mod.INSECURE_TLS is True
        assert settings_mod.FEED_URL == "wss://feed.example/changes"
    finally:
        monkeypatch.undo()
        importlib.reload(settings_mod)


def test_default_stores_include_the_queue():
    from planner_cache import settings

    assert settings.PENDING_SYNC_STORE in settings.DEFAULT_STORES
    assert len(set(settings.DEFAULT_STORES)) == len(settings.DEFAULT_STORES)
    assert settings.PENDING_SYNC_STORE not in settings.CACHE_TTL_MS
    assert set(settings.CACHE_TTL_MS) <= set(settings.DEFAULT_STORES)


def test_setup_logging_writes_daily_file(tmp_path):
    from planner_cache.logging_config import setup_logging

    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        path = setup_logging("debug", component="planner_cache", subdir="test", base_dir=tmp_path)
        logging.getLogger("planner_cache.sync").info("hello from the sync engine")
        for h in root.handlers:
            h.flush()
        assert path.parent == tmp_path / "planner_cache" / "test"
        assert "hello from the sync engine" in path.read_text(encoding="utf-8")
        assert logging.getLogger("websockets").level == logging.WARNING
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        root.setLevel(saved[0])
        for h in saved[1]:
            root.addHandler(h)
