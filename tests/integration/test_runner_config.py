from __future__ import annotations

import asyncio
from pathlib import Path

import yaml

import planner_cache.runner as runner_mod


def test_example_config_loads():
    cfg = runner_mod.load_config(str(Path(__file__).resolve().parents[2] / "config" / "config.example.yaml"))

    assert cfg["db_path"]
    assert isinstance(cfg.get("subscribe"), list)
    assert "base_url" in cfg["api"]
    assert "url" in cfg["feed"]


def test_empty_config_is_a_dict(tmp_path: Path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    assert runner_mod.load_config(str(path)) == {}


def test_unavailable_storage_exits_with_code_2(tmp_path: Path):
    blocker = tmp_path / "db_dir"
    blocker.mkdir()
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        yaml.safe_dump({"db_path": str(blocker), "api": {"base_url": "http://localhost:1", "key": ""}}),
        encoding="utf-8",
    )

    code = asyncio.run(runner_mod.run(runner_mod.load_config(str(cfg_path))))
    assert code == 2
