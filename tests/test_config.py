from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from chatnav.core.config import RouterConfig, load_config, load_settings, save_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("CHATNAV_"):
            monkeypatch.delenv(name, raising=False)

    config = load_config()

    assert config == RouterConfig()
    assert config.advisory_timeout_s == 1.5
    assert config.max_enrichment_steps == 2
    assert config.dedupe_window_ms == 400


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATNAV_ADVISORY_TIMEOUT_S", "0.25")
    monkeypatch.setenv("CHATNAV_MAX_ENRICHMENT_STEPS", "3")
    monkeypatch.setenv("CHATNAV_ADVISORY_AUTO_EXECUTE", "false")
    monkeypatch.setenv("CHATNAV_DEDUPE_WINDOW_MS", "not-a-number")

    config = load_config()

    assert config.advisory_timeout_s == 0.25
    assert config.max_enrichment_steps == 3
    assert config.advisory_auto_execute is False
    assert config.dedupe_window_ms == 400


def test_settings_file_overrides_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATNAV_MIN_SELECT_CONFIDENCE", "0.5")
    save_settings(tmp_path, {"min_select_confidence": 0.7, "max_pool_size": 6})

    config = load_config(tmp_path)

    assert config.min_select_confidence == 0.7
    assert config.max_pool_size == 6


def test_load_settings_skips_unknown_and_mistyped_keys(tmp_path: Path) -> None:
    (tmp_path / "chatnav.json").write_text(
        json.dumps(
            {
                "unknown": 1,
                "advisory_auto_execute": "yes",
                "max_pool_size": True,
                "advisory_timeout_s": 2,
                "default_command_scope": "widget",
            }
        ),
        encoding="utf-8",
    )

    overrides = load_settings(tmp_path)

    assert overrides == {"advisory_timeout_s": 2.0, "default_command_scope": "widget"}


def test_load_settings_ignores_broken_file(tmp_path: Path) -> None:
    (tmp_path / "chatnav.json").write_text("{not json", encoding="utf-8")

    assert load_settings(tmp_path) == {}
    assert load_settings(tmp_path / "missing") == {}


@pytest.mark.parametrize(
    "overrides",
    [
        {"advisory_timeout_s": 0},
        {"max_enrichment_steps": 10},
        {"max_calls_per_step": 0},
        {"min_select_confidence": 1.5},
        {"min_select_confidence": 0.9, "auto_execute_confidence": 0.8},
        {"max_pool_size": 0},
        {"default_command_scope": "sidebar"},
    ],
)
def test_invalid_config_raises(overrides: dict) -> None:
    with pytest.raises(ValueError):
        RouterConfig(**overrides)
