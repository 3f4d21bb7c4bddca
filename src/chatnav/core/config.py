from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

SETTINGS_FILE = "chatnav.json"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class RouterConfig:
    advisory_timeout_s: float = 1.5
    max_enrichment_steps: int = 2
    max_calls_per_step: int = 1
    min_select_confidence: float = 0.6
    auto_execute_confidence: float = 0.85
    advisory_auto_execute: bool = True
    dedupe_window_ms: int = 400
    action_trace_max: int = 50
    recent_action_window: int = 5
    choice_window: int = 5
    option_set_ttl_turns: int = 4
    soft_active_ttl_turns: int = 2
    paused_ttl_turns: int = 8
    scope_typo_ttl_turns: int = 1
    scope_typo_max_distance: int = 2
    max_pool_size: int = 12
    default_command_scope: str = "dashboard"

    def __post_init__(self) -> None:
        if self.advisory_timeout_s <= 0:
            raise ValueError("advisory_timeout_s must be positive")
        for name in ("max_enrichment_steps", "max_calls_per_step"):
            value = getattr(self, name)
            if value < 0 or value > 9:
                raise ValueError(f"{name} must be between 0 and 9")
        if self.max_calls_per_step < 1:
            raise ValueError("max_calls_per_step must be at least 1")
        for name in ("min_select_confidence", "auto_execute_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")
        if self.auto_execute_confidence < self.min_select_confidence:
            raise ValueError("auto_execute_confidence must not be below min_select_confidence")
        if self.dedupe_window_ms < 0:
            raise ValueError("dedupe_window_ms must be non-negative")
        for name in (
            "action_trace_max",
            "recent_action_window",
            "choice_window",
            "option_set_ttl_turns",
            "soft_active_ttl_turns",
            "paused_ttl_turns",
            "scope_typo_ttl_turns",
            "max_pool_size",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.default_command_scope not in {"chat", "widget", "dashboard", "workspace"}:
            raise ValueError("default_command_scope must name a scope")


def load_config(data_root: Path | None = None) -> RouterConfig:
    defaults = RouterConfig()
    config = RouterConfig(
        advisory_timeout_s=_env_float("CHATNAV_ADVISORY_TIMEOUT_S", defaults.advisory_timeout_s),
        max_enrichment_steps=_env_int("CHATNAV_MAX_ENRICHMENT_STEPS", defaults.max_enrichment_steps),
        max_calls_per_step=_env_int("CHATNAV_MAX_CALLS_PER_STEP", defaults.max_calls_per_step),
        min_select_confidence=_env_float(
            "CHATNAV_MIN_SELECT_CONFIDENCE", defaults.min_select_confidence
        ),
        auto_execute_confidence=_env_float(
            "CHATNAV_AUTO_EXECUTE_CONFIDENCE", defaults.auto_execute_confidence
        ),
        advisory_auto_execute=_env_bool(
            "CHATNAV_ADVISORY_AUTO_EXECUTE", defaults.advisory_auto_execute
        ),
        dedupe_window_ms=_env_int("CHATNAV_DEDUPE_WINDOW_MS", defaults.dedupe_window_ms),
        scope_typo_max_distance=_env_int(
            "CHATNAV_SCOPE_TYPO_MAX_DISTANCE", defaults.scope_typo_max_distance
        ),
        default_command_scope=os.getenv(
            "CHATNAV_DEFAULT_COMMAND_SCOPE", defaults.default_command_scope
        ),
    )
    if data_root is None:
        return config
    overrides = load_settings(data_root)
    if not overrides:
        return config
    return replace(config, **overrides)


def load_settings(data_root: Path) -> dict[str, Any]:
    path = data_root / SETTINGS_FILE
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return {}
    if not isinstance(payload, dict):
        return {}
    defaults = RouterConfig()
    names = {item.name for item in fields(RouterConfig)}
    overrides: dict[str, Any] = {}
    for key, value in payload.items():
        if key not in names:
            continue
        expected = type(getattr(defaults, key))
        if expected is bool:
            if isinstance(value, bool):
                overrides[key] = value
        elif isinstance(value, bool):
            continue
        elif expected is float and isinstance(value, (int, float)):
            overrides[key] = float(value)
        elif expected is int and isinstance(value, int):
            overrides[key] = value
        elif expected is str and isinstance(value, str):
            overrides[key] = value
    return overrides


def save_settings(data_root: Path, overrides: dict[str, Any]) -> None:
    path = data_root / SETTINGS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(overrides, indent=2, sort_keys=True), encoding="utf-8")
