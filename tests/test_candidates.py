from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatnav.core.types import CandidateRef, ContinuityState
from chatnav.routing import clarifier
from chatnav.routing.candidates import (
    StaticSnapshotSource,
    build_scoped_pool,
    snapshot_fingerprint,
)


def _panel(candidate_id: str, label: str, scope: str = "dashboard") -> CandidateRef:
    return CandidateRef(id=candidate_id, label=label, type="panel", scope=scope)  # type: ignore[arg-type]


def test_scoped_pool_never_mixes_scopes() -> None:
    source = StaticSnapshotSource(
        {
            "dashboard": [
                _panel("recent", "Recent"),
                _panel("stray", "Stray widget item", scope="widget"),
                _panel("recent", "Recent again"),
            ]
        }
    )
    state = ContinuityState(session_id="s")

    pool = build_scoped_pool("dashboard", state, source, limit=10)

    assert pool.candidate_ids == ("recent",)
    assert all(candidate.scope == "dashboard" for candidate in pool.candidates)


def test_scoped_pool_is_capped() -> None:
    source = StaticSnapshotSource(
        {"dashboard": [_panel(f"p{i}", f"Panel {i}") for i in range(20)]}
    )

    pool = build_scoped_pool("dashboard", ContinuityState(session_id="s"), source, limit=5)

    assert len(pool) == 5


def test_widget_instances() -> None:
    source = StaticSnapshotSource(
        {
            "widget": {
                "quick-links-a": [_panel("a1", "Alpha", scope="widget")],
                "quick-links-d": [_panel("d1", "Delta", scope="widget")],
            }
        }
    )

    assert source.instances("widget") == ["quick-links-a", "quick-links-d"]
    assert source.get_visible_candidates("widget", "quick-links-d")[0].id == "d1"
    # Two instances and none focused: nothing is visible.
    assert source.get_visible_candidates("widget", None) == []


def test_single_widget_instance_is_the_default() -> None:
    source = StaticSnapshotSource({"widget": {"only": [_panel("w1", "One", scope="widget")]}})

    assert [c.id for c in source.get_visible_candidates("widget", None)] == ["w1"]


def test_chat_pool_uses_paused_set() -> None:
    state = ContinuityState(session_id="s")
    option_set = clarifier.register_option_set(
        state, [_panel("a", "Alpha"), _panel("b", "Beta")], scope="dashboard", question_text="Which?"
    )
    state.paused_option_set = state.active_option_set
    state.active_option_set = None

    pool = build_scoped_pool("chat", state, StaticSnapshotSource(), limit=10)

    assert pool.origin == "paused_set"
    assert pool.scope == "chat"
    assert pool.scope_instance_id == option_set.option_set_id
    assert {candidate.scope for candidate in pool.candidates} == {"chat"}


def test_snapshot_fingerprint_is_order_insensitive() -> None:
    first = snapshot_fingerprint(["b", "a"], "dashboard")
    second = snapshot_fingerprint(["a", "b"], "dashboard")

    assert first == second
    assert first != snapshot_fingerprint(["a", "b"], "widget")
    assert first != snapshot_fingerprint(["a", "b"], "dashboard", {"recent_actions": [1]})


def test_snapshot_from_json(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    path.write_text(
        json.dumps(
            {
                "dashboard": [{"id": "recent", "label": "Recent", "type": "panel"}],
                "widget": {"quick-links-d": [{"id": "l1", "label": "Docs link"}]},
            }
        ),
        encoding="utf-8",
    )

    source = StaticSnapshotSource.from_json(path)

    assert source.get_visible_candidates("dashboard", None)[0].label == "Recent"
    widget_items = source.get_visible_candidates("widget", "quick-links-d")
    assert widget_items[0].type == "entry"
    assert widget_items[0].scope == "widget"


def test_snapshot_rejects_unknown_scope() -> None:
    with pytest.raises(ValueError, match="unknown scope"):
        StaticSnapshotSource({"sidebar": [_panel("x", "X")]})
