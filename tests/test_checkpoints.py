from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatnav.core.config import RouterConfig
from chatnav.core.types import CandidateRef, ContinuityState, LoopGuardState, PendingScopeTypo, TargetRef
from chatnav.routing import checkpoints, clarifier
from chatnav.routing.continuity import ActionTraceRecorder


def _populated_state() -> ContinuityState:
    state = ContinuityState(session_id="session-1", turn=3, cycle_id=2)
    clarifier.register_option_set(
        state,
        [
            CandidateRef(id="s1", label="sample1", type="entry", scope="widget", sublabel="Team"),
            CandidateRef(id="s2", label="sample2", type="entry", scope="widget"),
        ],
        scope="widget",
        question_text="Which sample?",
    )
    recorder = ActionTraceRecorder(RouterConfig(), clock=lambda: 5_000)
    recorder.record(
        state,
        action_type="open_panel",
        target=TargetRef(kind="panel", id="recent", name="Recent"),
        scope="dashboard",
        provenance="direct_ui",
    )
    state.loop_guard = LoopGuardState(
        option_set_id=state.active_option_set_id,
        input_shape="sampl",
        candidate_ids=("s1", "s2"),
        evidence_fingerprint="abc",
        suggestion_order=("s2", "s1"),
        retry_attempted=True,
    )
    state.pending_scope_typo = PendingScopeTypo(
        residual_text="open sample",
        suggested_scope="dashboard",
        suggested_cue="from dashboard",
        created_at_turn=3,
        snapshot_fingerprint="fp",
    )
    state.scope_instances["widget"] = "quick-links-a"
    state.recent_rejected_choice_ids = ["s1"]
    return state


def test_roundtrip(tmp_path: Path) -> None:
    state = _populated_state()

    path = checkpoints.save_continuity(state, base_dir=tmp_path)
    loaded = checkpoints.load_continuity("session-1", base_dir=tmp_path)

    assert path == tmp_path / "session-1.json"
    assert loaded is not None
    restored, revision = loaded
    assert revision == 1
    assert restored == state


def test_revision_increments(tmp_path: Path) -> None:
    state = ContinuityState(session_id="s")

    checkpoints.save_continuity(state, base_dir=tmp_path, revision=4)

    assert checkpoints.load_continuity("s", base_dir=tmp_path)[1] == 5
    assert not list(tmp_path.glob("*.tmp"))


def test_missing_checkpoint(tmp_path: Path) -> None:
    assert checkpoints.load_continuity("nobody", base_dir=tmp_path) is None


def test_session_mismatch(tmp_path: Path) -> None:
    checkpoints.save_continuity(ContinuityState(session_id="a"), base_dir=tmp_path)
    (tmp_path / "a.json").rename(tmp_path / "b.json")

    with pytest.raises(ValueError, match="session_id"):
        checkpoints.load_continuity("b", base_dir=tmp_path)


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("turn", "three"),
        ("recent_rejected_choice_ids", "s1"),
        ("active_option_set", {"option_set_id": 7, "candidates": []}),
        ("action_trace", [{"target": {"id": "x"}, "outcome": "maybe"}]),
        ("scope_instances", {"widget": 3}),
    ],
)
def test_invalid_fields_raise(tmp_path: Path, field: str, value) -> None:
    path = checkpoints.save_continuity(ContinuityState(session_id="s"), base_dir=tmp_path)
    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["state"][field] = value
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(ValueError, match="checkpoint"):
        checkpoints.load_continuity("s", base_dir=tmp_path)


def test_invalid_revision(tmp_path: Path) -> None:
    path = checkpoints.save_continuity(ContinuityState(session_id="s"), base_dir=tmp_path)
    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["revision"] = "1"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(ValueError, match="revision"):
        checkpoints.load_continuity("s", base_dir=tmp_path)


def test_list_checkpoints(tmp_path: Path) -> None:
    for session_id in ("b", "a"):
        checkpoints.save_continuity(ContinuityState(session_id=session_id), base_dir=tmp_path)

    assert checkpoints.list_checkpoints(tmp_path) == ["a", "b"]
    assert checkpoints.list_checkpoints(tmp_path / "missing") == []
