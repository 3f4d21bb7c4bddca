from __future__ import annotations

import json
from pathlib import Path

from chatnav.core.config import RouterConfig
from chatnav.core.tracing import TraceWriter
from chatnav.core.types import CandidateRef, ContinuityState, PendingScopeTypo, TargetRef
from chatnav.routing import clarifier, continuity


class _Clock:
    def __init__(self, *ticks: int) -> None:
        self.ticks = list(ticks)

    def __call__(self) -> int:
        return self.ticks.pop(0)


def _recorder(*ticks: int, **overrides) -> continuity.ActionTraceRecorder:
    return continuity.ActionTraceRecorder(RouterConfig(**overrides), clock=_Clock(*ticks))


def _open(recorder, state, target_id="recent", **kwargs):
    return recorder.record(
        state,
        action_type="open_panel",
        target=TargetRef(kind="panel", id=target_id, name=target_id.title()),
        scope="dashboard",
        provenance="chat",
        **kwargs,
    )


def test_duplicate_within_window_collapses() -> None:
    state = ContinuityState(session_id="s")
    recorder = _recorder(1000, 1200)

    first = _open(recorder, state)
    second = _open(recorder, state)

    assert first is not None
    assert second is None
    assert len(state.action_trace) == 1
    assert state.trace_seq == 1


def test_duplicate_outside_window_is_kept() -> None:
    state = ContinuityState(session_id="s")
    recorder = _recorder(1000, 1500)

    _open(recorder, state)
    _open(recorder, state)

    assert [entry.seq for entry in state.action_trace] == [2, 1]


def test_failed_action_is_not_mirrored() -> None:
    state = ContinuityState(session_id="s")
    recorder = _recorder(1000, 5000)

    _open(recorder, state, target_id="recent")
    failed = _open(recorder, state, target_id="links", outcome="failed")

    assert failed is not None
    assert state.action_trace[0].outcome == "failed"
    assert state.last_resolved_action is not None
    assert state.last_resolved_action.target_id == "recent"
    assert [entry.target.id for entry in state.recent_action_trace] == ["recent"]


def test_success_after_failed_attempt_is_recorded_and_mirrored() -> None:
    state = ContinuityState(session_id="s")
    recorder = _recorder(1000, 1100, 1200)

    failed = _open(recorder, state, outcome="failed")
    retried = _open(recorder, state)
    repeated = _open(recorder, state)

    assert failed is not None
    assert retried is not None
    assert repeated is None
    assert [entry.outcome for entry in state.action_trace] == ["success", "failed"]
    assert state.last_resolved_action is not None
    assert state.last_resolved_action.target_id == "recent"
    assert [entry.target.id for entry in state.recent_action_trace] == ["recent"]


def test_trace_is_pruned_newest_first() -> None:
    state = ContinuityState(session_id="s")
    recorder = _recorder(*range(0, 10_000, 1000), action_trace_max=3, recent_action_window=2)

    for index in range(5):
        _open(recorder, state, target_id=f"p{index}")

    assert [entry.target.id for entry in state.action_trace] == ["p4", "p3", "p2"]
    assert [entry.target.id for entry in state.recent_action_trace] == ["p4", "p3"]


def test_record_emits_trace_events(tmp_path: Path) -> None:
    state = ContinuityState(session_id="s")
    tracer = TraceWriter("s", base_dir=tmp_path)
    recorder = continuity.ActionTraceRecorder(RouterConfig(), tracer=tracer, clock=_Clock(10, 20))

    _open(recorder, state)
    _open(recorder, state)

    kinds = [json.loads(line)["kind"] for line in tracer.path.read_text(encoding="utf-8").splitlines()]
    assert kinds == ["action_trace", "action_deduped"]


def test_is_user_meaningful() -> None:
    assert continuity.is_user_meaningful("open_panel")
    assert continuity.is_user_meaningful("select_option")
    assert not continuity.is_user_meaningful("focus_change")
    assert not continuity.is_user_meaningful("scroll")
    assert not continuity.is_user_meaningful("wiggle")


def test_dedupe_key_includes_delta_hint() -> None:
    target = TargetRef(kind="panel", id="recent")

    plain = continuity.compute_dedupe_key("open_panel", target, "dashboard")
    hinted = continuity.compute_dedupe_key("open_panel", target, "dashboard", delta_hint_kind="scroll")

    assert plain == "open_panel:panel:recent:dashboard:"
    assert hinted != plain


def test_legacy_write_cannot_overwrite_newer_trace_data() -> None:
    state = ContinuityState(session_id="s")
    recorder = _recorder(2000)
    _open(recorder, state)

    older = recorder.record_legacy_action(
        state, action_type="open_panel", target_id="links", label="Links", ts_ms=1000
    )
    same = recorder.record_legacy_action(
        state, action_type="open_panel", target_id="recent", label="Recent", ts_ms=2000
    )
    newer = recorder.record_legacy_action(
        state, action_type="open_panel", target_id="links", label="Links", ts_ms=3000
    )

    assert older is False
    assert same is False
    assert newer is True
    assert state.last_resolved_action.source == "legacy"
    assert state.last_resolved_action.target_id == "links"


def test_choice_windows() -> None:
    state = ContinuityState(session_id="s")

    continuity.accept_choice(state, "a", window=2)
    continuity.reject_choice(state, "a", window=2)
    continuity.accept_choice(state, "b", window=2)
    continuity.accept_choice(state, "c", window=2)

    assert state.last_accepted_choice_id == "c"
    assert state.recent_accepted_choice_ids == ["c", "b"]
    assert state.recent_rejected_choice_ids == ["a"]

    continuity.accept_choice(state, "a", window=2)
    assert state.recent_rejected_choice_ids == []


def test_pause_and_resume_keep_the_same_set() -> None:
    state = ContinuityState(session_id="s")
    option_set = clarifier.register_option_set(
        state,
        [CandidateRef(id="a", label="Alpha", type="panel", scope="dashboard")],
        scope="dashboard",
        question_text="?",
    )

    paused = continuity.pause_active(state)
    assert paused is option_set
    assert state.active_option_set is None
    assert state.paused_option_set is option_set

    resumed = continuity.resume_paused(state)
    assert resumed is option_set
    assert state.active_option_set_id == option_set.option_set_id
    assert state.paused_option_set is None


def test_settle_after_selection_moves_set_to_soft_active() -> None:
    state = ContinuityState(session_id="s", turn=3)
    option_set = clarifier.register_option_set(
        state,
        [CandidateRef(id="a", label="Alpha", type="panel", scope="dashboard")],
        scope="dashboard",
        question_text="?",
    )

    continuity.settle_after_selection(state)

    assert state.active_option_set is None
    assert state.soft_active_option_set is option_set
    assert state.soft_active_since_turn == 3


def test_expire_stale_drops_old_state() -> None:
    config = RouterConfig()
    state = ContinuityState(session_id="s")
    clarifier.register_option_set(
        state,
        [CandidateRef(id="a", label="Alpha", type="panel", scope="dashboard")],
        scope="dashboard",
        question_text="?",
    )
    state.pending_scope_typo = PendingScopeTypo(
        residual_text="open sample",
        suggested_scope="dashboard",
        suggested_cue="from dashboard",
        created_at_turn=0,
        snapshot_fingerprint="fp",
    )

    state.turn = 1
    assert continuity.expire_stale(state, config) == []

    state.turn = 2
    assert continuity.expire_stale(state, config) == ["scope_typo"]

    state.turn = 5
    assert continuity.expire_stale(state, config) == ["active"]
    assert state.active_option_set is None
