from __future__ import annotations

import json
import threading
from itertools import count
from pathlib import Path

import pytest

from chatnav.backends.fake import FakeBackend
from chatnav.core.config import RouterConfig
from chatnav.core.types import CandidateRef
from chatnav.routing import Router, StaticSnapshotSource


def _source() -> StaticSnapshotSource:
    return StaticSnapshotSource(
        {
            "dashboard": [
                CandidateRef(id="recent", label="Recent", type="panel", scope="dashboard"),
                CandidateRef(id="sample2", label="sample2", type="entry", scope="dashboard"),
            ],
            "widget": {
                "quick-links-a": [
                    CandidateRef(id=f"s{i}", label=f"sample{i}", type="entry", scope="widget")
                    for i in (1, 2, 3)
                ]
            },
        }
    )


def _router(tmp_path: Path | None = None, **kwargs) -> Router:
    kwargs.setdefault("config", RouterConfig())
    return Router(_source(), data_root=tmp_path, **kwargs)


@pytest.mark.parametrize(("text", "session_id"), [("", "s"), ("   ", "s"), ("open recent", ""), (None, "s")])
def test_route_rejects_empty_input(text, session_id) -> None:
    router = _router()

    with pytest.raises(ValueError, match="non-empty string"):
        router.route(text, session_id)


def test_sessions_are_isolated() -> None:
    router = _router()

    router.route("open sample from active widget", "a")
    decision = router.route("second", "b")

    assert decision.tier_label == "unrouted"
    assert router.continuity("a").active_option_set is not None
    assert router.continuity("b").active_option_set is None


def test_continuity_returns_a_copy() -> None:
    router = _router()
    router.route("open sample from active widget", "a")

    snapshot = router.continuity("a")
    snapshot.active_option_set = None

    assert router.continuity("a").active_option_set is not None
    assert router.continuity("unknown") is None


def test_duplicate_commands_collapse_in_trace() -> None:
    ticks = iter([1_000, 1_200])
    router = _router(clock=lambda: next(ticks))

    router.route("open sample2", "s")
    router.route("open sample2", "s")

    state = router.continuity("s")
    assert len(state.action_trace) == 1
    assert router.navigation.opened == [("open_entry", "sample2"), ("open_entry", "sample2")]


def test_state_survives_restart(tmp_path: Path) -> None:
    first = _router(tmp_path)
    first.route("open sample from active widget", "s")
    option_set_id = first.continuity("s").active_option_set_id

    second = _router(tmp_path)
    decision = second.route("second", "s")

    assert decision.chosen_candidate_id == "s2"
    assert second.continuity("s").soft_active_option_set.option_set_id == option_set_id
    assert second.store.revision("s") == 2
    assert second.sessions() == ["s"]


def test_turns_are_traced_per_session(tmp_path: Path) -> None:
    router = _router(tmp_path)

    router.route("open recent", "s")

    path = router.trace_path("s")
    assert path == tmp_path / "traces" / "s.jsonl"
    kinds = [json.loads(line)["kind"] for line in path.read_text(encoding="utf-8").splitlines()]
    assert kinds == ["action_trace", "routing_decision"]


def test_focus_sets_scope_instance(tmp_path: Path) -> None:
    router = _router(tmp_path)

    state = router.focus("s", "widget", "quick-links-a")

    assert state.active_scope == "widget"
    assert state.scope_instances == {"widget": "quick-links-a"}
    with pytest.raises(ValueError, match="scope must be one of"):
        router.focus("s", "sidebar")


def test_record_action_from_ui(tmp_path: Path) -> None:
    ticks = count(start=10_000, step=100)
    router = _router(tmp_path, clock=lambda: next(ticks))

    entry = router.record_action(
        "s", action_type="open_panel", target_id="recent", target_kind="panel", label="Recent"
    )
    duplicate = router.record_action(
        "s", action_type="open_panel", target_id="recent", target_kind="panel", label="Recent"
    )
    plumbing = router.record_action(
        "s", action_type="focus_change", target_id="recent", target_kind="panel"
    )

    assert entry is not None
    assert entry.provenance == "direct_ui"
    assert duplicate is None
    assert plumbing.is_user_meaningful is False
    decision = router.route("what did I just do?", "s")
    assert decision.message == 'Your last action was open panel "Recent".'


def test_legacy_action_write_guard() -> None:
    router = _router(clock=lambda: 5_000)
    router.record_action("s", action_type="open_panel", target_id="recent", target_kind="panel")

    assert router.record_legacy_action("s", action_type="open_panel", target_id="x", ts_ms=1) is False
    assert router.record_legacy_action("s", action_type="open_panel", target_id="x", ts_ms=9_000) is True
    assert router.continuity("s").last_resolved_action.source == "legacy"


def test_record_action_validates_scope() -> None:
    router = _router()

    with pytest.raises(ValueError):
        router.record_action("s", action_type="open_panel", target_id="x", target_kind="panel", scope="nope")


def test_backend_by_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHATNAV_BACKEND", raising=False)
    assert _router().client is None

    router = _router(backend_name="fake")
    try:
        assert isinstance(router.client.backend, FakeBackend)
    finally:
        router.close()


def test_concurrent_turns_on_one_session_are_serialized() -> None:
    router = _router()
    errors: list[BaseException] = []

    def worker() -> None:
        try:
            for _ in range(5):
                router.route("open recent", "shared")
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert router.continuity("shared").turn == 20
