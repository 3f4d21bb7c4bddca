from __future__ import annotations

from chatnav.core.types import ContinuityState, ScopeCue
from chatnav.routing.candidates import instance_for_cue
from chatnav.routing.scope_cues import resolve_scope_cue


def test_generic_widget_cue_is_stripped() -> None:
    cue = resolve_scope_cue("open sample from active widget")

    assert cue.scope == "widget"
    assert cue.source_kind == "generic"
    assert cue.stripped_text == "open sample"
    assert cue.cue_text == "from active widget"


def test_chat_cue_wins_over_widget_rows() -> None:
    cue = resolve_scope_cue("back to options")

    assert cue.scope == "chat"
    assert cue.stripped_text == ""


def test_named_links_panel_cue() -> None:
    cue = resolve_scope_cue("open quick links from links panel d")

    assert cue.scope == "widget"
    assert cue.source_kind == "named"
    assert cue.named_target == "links panel d"
    assert cue.stripped_text == "open quick links"
    assert instance_for_cue(cue, ContinuityState(session_id="s")) == "quick-links-d"


def test_dashboard_and_workspace_cues() -> None:
    assert resolve_scope_cue("show notes in the dashboard").scope == "dashboard"
    workspace = resolve_scope_cue("open budget from workspaces")
    assert workspace.scope == "workspace"
    assert workspace.stripped_text == "open budget"


def test_chat_history_is_not_a_chat_cue() -> None:
    cue = resolve_scope_cue("open in chat history")

    assert cue.scope == "none"
    assert cue.typo_scope is None
    assert cue.stripped_text == "open in chat history"


def test_typo_cue_is_flagged_not_trusted() -> None:
    cue = resolve_scope_cue("open sample from dashbord")

    assert cue.scope == "none"
    assert cue.is_explicit is False
    assert cue.is_typo is True
    assert cue.typo_scope == "dashboard"
    assert cue.typo_cue_text == "from dashboard"
    assert cue.stripped_text == "open sample"


def test_typo_distance_is_configurable() -> None:
    cue = resolve_scope_cue("open sample from dashbord", max_distance=0)

    assert cue.is_typo is False
    assert cue.stripped_text == "open sample from dashbord"


def test_no_cue_returns_whole_text() -> None:
    cue = resolve_scope_cue("open recent")

    assert cue == ScopeCue(stripped_text="open recent")


def test_instance_for_generic_cue_uses_focused_instance() -> None:
    state = ContinuityState(session_id="s", scope_instances={"widget": "quick-links-a"})
    cue = resolve_scope_cue("open sample from widget")

    assert instance_for_cue(cue, state) == "quick-links-a"
