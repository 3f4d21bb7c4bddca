from __future__ import annotations

from chatnav.actions import (
    ActionContext,
    ActionExecutor,
    ActionRegistry,
    action_type_for,
    build_default_registry,
)
from chatnav.core.types import CandidateRef

RECENT = CandidateRef(id="recent", label="Recent", type="panel", scope="dashboard")
CONTEXT = ActionContext(session_id="s", scope="dashboard")


def test_action_type_for_candidate_kinds() -> None:
    assert action_type_for(RECENT) == "open_panel"
    assert action_type_for(CandidateRef(id="d", label="Doc", type="doc", scope="chat")) == "open_doc"
    assert action_type_for(CandidateRef(id="x", label="X", type="calendar", scope="widget")) == "open_calendar"


def test_default_registry_records_opens() -> None:
    registry, log = build_default_registry()
    executor = ActionExecutor(registry)

    result = executor.execute("open_panel", RECENT, CONTEXT)

    assert result.ok is True
    assert result.output == {"opened": "recent", "label": "Recent"}
    assert log.opened == [("open_panel", "recent")]
    assert "select_option" in executor.list_actions()


def test_unknown_action() -> None:
    executor = ActionExecutor(ActionRegistry())

    result = executor.execute("open_panel", RECENT, CONTEXT)

    assert result.ok is False
    assert result.error == "unknown action"


def test_handler_receives_context_when_it_accepts_two_arguments() -> None:
    seen: list[str] = []
    registry = ActionRegistry()
    registry.register("open_panel", lambda candidate, context: seen.append(context.session_id))

    ActionExecutor(registry).execute("open_panel", RECENT, CONTEXT)

    assert seen == ["s"]


def test_handler_failure_is_reported(caplog) -> None:
    def broken(candidate):
        raise RuntimeError("panel is gone")

    registry = ActionRegistry()
    registry.register("open_panel", broken)

    result = ActionExecutor(registry).execute("open_panel", RECENT, CONTEXT)

    assert result.ok is False
    assert result.error == "panel is gone"
    assert result.to_dict()["target_id"] == "recent"
    assert result.to_dict()["outcome"] == "failed"
    assert "panel is gone" in caplog.text
