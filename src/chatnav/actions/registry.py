from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from chatnav.core.types import CandidateRef

ActionHandler = Callable[..., Any]

DEFAULT_ACTION_TYPES = (
    "open_panel",
    "open_entry",
    "open_workspace",
    "open_doc",
    "open_widget",
    "select_option",
)


@dataclass(slots=True)
class ActionSpec:
    action_type: str
    handler: ActionHandler


def action_type_for(candidate: CandidateRef) -> str:
    """Execution action for a candidate kind."""
    mapping = {
        "panel": "open_panel",
        "panel_drawer": "open_panel",
        "widget": "open_widget",
        "workspace": "open_workspace",
        "entry": "open_entry",
        "note": "open_entry",
        "doc": "open_doc",
        "option": "select_option",
    }
    return mapping.get(candidate.type, f"open_{candidate.type}")


@dataclass(slots=True)
class NavigationLog:
    """Recording sink used when no host application is attached."""

    opened: list[tuple[str, str]] = field(default_factory=list)

    def handler(self, action_type: str) -> ActionHandler:
        def _handle(candidate: CandidateRef) -> dict[str, Any]:
            self.opened.append((action_type, candidate.id))
            return {"opened": candidate.id, "label": candidate.label}

        return _handle


def build_default_registry(sink: NavigationLog | None = None) -> tuple["ActionRegistry", NavigationLog]:
    """Registry with every default action type bound to a recording sink."""
    log = sink or NavigationLog()
    registry = ActionRegistry()
    for action_type in DEFAULT_ACTION_TYPES:
        registry.register(action_type, log.handler(action_type))
    return registry, log


class ActionRegistry:
    def __init__(self) -> None:
        self._actions: dict[str, ActionSpec] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        self._actions[action_type] = ActionSpec(action_type=action_type, handler=handler)

    def get(self, action_type: str) -> ActionSpec | None:
        return self._actions.get(action_type)

    def list_actions(self) -> list[ActionSpec]:
        return list(self._actions.values())
