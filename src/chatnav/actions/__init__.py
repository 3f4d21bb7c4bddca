"""Execution sinks for committed routing decisions."""

from .executor import ActionContext, ActionExecutor
from .registry import ActionRegistry, NavigationLog, action_type_for, build_default_registry
from .results import ActionResult

__all__ = [
    "ActionContext",
    "ActionExecutor",
    "ActionRegistry",
    "ActionResult",
    "NavigationLog",
    "action_type_for",
    "build_default_registry",
]
