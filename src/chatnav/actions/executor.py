from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass

from chatnav.actions.registry import ActionRegistry
from chatnav.actions.results import ActionResult
from chatnav.core.types import CandidateRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActionContext:
    session_id: str
    scope: str
    scope_instance_id: str | None = None


class ActionExecutor:
    def __init__(self, registry: ActionRegistry) -> None:
        self._registry = registry

    def execute(
        self, action_type: str, candidate: CandidateRef, context: ActionContext
    ) -> ActionResult:
        spec = self._registry.get(action_type)
        if spec is None:
            return ActionResult(
                action_type=action_type,
                target_id=candidate.id,
                ok=False,
                output=None,
                error="unknown action",
            )
        try:
            handler = spec.handler
            params = inspect.signature(handler).parameters.values()
            positional_params = [
                param
                for param in params
                if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD)
            ]
            has_varargs = any(param.kind is param.VAR_POSITIONAL for param in params)
            if has_varargs or len(positional_params) >= 2:
                output = handler(candidate, context)
            else:
                output = handler(candidate)
        except Exception as exc:  # noqa: BLE001
            logger.warning("action %s failed for %s: %s", action_type, candidate.id, exc)
            return ActionResult(
                action_type=action_type,
                target_id=candidate.id,
                ok=False,
                output=None,
                error=str(exc),
                metadata={"scope": context.scope},
            )
        return ActionResult(
            action_type=action_type,
            target_id=candidate.id,
            ok=True,
            output=output,
            error=None,
            metadata={"scope": context.scope},
        )

    def list_actions(self) -> list[str]:
        return [spec.action_type for spec in self._registry.list_actions()]
