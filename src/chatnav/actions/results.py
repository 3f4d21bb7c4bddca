from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chatnav.core.types import TraceOutcome


@dataclass(slots=True)
class ActionResult:
    action_type: str
    target_id: str
    ok: bool
    output: Any | None
    error: str | None
    metadata: dict[str, Any] | None = None

    @property
    def outcome(self) -> TraceOutcome:
        return "success" if self.ok else "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_type": self.action_type,
            "target_id": self.target_id,
            "outcome": self.outcome,
            "output": self.output,
            "error": self.error,
        }
