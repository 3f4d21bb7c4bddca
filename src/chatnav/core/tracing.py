"""JSONL routing telemetry, one file per session."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)

ROUTING_EVENT_KINDS = frozenset(
    {
        "routing_decision",
        "arbitration_call",
        "arbitration_stop",
        "enrichment_step",
        "action_trace",
        "action_deduped",
        "scope_typo",
        "stale_discard",
    }
)


@dataclass(slots=True)
class TraceEvent:
    ts: float
    kind: str
    data: dict[str, Any] = field(default_factory=dict)


class TraceWriter:
    """Appends routing events for one session.

    Every append is a single ``write`` of one line, so concurrent sessions never
    share a file and a reader only ever sees whole events.
    """

    def __init__(
        self, session_id: str, base_dir: Path | None = None, run_id: str | None = None
    ) -> None:
        self.session_id = session_id
        self.base_dir = base_dir or Path("data") / "traces"
        self.run_id = run_id

    @property
    def path(self) -> Path:
        if self.run_id is None:
            return self.base_dir / f"{self.session_id}.jsonl"
        return self.base_dir / f"{self.session_id}__{self.run_id}.jsonl"

    def write(self, event: TraceEvent) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Candidate snapshots may carry tuples or paths.
        line = json.dumps(asdict(event), ensure_ascii=False, default=str) + "\n"
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)
        return self.path

    def events(self) -> list[TraceEvent]:
        return list(read_events(self.path))


def emit(tracer: TraceWriter | None, kind: str, data: dict[str, Any]) -> None:
    if tracer is None:
        return
    if kind not in ROUTING_EVENT_KINDS:
        logger.warning("unknown routing event kind %r for session %s", kind, tracer.session_id)
    tracer.write(TraceEvent(ts=time.time(), kind=kind, data=dict(data)))


def read_events(path: Path) -> Iterator[TraceEvent]:
    """Yield events from a trace file, skipping lines that are not event objects."""
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict):
                continue
            data = payload.get("data")
            yield TraceEvent(
                ts=payload.get("ts", 0.0),
                kind=payload.get("kind", ""),
                data=data if isinstance(data, dict) else {},
            )
