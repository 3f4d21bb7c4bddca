from __future__ import annotations

from pathlib import Path
from typing import Any

from chatnav.core.tracing import read_events


def _bump(counter: dict[str, int], key: Any) -> None:
    name = key if isinstance(key, str) else "unknown"
    counter[name] = counter.get(name, 0) + 1


def parse_trace_file(path: Path) -> dict[str, Any]:
    """Summarize a session trace for the admin API and the CLI."""
    events: list[dict[str, Any]] = []
    decisions: list[dict[str, Any]] = []
    decisions_by_tier: dict[str, int] = {}
    outcomes: dict[str, int] = {}
    advisory_calls: list[dict[str, Any]] = []
    stops_by_reason: dict[str, int] = {}
    actions: list[dict[str, Any]] = []
    deduped_actions: list[dict[str, Any]] = []
    stale_discards: list[dict[str, Any]] = []
    scope_typos: list[dict[str, Any]] = []

    if not path.exists():
        return {
            "events": [],
            "decisions": [],
            "decisions_by_tier": {},
            "outcomes": {},
            "advisory_calls": [],
            "stops_by_reason": {},
            "actions": [],
            "deduped_actions": [],
            "stale_discards": [],
            "scope_typos": [],
            "final_decision": None,
        }

    for event in read_events(path):
        kind, data = event.kind, event.data
        events.append({"ts": event.ts, "kind": kind, "data": data})

        if kind == "routing_decision":
            decisions.append(data)
            _bump(decisions_by_tier, data.get("tier_label"))
            _bump(outcomes, data.get("outcome"))
        elif kind == "arbitration_call":
            advisory_calls.append(data)
        elif kind == "arbitration_stop":
            _bump(stops_by_reason, data.get("reason"))
        elif kind == "action_trace":
            actions.append(data)
        elif kind == "action_deduped":
            deduped_actions.append(data)
        elif kind == "stale_discard":
            stale_discards.append(data)
        elif kind == "scope_typo":
            scope_typos.append(data)

    return {
        "events": events,
        "decisions": decisions,
        "decisions_by_tier": dict(sorted(decisions_by_tier.items())),
        "outcomes": dict(sorted(outcomes.items())),
        "advisory_calls": advisory_calls,
        "stops_by_reason": dict(sorted(stops_by_reason.items())),
        "actions": actions,
        "deduped_actions": deduped_actions,
        "stale_discards": stale_discards,
        "scope_typos": scope_typos,
        "final_decision": decisions[-1] if decisions else None,
    }
