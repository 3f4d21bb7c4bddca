from __future__ import annotations

import json
import os
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any

from chatnav.core.types import (
    ActionTraceEntry,
    ActiveOptionSet,
    ContinuityState,
    LastResolvedAction,
    LoopGuardState,
    PendingScopeTypo,
    TargetRef,
)
from chatnav.routing.candidates import candidate_from_dict

DEFAULT_DIR = Path("data") / "checkpoints"


def _checkpoint_path(session_id: str, base_dir: Path | None = None) -> Path:
    root = base_dir or DEFAULT_DIR
    return root / f"{session_id}.json"


def save_continuity(
    state: ContinuityState, base_dir: Path | None = None, revision: int = 0
) -> Path:
    path = _checkpoint_path(state.session_id, base_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "session_id": state.session_id,
        "revision": revision + 1,
        "updated_ts": time.time(),
        "state": asdict(state),
    }
    temp_path = path.with_suffix(".json.tmp")
    with temp_path.open("w", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, ensure_ascii=False))
        handle.flush()
        os.fsync(handle.fileno())
    temp_path.replace(path)
    return path


def _ensure_list_of_str(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    raise ValueError(f"checkpoint field '{field_name}' must be list[str]")


def _ensure_int(value: Any, field_name: str, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise ValueError(f"checkpoint field '{field_name}' must be int")


def _ensure_optional_str(value: Any, field_name: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"checkpoint field '{field_name}' must be str")


def _coerce_option_set(payload: Any, field_name: str) -> ActiveOptionSet | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValueError(f"checkpoint field '{field_name}' must be an object")
    candidates = payload.get("candidates")
    if not isinstance(candidates, list):
        raise ValueError(f"checkpoint field '{field_name}.candidates' must be a list")
    option_set_id = payload.get("option_set_id")
    if not isinstance(option_set_id, str):
        raise ValueError(f"checkpoint field '{field_name}.option_set_id' must be str")
    return ActiveOptionSet(
        option_set_id=option_set_id,
        candidates=tuple(candidate_from_dict(item) for item in candidates),
        scope=payload.get("scope", "none"),
        created_at_turn=_ensure_int(payload.get("created_at_turn"), f"{field_name}.created_at_turn"),
        question_text=str(payload.get("question_text", "")),
    )


def _coerce_trace_entry(payload: Any) -> ActionTraceEntry:
    if not isinstance(payload, dict):
        raise ValueError("checkpoint action_trace entries must be objects")
    target = payload.get("target")
    if not isinstance(target, dict) or not isinstance(target.get("id"), str):
        raise ValueError("checkpoint action_trace entries must include a target id")
    outcome = payload.get("outcome")
    if outcome not in {"success", "failed"}:
        raise ValueError("checkpoint action_trace outcome must be success or failed")
    return ActionTraceEntry(
        trace_id=str(payload.get("trace_id", "")),
        seq=_ensure_int(payload.get("seq"), "action_trace.seq"),
        ts_ms=_ensure_int(payload.get("ts_ms"), "action_trace.ts_ms"),
        action_type=str(payload.get("action_type", "")),
        target=TargetRef(
            kind=str(target.get("kind", "")), id=target["id"], name=target.get("name")
        ),
        scope=payload.get("scope", "none"),
        scope_instance_id=_ensure_optional_str(
            payload.get("scope_instance_id"), "action_trace.scope_instance_id"
        ),
        provenance=str(payload.get("provenance", "")),
        dedupe_key=str(payload.get("dedupe_key", "")),
        is_user_meaningful=bool(payload.get("is_user_meaningful", False)),
        outcome=outcome,
        parent_trace_id=_ensure_optional_str(
            payload.get("parent_trace_id"), "action_trace.parent_trace_id"
        ),
    )


def _coerce_trace(payload: Any, field_name: str) -> list[ActionTraceEntry]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValueError(f"checkpoint field '{field_name}' must be a list")
    return [_coerce_trace_entry(item) for item in payload]


def _coerce_last_action(payload: Any) -> LastResolvedAction | None:
    if payload is None:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("target_id"), str):
        raise ValueError("checkpoint last_resolved_action must include target_id")
    return LastResolvedAction(
        action_type=str(payload.get("action_type", "")),
        target_id=payload["target_id"],
        label=_ensure_optional_str(payload.get("label"), "last_resolved_action.label"),
        ts_ms=_ensure_int(payload.get("ts_ms"), "last_resolved_action.ts_ms"),
        option_set_id=_ensure_optional_str(
            payload.get("option_set_id"), "last_resolved_action.option_set_id"
        ),
        source=str(payload.get("source", "trace")),
    )


def _coerce_scope_typo(payload: Any) -> PendingScopeTypo | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValueError("checkpoint pending_scope_typo must be an object")
    return PendingScopeTypo(
        residual_text=str(payload.get("residual_text", "")),
        suggested_scope=payload.get("suggested_scope", "none"),
        suggested_cue=str(payload.get("suggested_cue", "")),
        created_at_turn=_ensure_int(payload.get("created_at_turn"), "pending_scope_typo.created_at_turn"),
        snapshot_fingerprint=str(payload.get("snapshot_fingerprint", "")),
    )


def _coerce_loop_guard(payload: Any) -> LoopGuardState | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValueError("checkpoint loop_guard must be an object")
    return LoopGuardState(
        option_set_id=_ensure_optional_str(payload.get("option_set_id"), "loop_guard.option_set_id"),
        input_shape=str(payload.get("input_shape", "")),
        candidate_ids=tuple(_ensure_list_of_str(payload.get("candidate_ids"), "loop_guard.candidate_ids")),
        evidence_fingerprint=str(payload.get("evidence_fingerprint", "")),
        suggested_id=_ensure_optional_str(payload.get("suggested_id"), "loop_guard.suggested_id"),
        suggestion_order=tuple(
            _ensure_list_of_str(payload.get("suggestion_order"), "loop_guard.suggestion_order")
        ),
        retry_attempted=bool(payload.get("retry_attempted", False)),
    )


def _coerce_state(session_id: str, payload: Any) -> ContinuityState:
    if not isinstance(payload, dict):
        raise ValueError("checkpoint state must be an object")
    scope_instances = payload.get("scope_instances") or {}
    if not isinstance(scope_instances, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in scope_instances.items()
    ):
        raise ValueError("checkpoint field 'scope_instances' must map str -> str")
    return ContinuityState(
        session_id=session_id,
        turn=_ensure_int(payload.get("turn"), "turn"),
        cycle_id=_ensure_int(payload.get("cycle_id"), "cycle_id"),
        trace_seq=_ensure_int(payload.get("trace_seq"), "trace_seq"),
        last_resolved_action=_coerce_last_action(payload.get("last_resolved_action")),
        recent_action_trace=_coerce_trace(payload.get("recent_action_trace"), "recent_action_trace"),
        action_trace=_coerce_trace(payload.get("action_trace"), "action_trace"),
        active_option_set=_coerce_option_set(payload.get("active_option_set"), "active_option_set"),
        paused_option_set=_coerce_option_set(payload.get("paused_option_set"), "paused_option_set"),
        paused_at_turn=payload.get("paused_at_turn"),
        soft_active_option_set=_coerce_option_set(
            payload.get("soft_active_option_set"), "soft_active_option_set"
        ),
        soft_active_since_turn=payload.get("soft_active_since_turn"),
        active_scope=payload.get("active_scope", "none"),
        last_accepted_choice_id=_ensure_optional_str(
            payload.get("last_accepted_choice_id"), "last_accepted_choice_id"
        ),
        recent_accepted_choice_ids=_ensure_list_of_str(
            payload.get("recent_accepted_choice_ids"), "recent_accepted_choice_ids"
        ),
        recent_rejected_choice_ids=_ensure_list_of_str(
            payload.get("recent_rejected_choice_ids"), "recent_rejected_choice_ids"
        ),
        pending_clarifier_type=_ensure_optional_str(
            payload.get("pending_clarifier_type"), "pending_clarifier_type"
        ),
        pending_suggestion_id=_ensure_optional_str(
            payload.get("pending_suggestion_id"), "pending_suggestion_id"
        ),
        pending_scope_typo=_coerce_scope_typo(payload.get("pending_scope_typo")),
        loop_guard=_coerce_loop_guard(payload.get("loop_guard")),
        scope_instances=dict(scope_instances),
        last_topic=_ensure_optional_str(payload.get("last_topic"), "last_topic"),
    )


def load_continuity(
    session_id: str, base_dir: Path | None = None
) -> tuple[ContinuityState, int] | None:
    """Stored state and its revision, or None when nothing was saved yet."""
    path = _checkpoint_path(session_id, base_dir)
    if not path.exists():
        return None
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("checkpoint payload must be an object")
    if payload.get("session_id") != session_id:
        raise ValueError("checkpoint session_id does not match")
    revision = payload.get("revision")
    if not isinstance(revision, int):
        raise ValueError("checkpoint revision must be int")
    if not isinstance(payload.get("updated_ts"), (float, int)):
        raise ValueError("checkpoint updated_ts must be float")
    return _coerce_state(session_id, payload.get("state")), revision


def list_checkpoints(base_dir: Path | None = None) -> list[str]:
    root = base_dir or DEFAULT_DIR
    if not root.exists():
        return []
    return sorted(path.stem for path in root.glob("*.json"))
