from __future__ import annotations

import time
import uuid
from typing import Callable

from chatnav.core.config import RouterConfig
from chatnav.core.tracing import TraceWriter, emit
from chatnav.core.types import (
    ActionTraceEntry,
    ActiveOptionSet,
    ContinuityState,
    LastResolvedAction,
    TargetRef,
    TraceOutcome,
)

_MEANINGFUL_PREFIXES = ("open_", "create_", "rename_", "delete_", "go_", "move_", "close_")
_MEANINGFUL_TYPES = frozenset({"select_option", "navigate_home", "navigate_back"})
_PLUMBING_TYPES = frozenset(
    {"focus_change", "scroll", "hover", "auto_sync", "panel_resize", "snapshot_refresh"}
)


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_dedupe_key(
    action_type: str,
    target: TargetRef,
    scope: str,
    scope_instance_id: str | None = None,
    delta_hint_kind: str | None = None,
) -> str:
    parts = [action_type, target.kind, target.id, scope, scope_instance_id or ""]
    if delta_hint_kind:
        parts.append(delta_hint_kind)
    return ":".join(parts)


def is_user_meaningful(action_type: str) -> bool:
    """Task-state changes count; transient UI plumbing does not."""
    if action_type in _PLUMBING_TYPES:
        return False
    if action_type in _MEANINGFUL_TYPES:
        return True
    return action_type.startswith(_MEANINGFUL_PREFIXES)


class ActionTraceRecorder:
    def __init__(
        self,
        config: RouterConfig,
        tracer: TraceWriter | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.tracer = tracer
        self.clock = clock

    def record(
        self,
        state: ContinuityState,
        *,
        action_type: str,
        target: TargetRef,
        scope: str,
        provenance: str,
        outcome: TraceOutcome = "success",
        scope_instance_id: str | None = None,
        parent_trace_id: str | None = None,
        delta_hint_kind: str | None = None,
        user_meaningful: bool | None = None,
        ts_ms: int | None = None,
        option_set_id: str | None = None,
    ) -> ActionTraceEntry | None:
        """Append one committed action. Returns None when it collapses into a recent duplicate."""
        ts = self.clock() if ts_ms is None else ts_ms
        key = compute_dedupe_key(action_type, target, scope, scope_instance_id, delta_hint_kind)
        for existing in state.action_trace:
            # A retry that changes the outcome is a new fact, not a duplicate.
            if (
                existing.dedupe_key == key
                and existing.outcome == outcome
                and abs(ts - existing.ts_ms) < self.config.dedupe_window_ms
            ):
                emit(
                    self.tracer,
                    "action_deduped",
                    {"dedupe_key": key, "kept_trace_id": existing.trace_id, "delta_ms": ts - existing.ts_ms},
                )
                return None
        state.trace_seq += 1
        entry = ActionTraceEntry(
            trace_id=uuid.uuid4().hex,
            seq=state.trace_seq,
            ts_ms=ts,
            action_type=action_type,
            target=target,
            scope=scope,  # type: ignore[arg-type]
            scope_instance_id=scope_instance_id,
            provenance=provenance,
            dedupe_key=key,
            is_user_meaningful=(
                is_user_meaningful(action_type) if user_meaningful is None else user_meaningful
            ),
            outcome=outcome,
            parent_trace_id=parent_trace_id,
        )
        state.action_trace.insert(0, entry)
        del state.action_trace[self.config.action_trace_max :]
        emit(
            self.tracer,
            "action_trace",
            {
                "trace_id": entry.trace_id,
                "seq": entry.seq,
                "action_type": action_type,
                "target_id": target.id,
                "scope": scope,
                "outcome": outcome,
                "provenance": provenance,
                "is_user_meaningful": entry.is_user_meaningful,
            },
        )
        if outcome == "success":
            self._mirror(state, entry, option_set_id)
        return entry

    def _mirror(
        self, state: ContinuityState, entry: ActionTraceEntry, option_set_id: str | None
    ) -> None:
        state.recent_action_trace = [
            item for item in state.action_trace if item.outcome == "success"
        ][: self.config.recent_action_window]
        state.last_resolved_action = LastResolvedAction(
            action_type=entry.action_type,
            target_id=entry.target.id,
            label=entry.target.name,
            ts_ms=entry.ts_ms,
            option_set_id=option_set_id,
            source="trace",
        )

    def record_legacy_action(
        self,
        state: ContinuityState,
        *,
        action_type: str,
        target_id: str,
        label: str | None,
        ts_ms: int,
    ) -> bool:
        """Legacy write into lastResolvedAction, blocked when the trace already has newer data."""
        current = state.last_resolved_action
        if current is not None and current.source == "trace":
            if ts_ms < current.ts_ms:
                return False
            if (
                ts_ms == current.ts_ms
                and action_type == current.action_type
                and target_id == current.target_id
            ):
                return False
        state.last_resolved_action = LastResolvedAction(
            action_type=action_type,
            target_id=target_id,
            label=label,
            ts_ms=ts_ms,
            source="legacy",
        )
        return True


def accept_choice(state: ContinuityState, choice_id: str, window: int) -> None:
    state.last_accepted_choice_id = choice_id
    state.recent_accepted_choice_ids = _push(state.recent_accepted_choice_ids, choice_id, window)
    if choice_id in state.recent_rejected_choice_ids:
        state.recent_rejected_choice_ids.remove(choice_id)


def reject_choice(state: ContinuityState, choice_id: str, window: int) -> None:
    state.recent_rejected_choice_ids = _push(state.recent_rejected_choice_ids, choice_id, window)
    if state.last_accepted_choice_id == choice_id:
        state.last_accepted_choice_id = None


def _push(items: list[str], value: str, window: int) -> list[str]:
    result = [value] + [item for item in items if item != value]
    return result[:window]


def pause_active(state: ContinuityState) -> ActiveOptionSet | None:
    """Move the active set aside so a return cue can restore it."""
    option_set = state.active_option_set
    if option_set is None:
        return None
    state.paused_option_set = option_set
    state.paused_at_turn = state.turn
    state.active_option_set = None
    state.soft_active_option_set = None
    state.soft_active_since_turn = None
    state.pending_clarifier_type = None
    state.pending_suggestion_id = None
    state.loop_guard = None
    return option_set


def resume_paused(state: ContinuityState) -> ActiveOptionSet | None:
    option_set = state.paused_option_set
    if option_set is None:
        return None
    state.active_option_set = option_set
    state.paused_option_set = None
    state.paused_at_turn = None
    state.pending_clarifier_type = "option_select"
    state.loop_guard = None
    return option_set


def settle_after_selection(state: ContinuityState) -> None:
    """After a list-driven execution the list stays reachable for a short window."""
    if state.active_option_set is not None:
        state.soft_active_option_set = state.active_option_set
        state.soft_active_since_turn = state.turn
    state.active_option_set = None
    state.pending_clarifier_type = None
    state.pending_suggestion_id = None
    state.loop_guard = None


def clear_clarification(state: ContinuityState) -> None:
    state.active_option_set = None
    state.soft_active_option_set = None
    state.soft_active_since_turn = None
    state.pending_clarifier_type = None
    state.pending_suggestion_id = None
    state.pending_scope_typo = None
    state.loop_guard = None


def expire_stale(state: ContinuityState, config: RouterConfig) -> list[str]:
    """Drop option sets and replay state whose turn TTL has passed."""
    expired: list[str] = []
    turn = state.turn
    active = state.active_option_set
    if active is not None and turn - active.created_at_turn > config.option_set_ttl_turns:
        state.active_option_set = None
        state.pending_clarifier_type = None
        state.pending_suggestion_id = None
        state.loop_guard = None
        expired.append("active")
    if (
        state.soft_active_option_set is not None
        and state.soft_active_since_turn is not None
        and turn - state.soft_active_since_turn > config.soft_active_ttl_turns
    ):
        state.soft_active_option_set = None
        state.soft_active_since_turn = None
        expired.append("soft_active")
    if (
        state.paused_option_set is not None
        and state.paused_at_turn is not None
        and turn - state.paused_at_turn > config.paused_ttl_turns
    ):
        state.paused_option_set = None
        state.paused_at_turn = None
        expired.append("paused")
    typo = state.pending_scope_typo
    if typo is not None and turn - typo.created_at_turn > config.scope_typo_ttl_turns:
        state.pending_scope_typo = None
        expired.append("scope_typo")
    return expired
