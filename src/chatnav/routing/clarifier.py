from __future__ import annotations

import uuid
from typing import Iterable, Sequence

from chatnav.core.types import (
    ActiveOptionSet,
    CandidateRef,
    ContinuityState,
    LoopGuardState,
    RoutingDecision,
)
from chatnav.routing.patterns import fold_label

_SLOT_PHRASES = {
    "target": "which one you mean",
    "scope": "where to look (chat, widget, dashboard or workspace)",
    "action": "what you would like me to do with it",
}


def new_option_set_id() -> str:
    return f"opt-{uuid.uuid4().hex[:12]}"


def input_shape(residual: str) -> str:
    return fold_label(residual)


def build_question(
    missing_slots: Sequence[str] = ("target",),
    *,
    subject: str | None = None,
    suggestion: CandidateRef | None = None,
) -> str:
    """One combined question covering every missing slot."""
    if suggestion is not None:
        return f'Did you mean "{suggestion.label}"? Or pick one of the options below.'
    phrases = [_SLOT_PHRASES.get(slot, slot) for slot in missing_slots] or [_SLOT_PHRASES["target"]]
    if len(phrases) == 1:
        asked = phrases[0]
    else:
        asked = ", ".join(phrases[:-1]) + " and " + phrases[-1]
    lead = f'For "{subject}", tell me' if subject else "Tell me"
    return f"{lead} {asked}."


def order_candidates(
    candidates: Sequence[CandidateRef],
    *,
    suggested_id: str | None = None,
    rejected_ids: Iterable[str] = (),
) -> tuple[CandidateRef, ...]:
    """Suggested first, recently rejected last, otherwise the shown order."""
    rejected = set(rejected_ids)
    head = [c for c in candidates if c.id == suggested_id]
    middle = [c for c in candidates if c.id != suggested_id and c.id not in rejected]
    tail = [c for c in candidates if c.id != suggested_id and c.id in rejected]
    return tuple(head + middle + tail)


def register_option_set(
    state: ContinuityState,
    candidates: Sequence[CandidateRef],
    *,
    scope: str,
    question_text: str,
    option_set_id: str | None = None,
) -> ActiveOptionSet:
    """Replace the active option set. Nothing from the previous set survives."""
    option_set = ActiveOptionSet(
        option_set_id=option_set_id or new_option_set_id(),
        candidates=tuple(candidates),
        scope=scope,  # type: ignore[arg-type]
        created_at_turn=state.turn,
        question_text=question_text,
    )
    if state.active_option_set_id != option_set.option_set_id:
        state.loop_guard = None
        state.pending_suggestion_id = None
    state.active_option_set = option_set
    state.soft_active_option_set = None
    state.soft_active_since_turn = None
    state.pending_clarifier_type = "option_select"
    return option_set


def reshow(
    option_set: ActiveOptionSet,
    tier_label: str,
    *,
    message: str | None = None,
    order: Sequence[str] | None = None,
) -> RoutingDecision:
    """Decision showing an existing set again, same id and same members."""
    options = option_set.candidates
    if order:
        by_id = {candidate.id: candidate for candidate in options}
        ordered = [by_id[cid] for cid in order if cid in by_id]
        ordered += [c for c in options if c.id not in set(order)]
        options = tuple(ordered)
    return RoutingDecision(
        outcome="safe_clarifier",
        tier_label=tier_label,
        clarifier_text=option_set.question_text,
        message=message,
        options=options,
    )


def loop_guard_hit(
    state: ContinuityState,
    *,
    option_set_id: str | None,
    shape: str,
    candidate_ids: Sequence[str],
    evidence_fingerprint: str,
) -> LoopGuardState | None:
    """Prior guard entry when this is the same unresolved cycle and input."""
    guard = state.loop_guard
    if guard is None:
        return None
    if (
        guard.option_set_id == option_set_id
        and guard.input_shape == shape
        and guard.candidate_ids == tuple(candidate_ids)
        and guard.evidence_fingerprint == evidence_fingerprint
    ):
        return guard
    return None


def record_loop_guard(
    state: ContinuityState,
    *,
    option_set_id: str | None,
    shape: str,
    candidate_ids: Sequence[str],
    evidence_fingerprint: str,
    suggested_id: str | None,
    suggestion_order: Sequence[str],
) -> LoopGuardState:
    guard = LoopGuardState(
        option_set_id=option_set_id,
        input_shape=shape,
        candidate_ids=tuple(candidate_ids),
        evidence_fingerprint=evidence_fingerprint,
        suggested_id=suggested_id,
        suggestion_order=tuple(suggestion_order),
        retry_attempted=True,
    )
    state.loop_guard = guard
    return guard
