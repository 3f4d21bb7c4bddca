"""Per-turn priority chain.

Tiers run in a fixed order and the first one that claims the turn produces
the single ``RoutingDecision``:

1. hard interrupts (stop / cancel, exit confirmation)
2. return, resume and repair (scope-typo replay, confirmed suggestions,
   return cues, re-show, soft-active selection gate)
3. new commands that interrupt an active list
4. clarification against the active list
5. allow-listed known nouns
6. docs and the semantic answer lane

Executions only ever use a candidate from the pool built for the turn, and
are recorded in the action trace right after the execution sink runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Sequence

from chatnav.actions.executor import ActionContext, ActionExecutor
from chatnav.actions.registry import action_type_for
from chatnav.core.config import RouterConfig
from chatnav.core.tracing import TraceWriter, emit
from chatnav.core.types import (
    ActiveOptionSet,
    CandidateRef,
    ClassifiedIntent,
    ContinuityState,
    DecisionOutcome,
    PendingScopeTypo,
    RoutingDecision,
    ScopeCue,
    TargetRef,
    Utterance,
)
from chatnav.routing import clarifier, known_nouns, patterns
from chatnav.routing.advisory import AdvisoryClient
from chatnav.routing.arbitration import ArbitrationOutcome, ArbitrationRequest, Arbitrator
from chatnav.routing.candidates import (
    EMPTY_POOL,
    CandidatePool,
    SnapshotSource,
    build_scoped_pool,
    instance_for_cue,
    snapshot_fingerprint,
)
from chatnav.routing.classifier import classify, canonicalize_command, is_selection_shaped
from chatnav.routing.continuity import (
    ActionTraceRecorder,
    accept_choice,
    clear_clarification,
    expire_stale,
    now_ms,
    pause_active,
    reject_choice,
    resume_paused,
    settle_after_selection,
)
from chatnav.routing.docs import DocRetriever, NullDocRetriever, doc_candidates
from chatnav.routing.matcher import match_deterministic, match_ordinal
from chatnav.routing.scope_cues import resolve_scope_cue

Tier = Callable[["TurnContext"], Optional[RoutingDecision]]


@dataclass(slots=True)
class TurnContext:
    state: ContinuityState
    utterance: Utterance
    intent: ClassifiedIntent
    cue: ScopeCue
    residual: str
    expired: list[str] = field(default_factory=list)
    pool: CandidatePool = EMPTY_POOL
    arbitration: ArbitrationOutcome | None = None
    flags: dict[str, Any] = field(default_factory=dict)

    @property
    def normalized(self) -> str:
        return self.intent.normalized


class Dispatcher:
    def __init__(
        self,
        config: RouterConfig,
        source: SnapshotSource,
        executor: ActionExecutor,
        *,
        client: AdvisoryClient | None = None,
        docs: DocRetriever | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.source = source
        self.executor = executor
        self.client = client
        self.docs = docs or NullDocRetriever()
        self.clock = clock

    # -- entry point -------------------------------------------------------

    def dispatch(
        self,
        state: ContinuityState,
        utterance: Utterance,
        tracer: TraceWriter | None = None,
    ) -> RoutingDecision:
        state.turn += 1
        expired = expire_stale(state, self.config)
        raw_normalized = patterns.normalize_text(utterance.text)
        cue = resolve_scope_cue(raw_normalized, self.config.scope_typo_max_distance)
        ctx = TurnContext(
            state=state,
            utterance=utterance,
            intent=classify(utterance.text),
            cue=cue,
            residual=cue.stripped_text,
            expired=expired,
        )
        turn = _Turn(self, ctx, tracer)
        decision = turn.run()
        arbitration = ctx.arbitration
        emit(
            tracer,
            "routing_decision",
            {
                "turn": state.turn,
                "tier_label": decision.tier_label,
                "outcome": decision.outcome,
                "intent": ctx.intent.kind,
                "scope": ctx.pool.scope if ctx.pool is not EMPTY_POOL else ctx.cue.scope,
                "candidate_count": len(ctx.pool),
                "chosen_candidate_id": decision.chosen_candidate_id,
                "collision_flags": dict(ctx.flags),
                "cycle_id": state.cycle_id,
                "option_set_id": state.active_option_set_id,
                "fingerprint_before": arbitration.fingerprint_before if arbitration else None,
                "fingerprint_after": arbitration.fingerprint_after if arbitration else None,
                "budget_remaining": arbitration.budget_remaining if arbitration else None,
            },
        )
        return decision


class _Turn:
    """State for one pass through the tiers."""

    def __init__(self, dispatcher: Dispatcher, ctx: TurnContext, tracer: TraceWriter | None) -> None:
        self.d = dispatcher
        self.config = dispatcher.config
        self.ctx = ctx
        self.state = ctx.state
        self.tracer = tracer
        self.recorder = ActionTraceRecorder(dispatcher.config, tracer, dispatcher.clock)

    def run(self) -> RoutingDecision:
        tiers: Sequence[Tier] = (
            self.tier_interrupt,
            self.tier_return_repair,
            self.tier_new_command,
            self.tier_clarification,
            self.tier_known_noun,
            self.tier_docs,
        )
        for tier in tiers:
            decision = tier(self.ctx)
            if decision is not None:
                return decision
        return self.unknown()

    # -- tier 1 ------------------------------------------------------------

    def tier_interrupt(self, ctx: TurnContext) -> RoutingDecision | None:
        state = self.state
        active = state.active_option_set
        if state.pending_clarifier_type == "confirm_exit":
            if ctx.intent.kind == "affirmation" or patterns.is_stop_request(ctx.normalized):
                clear_clarification(state)
                state.cycle_id += 1
                return RoutingDecision(
                    outcome="safe_clarifier",
                    tier_label="interrupt_exit_confirmed",
                    clarifier_text="Okay, I've cleared those options. What would you like to do?",
                )
            state.pending_clarifier_type = "option_select" if active is not None else None
            if ctx.intent.kind == "rejection" and active is not None:
                return clarifier.reshow(
                    active, "interrupt_exit_declined", message="Okay, here are the options again."
                )

        stop = patterns.is_stop_request(ctx.normalized)
        ambiguous_stop = (
            ctx.intent.kind == "rejection"
            and active is not None
            and state.pending_clarifier_type != "confirm_suggestion"
            and state.pending_scope_typo is None
        )
        if not (stop or ambiguous_stop):
            return None
        if active is not None:
            state.pending_clarifier_type = "confirm_exit"
            return RoutingDecision(
                outcome="safe_clarifier",
                tier_label="interrupt_confirm_exit",
                clarifier_text="Do you want to stop choosing? Say yes to exit, or pick one of the options.",
                options=active.candidates,
            )
        if not stop:
            return None
        clear_clarification(state)
        state.cycle_id += 1
        return RoutingDecision(
            outcome="safe_clarifier",
            tier_label="interrupt_stop",
            clarifier_text="Okay, stopped. What would you like to do next?",
        )

    # -- tier 2 ------------------------------------------------------------

    def tier_return_repair(self, ctx: TurnContext) -> RoutingDecision | None:
        for step in (
            self._scope_typo_replay,
            self._scope_typo_prompt,
            self._confirm_suggestion,
            self._return_cue,
            self._paused_ordinal,
            self._reshow,
            self._repair,
            self._soft_active_gate,
            self._expired_drift,
        ):
            decision = step(ctx)
            if decision is not None:
                return decision
        return None

    def _scope_typo_replay(self, ctx: TurnContext) -> RoutingDecision | None:
        pending = self.state.pending_scope_typo
        if pending is None:
            return None
        self.state.pending_scope_typo = None
        if ctx.intent.kind == "affirmation":
            scope = pending.suggested_scope
            pool = self._scoped_pool(scope, instance_for_cue(ScopeCue(scope=scope), self.state))
            if snapshot_fingerprint(pool.candidate_ids, scope) != pending.snapshot_fingerprint:
                emit(
                    self.tracer,
                    "stale_discard",
                    {"reason": "scope_snapshot_changed", "scope": scope},
                )
                return RoutingDecision(
                    outcome="safe_clarifier",
                    tier_label="scope_typo_stale",
                    clarifier_text=f"The {scope} has changed since I asked. What would you like to open there?",
                )
            ctx.cue = ScopeCue(
                scope=scope,
                source_kind="generic",
                stripped_text=pending.residual_text,
                cue_text=pending.suggested_cue,
            )
            ctx.residual = pending.residual_text
            return self.resolve_in_pool(ctx, pool, tier_prefix="scope_typo_replay")
        if ctx.intent.kind in {"rejection", "correction"}:
            return RoutingDecision(
                outcome="safe_clarifier",
                tier_label="scope_typo_declined",
                clarifier_text="Okay. Where should I look: chat, widget, dashboard or workspace?",
            )
        return None

    def _scope_typo_prompt(self, ctx: TurnContext) -> RoutingDecision | None:
        cue = ctx.cue
        if not cue.is_typo or cue.is_explicit or cue.typo_scope is None:
            return None
        scope = cue.typo_scope
        pool = self._scoped_pool(scope, instance_for_cue(ScopeCue(scope=scope), self.state))
        self.state.pending_scope_typo = PendingScopeTypo(
            residual_text=cue.stripped_text,
            suggested_scope=scope,
            suggested_cue=cue.typo_cue_text or f"from {scope}",
            created_at_turn=self.state.turn,
            snapshot_fingerprint=snapshot_fingerprint(pool.candidate_ids, scope),
        )
        ctx.flags["scope_typo"] = True
        emit(
            self.tracer,
            "scope_typo",
            {"typed": cue.cue_text, "suggested": cue.typo_cue_text, "scope": scope},
        )
        return RoutingDecision(
            outcome="safe_clarifier",
            tier_label="scope_typo_clarifier",
            clarifier_text=f'Did you mean "{cue.typo_cue_text}"?',
        )

    def _confirm_suggestion(self, ctx: TurnContext) -> RoutingDecision | None:
        state = self.state
        active = state.active_option_set
        suggestion_id = state.pending_suggestion_id
        if state.pending_clarifier_type != "confirm_suggestion" or active is None or suggestion_id is None:
            return None
        if ctx.intent.kind == "affirmation":
            pool = self._option_set_pool(active)
            candidate = pool.get(suggestion_id)
            if candidate is None:
                return None
            ctx.pool = pool
            return self.execute(
                candidate,
                pool,
                outcome="deterministic_execute",
                tier_label="confirm_suggestion",
                provenance="confirmed_suggestion",
                option_set=active,
            )
        if ctx.intent.kind in {"rejection", "correction"}:
            reject_choice(state, suggestion_id, self.config.choice_window)
            state.pending_suggestion_id = None
            state.pending_clarifier_type = "option_select"
            order = clarifier.order_candidates(
                active.candidates, rejected_ids=state.recent_rejected_choice_ids
            )
            return clarifier.reshow(
                active,
                "repair_suggestion",
                message="Okay, not that one. Which of these do you mean?",
                order=[c.id for c in order],
            )
        return None

    def _return_cue(self, ctx: TurnContext) -> RoutingDecision | None:
        state = self.state
        explicit_return = patterns.is_return_cue(ctx.normalized) or (
            ctx.cue.scope == "chat" and not ctx.residual
        )
        if explicit_return:
            option_set = state.active_option_set
            if option_set is None and state.paused_option_set is not None:
                option_set = resume_paused(state)
            elif option_set is None and state.soft_active_option_set is not None:
                option_set = self._reactivate_soft()
            if option_set is None:
                return RoutingDecision(
                    outcome="safe_clarifier",
                    tier_label="return_nothing_paused",
                    clarifier_text="There are no earlier options to go back to. What would you like to do?",
                )
            return clarifier.reshow(option_set, "return_resume")
        if ctx.cue.scope != "chat" or not ctx.residual:
            return None
        # "<ordinal> from chat": explicit chat cue binds to the shown list, paused or not.
        pool = build_scoped_pool("chat", state, self.d.source, limit=self.config.max_pool_size)
        ctx.pool = pool
        match = match_deterministic(ctx.residual, pool.candidates)
        if match is None:
            if pool.origin == "paused_set":
                resume_paused(state)
            return None
        option_set = self._option_set_for_pool(pool)
        if pool.origin == "paused_set":
            resume_paused(state)
        return self.execute(
            match.candidate,
            pool,
            outcome="deterministic_execute",
            tier_label=f"return_cue_{match.kind}",
            provenance="chat_scope_cue",
            option_set=option_set,
        )

    def _paused_ordinal(self, ctx: TurnContext) -> RoutingDecision | None:
        state = self.state
        paused = state.paused_option_set
        if paused is None or state.active_option_set is not None or state.soft_active_option_set is not None:
            return None
        if ctx.cue.is_explicit:
            return None
        pool = self._option_set_pool(paused)
        match = match_ordinal(ctx.residual, pool.candidates)
        if match is None:
            return None
        ctx.pool = pool
        resume_paused(state)
        return self.execute(
            match.candidate,
            pool,
            outcome="deterministic_execute",
            tier_label="paused_ordinal",
            provenance="paused_list_ordinal",
            option_set=paused,
        )

    def _reshow(self, ctx: TurnContext) -> RoutingDecision | None:
        if ctx.intent.kind != "meta":
            return None
        state = self.state
        option_set = state.active_option_set
        if option_set is None and state.soft_active_option_set is not None:
            option_set = self._reactivate_soft()
        if option_set is None and patterns.is_reshow_request(ctx.normalized):
            option_set = resume_paused(state)
        if option_set is None:
            return None
        guard = state.loop_guard
        order = guard.suggestion_order if guard and guard.option_set_id == option_set.option_set_id else None
        return clarifier.reshow(option_set, "reshow", order=order)

    def _repair(self, ctx: TurnContext) -> RoutingDecision | None:
        if ctx.intent.kind != "correction":
            return None
        state = self.state
        soft = state.soft_active_option_set
        last = state.last_resolved_action
        if soft is None or last is None or last.option_set_id != soft.option_set_id:
            return None
        reject_choice(state, last.target_id, self.config.choice_window)
        option_set = self._reactivate_soft()
        if option_set is None:
            return None
        order = clarifier.order_candidates(
            option_set.candidates, rejected_ids=state.recent_rejected_choice_ids
        )
        return clarifier.reshow(
            option_set,
            "repair",
            message="Sorry about that. Which one did you mean?",
            order=[c.id for c in order],
        )

    def _soft_active_gate(self, ctx: TurnContext) -> RoutingDecision | None:
        state = self.state
        soft = state.soft_active_option_set
        if soft is None or state.active_option_set is not None or ctx.cue.is_explicit:
            return None
        labels = tuple(c.label for c in soft.candidates)
        if not is_selection_shaped(ctx.residual, labels):
            return None
        pool = self._option_set_pool(soft)
        match = match_deterministic(ctx.residual, pool.candidates)
        if match is None:
            return None
        ctx.pool = pool
        return self.execute(
            match.candidate,
            pool,
            outcome="deterministic_execute",
            tier_label=f"soft_active_{match.kind}",
            provenance="soft_active_selection",
            option_set=soft,
        )

    def _expired_drift(self, ctx: TurnContext) -> RoutingDecision | None:
        if "active" not in ctx.expired:
            return None
        if not is_selection_shaped(ctx.residual) and ctx.intent.kind not in {"affirmation", "meta"}:
            return None
        emit(self.tracer, "stale_discard", {"reason": "option_set_expired"})
        return RoutingDecision(
            outcome="safe_clarifier",
            tier_label="stale_options",
            clarifier_text="Those options are no longer current. What would you like to open?",
        )

    # -- tier 3 ------------------------------------------------------------

    def tier_new_command(self, ctx: TurnContext) -> RoutingDecision | None:
        state = self.state
        intent = ctx.intent
        if intent.kind == "question" or not ctx.residual:
            return None
        active = state.active_option_set
        labels = tuple(c.label for c in active.candidates) if active else ()
        command_object = canonicalize_command(ctx.residual)
        verb_command = intent.kind == "command" and bool(command_object)
        noun_command = (
            active is not None
            and not intent.is_question
            and known_nouns.match_known_noun(ctx.residual) is not None
        )
        scoped_lookup = (
            ctx.cue.is_explicit
            and ctx.cue.scope != "chat"
            and active is None
            and intent.kind in {"unknown", "navigate"}
        )
        if not (verb_command or noun_command or scoped_lookup):
            return None
        if active is not None:
            if known_nouns.overlaps_labels(command_object, labels):
                ctx.flags["active_label_overlap"] = True
                return None
            if ctx.cue.is_explicit and ctx.cue.scope == active.scope:
                return None
            pause_active(state)
            ctx.flags["paused_active"] = True

        noun = known_nouns.match_known_noun(command_object)
        if noun is not None and ctx.cue.scope in {"none", "dashboard"}:
            return self.open_known_noun(ctx, noun, tier_prefix="command")

        if ctx.cue.is_explicit:
            scope = ctx.cue.scope
            instance_id = instance_for_cue(ctx.cue, state)
        else:
            scope = self.config.default_command_scope  # type: ignore[assignment]
            instance_id = state.scope_instances.get(scope)
        pool = self._scoped_pool(scope, instance_id)
        return self.resolve_in_pool(ctx, pool, tier_prefix="command", subject=command_object)

    # -- tier 4 ------------------------------------------------------------

    def tier_clarification(self, ctx: TurnContext) -> RoutingDecision | None:
        state = self.state
        active = state.active_option_set
        if active is None:
            return None
        labels = tuple(c.label for c in active.candidates)
        if ctx.intent.kind == "question" and not known_nouns.overlaps_labels(ctx.residual, labels):
            return None
        if not ctx.residual:
            return clarifier.reshow(active, "clarifier_empty_reply")

        cue = ctx.cue
        if cue.is_explicit and cue.scope not in {"chat", active.scope}:
            # A different scope named explicitly: only that scope's candidates.
            pool = self._scoped_pool(cue.scope, instance_for_cue(cue, state))
            return self.resolve_in_pool(ctx, pool, tier_prefix="clarifier_rescope")

        pool = self._option_set_pool(active)
        ctx.pool = pool
        match = match_deterministic(ctx.residual, pool.candidates)
        if match is not None:
            return self.execute(
                match.candidate,
                pool,
                outcome="deterministic_execute",
                tier_label=f"clarifier_{match.kind}",
                provenance="clarifier_selection",
                option_set=active,
            )
        return self.arbitrate_option_set(ctx, active, pool, mode="clarifier_reply")

    # -- tier 5 ------------------------------------------------------------

    def tier_known_noun(self, ctx: TurnContext) -> RoutingDecision | None:
        raw = ctx.utterance.text
        if known_nouns.is_trailing_question_only(raw):
            noun = known_nouns.match_known_noun(raw)
            if noun is not None:
                return self.open_or_docs(ctx, noun)
        if known_nouns.is_full_question(raw) or ctx.intent.kind == "question":
            return None
        noun = known_nouns.match_known_noun(ctx.residual)
        if noun is not None:
            return self.open_known_noun(ctx, noun, tier_prefix="known_noun")
        near = known_nouns.find_near_match(ctx.residual)
        if near is None:
            return None
        pool = self._scoped_pool("dashboard", self.state.scope_instances.get("dashboard"))
        visible = known_nouns.resolve_visible(near.noun, pool.candidates)
        ctx.flags["near_match_distance"] = near.distance
        if visible is None:
            return RoutingDecision(
                outcome="handoff",
                tier_label="known_noun_near_miss_unavailable",
                message=f"Did you mean {near.noun.title}? It isn't on the current dashboard.",
            )
        option_set = clarifier.register_option_set(
            self.state,
            (visible,),
            scope=pool.scope,
            question_text=f"Did you mean {visible.label}?",
        )
        self.state.cycle_id += 1
        self.state.pending_clarifier_type = "confirm_suggestion"
        self.state.pending_suggestion_id = visible.id
        return clarifier.reshow(option_set, "known_noun_near_match")

    # -- tier 6 ------------------------------------------------------------

    def tier_docs(self, ctx: TurnContext) -> RoutingDecision | None:
        normalized = ctx.normalized
        if patterns.SEMANTIC_LANE_PATTERN.search(normalized):
            return self.semantic_answer(ctx)
        question_shaped = ctx.intent.is_question or bool(
            patterns.DOC_INSTRUCTION_PATTERN.search(normalized)
        )
        if not question_shaped:
            return None
        topic = ctx.intent.extracted_topic or ctx.residual
        result = self.d.docs.retrieve(topic)
        ctx.flags["doc_status"] = result.status
        self.state.last_topic = topic
        if result.status == "found" and result.results:
            top = result.results[0]
            return RoutingDecision(
                outcome="handoff",
                tier_label="docs_found",
                chosen_candidate_id=top.doc_slug,
                message=top.snippet or top.display_label,
            )
        if result.status == "weak" and result.results:
            options = doc_candidates(result.results[:1])
            question = result.clarification or f'I think you mean "{options[0].label}". Is that right?'
            option_set = clarifier.register_option_set(
                self.state, options, scope="chat", question_text=question
            )
            self.state.cycle_id += 1
            self.state.pending_clarifier_type = "confirm_suggestion"
            self.state.pending_suggestion_id = options[0].id
            return clarifier.reshow(option_set, "docs_weak")
        if result.status == "ambiguous" and len(result.results) >= 2:
            options = doc_candidates(result.results[:2])
            question = result.clarification or (
                f'Do you mean "{options[0].label}" or "{options[1].label}"?'
            )
            option_set = clarifier.register_option_set(
                self.state, options, scope="chat", question_text=question
            )
            self.state.cycle_id += 1
            return clarifier.reshow(option_set, "docs_ambiguous")
        return RoutingDecision(
            outcome="handoff",
            tier_label="docs_no_match",
            message=result.clarification
            or "I don't see docs for that exact term. Which feature are you asking about?",
        )

    def semantic_answer(self, ctx: TurnContext) -> RoutingDecision:
        recent = [
            {"action": entry.action_type, "target": entry.target.name or entry.target.id}
            for entry in self.state.recent_action_trace
            if entry.is_user_meaningful
        ][: self.config.recent_action_window]
        client = self.d.client
        if client is not None and client.available and "arbitrated" not in ctx.flags:
            ctx.flags["arbitrated"] = True
            arbitrator = Arbitrator(
                client,
                max_steps=0,
                max_calls_per_step=self.config.max_calls_per_step,
                tracer=self.tracer,
            )
            outcome = arbitrator.arbitrate(
                ArbitrationRequest(
                    mode="answer",
                    residual=ctx.residual or ctx.normalized,
                    candidates=(),
                    scope="chat",
                    cycle_id=self.state.cycle_id,
                    evidence={"recent_actions": {"items": recent}},
                )
            )
            ctx.arbitration = outcome
            if outcome.result.kind == "answer" and outcome.result.answer_text:
                return RoutingDecision(
                    outcome="handoff",
                    tier_label="semantic_answer",
                    message=outcome.result.answer_text,
                )
        return RoutingDecision(
            outcome="handoff",
            tier_label="semantic_summary",
            message=_summarize_recent(recent),
        )

    def unknown(self) -> RoutingDecision:
        return RoutingDecision(
            outcome="handoff",
            tier_label="unrouted",
            message="I'm not sure what you'd like to do. Try \"open <name>\" or ask a question.",
        )

    # -- shared resolution -------------------------------------------------

    def resolve_in_pool(
        self,
        ctx: TurnContext,
        pool: CandidatePool,
        *,
        tier_prefix: str,
        subject: str | None = None,
    ) -> RoutingDecision:
        """Strict match, then advisory, then one clarifier. Never leaves the pool's scope."""
        ctx.pool = pool
        if not pool.candidates:
            return RoutingDecision(
                outcome="handoff",
                tier_label=f"{tier_prefix}_not_found",
                message=f"I couldn't find anything matching that in the {pool.scope}.",
            )
        match = match_deterministic(ctx.residual, pool.candidates)
        if match is None and subject and subject != ctx.residual:
            # The canonical object ("recent items" for "open my recent items please")
            # must still equal a label exactly.
            match = match_deterministic(subject, pool.candidates)
        if match is not None:
            return self.execute(
                match.candidate,
                pool,
                outcome="deterministic_execute",
                tier_label=f"{tier_prefix}_{match.kind}",
                provenance="deterministic",
            )
        outcome = self.run_arbitration(ctx, pool, mode="selection", clarifier_question=None)
        if outcome is not None and outcome.selected_id is not None:
            candidate = pool.get(outcome.selected_id)
            if candidate is not None and self.auto_execute_allowed(outcome):
                return self.execute(
                    candidate,
                    pool,
                    outcome="advisory_execute",
                    tier_label=f"{tier_prefix}_advisory",
                    provenance="advisory",
                )
        suggested = outcome.selected_id if outcome is not None else None
        slots = ["target"] if ctx.cue.is_explicit else ["target", "scope"]
        ordered = clarifier.order_candidates(
            pool.candidates,
            suggested_id=suggested,
            rejected_ids=self.state.recent_rejected_choice_ids,
        )
        suggestion = pool.get(suggested) if suggested else None
        question = clarifier.build_question(
            slots, subject=subject or ctx.residual, suggestion=suggestion
        )
        option_set = clarifier.register_option_set(
            self.state, ordered, scope=pool.scope, question_text=question
        )
        self.state.cycle_id += 1
        self.state.active_scope = pool.scope
        if pool.scope_instance_id:
            self.state.scope_instances[pool.scope] = pool.scope_instance_id
        if suggestion is not None:
            self.state.pending_clarifier_type = "confirm_suggestion"
            self.state.pending_suggestion_id = suggestion.id
        self._remember_guard(ctx, option_set, suggested, ordered, outcome)
        return RoutingDecision(
            outcome="advisory_influenced" if suggestion is not None else "safe_clarifier",
            tier_label=f"{tier_prefix}_clarifier",
            clarifier_text=question,
            options=ordered,
        )

    def arbitrate_option_set(
        self,
        ctx: TurnContext,
        option_set: ActiveOptionSet,
        pool: CandidatePool,
        *,
        mode: str,
    ) -> RoutingDecision:
        state = self.state
        shape = clarifier.input_shape(ctx.residual)
        fingerprint = snapshot_fingerprint(pool.candidate_ids, pool.scope)
        guard = clarifier.loop_guard_hit(
            state,
            option_set_id=option_set.option_set_id,
            shape=shape,
            candidate_ids=pool.candidate_ids,
            evidence_fingerprint=fingerprint,
        )
        if guard is not None:
            ctx.flags["loop_guard"] = True
            return clarifier.reshow(
                option_set,
                "loop_guard_reshow",
                message="I still can't tell which one you mean. Please pick one of these.",
                order=guard.suggestion_order,
            )
        outcome = self.run_arbitration(
            ctx, pool, mode=mode, clarifier_question=option_set.question_text
        )
        if outcome is not None and outcome.selected_id is not None:
            candidate = pool.get(outcome.selected_id)
            if candidate is not None and self.auto_execute_allowed(outcome):
                return self.execute(
                    candidate,
                    pool,
                    outcome="advisory_execute",
                    tier_label="clarifier_advisory",
                    provenance="advisory",
                    option_set=option_set,
                )
        suggested = outcome.selected_id if outcome is not None else None
        ordered = clarifier.order_candidates(
            option_set.candidates,
            suggested_id=suggested,
            rejected_ids=state.recent_rejected_choice_ids,
        )
        clarifier.record_loop_guard(
            state,
            option_set_id=option_set.option_set_id,
            shape=shape,
            candidate_ids=pool.candidate_ids,
            evidence_fingerprint=fingerprint,
            suggested_id=suggested,
            suggestion_order=[c.id for c in ordered],
        )
        if suggested is not None and option_set.get(suggested) is not None:
            state.pending_clarifier_type = "confirm_suggestion"
            state.pending_suggestion_id = suggested
            suggestion = option_set.get(suggested)
            decision = clarifier.reshow(
                option_set,
                "clarifier_suggestion",
                message=clarifier.build_question(suggestion=suggestion),
                order=[c.id for c in ordered],
            )
            return replace(decision, outcome="advisory_influenced")
        return clarifier.reshow(
            option_set,
            "clarifier_reshow",
            message="I couldn't tell which one you meant. Please pick one of these.",
            order=[c.id for c in ordered],
        )

    def run_arbitration(
        self,
        ctx: TurnContext,
        pool: CandidatePool,
        *,
        mode: str,
        clarifier_question: str | None,
    ) -> ArbitrationOutcome | None:
        client = self.d.client
        if client is None or not client.available:
            return None
        if "arbitrated" in ctx.flags:
            return None
        ctx.flags["arbitrated"] = True
        state = self.state
        issued_cycle = state.cycle_id
        issued_set = state.active_option_set_id
        arbitrator = Arbitrator(
            client,
            max_steps=self.config.max_enrichment_steps,
            max_calls_per_step=self.config.max_calls_per_step,
            tracer=self.tracer,
        )
        outcome = arbitrator.arbitrate(
            ArbitrationRequest(
                mode=mode,  # type: ignore[arg-type]
                residual=ctx.residual,
                candidates=pool.candidates,
                scope=pool.scope,
                cycle_id=issued_cycle,
                clarifier_question=clarifier_question,
            ),
            enricher=self._enricher(pool),
            # Dispatch holds the session lock, so this only trips for callers that
            # share state without SessionStore.lock_for.
            is_current=lambda: state.cycle_id == issued_cycle
            and state.active_option_set_id == issued_set,
        )
        ctx.arbitration = outcome
        return outcome

    def auto_execute_allowed(self, outcome: ArbitrationOutcome) -> bool:
        return (
            self.config.advisory_auto_execute
            and outcome.result.kind == "select"
            and outcome.result.confidence >= self.config.auto_execute_confidence
        )

    def _enricher(self, pool: CandidatePool) -> Callable[[str], dict[str, Any] | None]:
        state = self.state
        pool_ids = set(pool.candidate_ids)

        def enrich(evidence_type: str) -> dict[str, Any] | None:
            if evidence_type == "candidate_details":
                if pool.scope == "chat":
                    return None
                fresh = self.d.source.get_visible_candidates(pool.scope, pool.scope_instance_id)
                # Metadata for the frozen pool only; new candidates are ignored.
                return {
                    c.id: {"sublabel": c.sublabel, "hint": c.hint}
                    for c in fresh
                    if c.id in pool_ids and c.scope == pool.scope
                } or None
            if evidence_type == "recent_actions":
                items = [
                    {"action": e.action_type, "target": e.target.id}
                    for e in state.recent_action_trace[: self.config.recent_action_window]
                ]
                return {"items": items} if items else None
            if evidence_type == "widget_context":
                if pool.scope != "widget":
                    return None
                instance = pool.scope_instance_id or state.scope_instances.get("widget")
                return {"instance": instance} if instance else None
            if evidence_type == "chat_history_labels":
                labels = [
                    c.label
                    for option_set in (state.active_option_set, state.paused_option_set)
                    if option_set is not None
                    for c in option_set.candidates
                    if c.id in pool_ids
                ]
                return {"labels": labels} if labels else None
            return None

        return enrich

    def _remember_guard(
        self,
        ctx: TurnContext,
        option_set: ActiveOptionSet,
        suggested: str | None,
        ordered: Sequence[CandidateRef],
        outcome: ArbitrationOutcome | None,
    ) -> None:
        if outcome is None:
            return
        clarifier.record_loop_guard(
            self.state,
            option_set_id=option_set.option_set_id,
            shape=clarifier.input_shape(ctx.residual),
            candidate_ids=tuple(c.id for c in option_set.candidates),
            evidence_fingerprint=snapshot_fingerprint(
                [c.id for c in option_set.candidates], option_set.scope
            ),
            suggested_id=suggested,
            suggestion_order=[c.id for c in ordered],
        )

    # -- known nouns -------------------------------------------------------

    def open_known_noun(
        self, ctx: TurnContext, noun: known_nouns.KnownNoun, *, tier_prefix: str
    ) -> RoutingDecision:
        pool = self._scoped_pool("dashboard", self.state.scope_instances.get("dashboard"))
        ctx.pool = pool
        visible = known_nouns.resolve_visible(noun, pool.candidates)
        if visible is None:
            return RoutingDecision(
                outcome="handoff",
                tier_label=f"{tier_prefix}_not_visible",
                message=f"The {noun.title} panel isn't available on the current dashboard.",
            )
        return self.execute(
            visible,
            pool,
            outcome="deterministic_execute",
            tier_label=f"{tier_prefix}_known_noun",
            provenance="known_noun",
        )

    def open_or_docs(self, ctx: TurnContext, noun: known_nouns.KnownNoun) -> RoutingDecision:
        pool = self._scoped_pool("dashboard", self.state.scope_instances.get("dashboard"))
        visible = known_nouns.resolve_visible(noun, pool.candidates)
        title = visible.label if visible else noun.title
        panel_id = visible.id if visible else noun.panel_id
        options = (
            CandidateRef(
                id=panel_id,
                label=f"Open {title}",
                type="panel",
                scope="chat",
                sublabel=f"Open the {title} panel",
            ),
            CandidateRef(
                id=f"docs-{noun.panel_id}",
                label=f"Read docs about {title}",
                type="doc",
                scope="chat",
                sublabel=f"Learn what {title} does",
            ),
        )
        question = f"Open {title}, or read docs about it?"
        option_set = clarifier.register_option_set(
            self.state, options, scope="chat", question_text=question
        )
        self.state.cycle_id += 1
        return clarifier.reshow(option_set, "known_noun_open_or_docs")

    # -- execution ---------------------------------------------------------

    def execute(
        self,
        candidate: CandidateRef,
        pool: CandidatePool,
        *,
        outcome: DecisionOutcome,
        tier_label: str,
        provenance: str,
        option_set: ActiveOptionSet | None = None,
    ) -> RoutingDecision:
        state = self.state
        if pool.get(candidate.id) is None:
            # Only members of this turn's pool may execute.
            self.ctx.flags["out_of_pool"] = True
            return RoutingDecision(
                outcome="safe_clarifier",
                tier_label=f"{tier_label}_rejected",
                clarifier_text="I couldn't confirm that choice. Which one do you mean?",
                options=pool.candidates,
            )
        action_type = action_type_for(candidate)
        result = self.d.executor.execute(
            action_type,
            candidate,
            ActionContext(
                session_id=state.session_id,
                scope=pool.scope,
                scope_instance_id=pool.scope_instance_id,
            ),
        )
        self.recorder.record(
            state,
            action_type=action_type,
            target=TargetRef(kind=candidate.type, id=candidate.id, name=candidate.label),
            scope=pool.scope,
            scope_instance_id=pool.scope_instance_id,
            provenance=provenance,
            outcome=result.outcome,
            option_set_id=option_set.option_set_id if option_set else None,
        )
        if option_set is not None:
            if result.ok:
                accept_choice(state, candidate.id, self.config.choice_window)
            if state.active_option_set_id == option_set.option_set_id:
                settle_after_selection(state)
            elif state.soft_active_option_set is not None:
                state.soft_active_since_turn = state.turn
        if pool.scope != "chat":
            state.active_scope = pool.scope
            if pool.scope_instance_id:
                state.scope_instances[pool.scope] = pool.scope_instance_id
        message = (
            f"Opening {candidate.label}."
            if result.ok
            else f"I couldn't open {candidate.label}: {result.error}"
        )
        return RoutingDecision(
            outcome=outcome,
            tier_label=tier_label,
            chosen_candidate_id=candidate.id,
            message=message,
            action_type=action_type,
            action_ok=result.ok,
        )

    # -- helpers -----------------------------------------------------------

    def _scoped_pool(self, scope: str, instance_id: str | None) -> CandidatePool:
        return build_scoped_pool(
            scope,  # type: ignore[arg-type]
            self.state,
            self.d.source,
            limit=self.config.max_pool_size,
            scope_instance_id=instance_id,
        )

    def _option_set_pool(self, option_set: ActiveOptionSet) -> CandidatePool:
        return CandidatePool(
            scope=option_set.scope,
            candidates=option_set.candidates[: self.config.max_pool_size],
            scope_instance_id=self.state.scope_instances.get(option_set.scope),
            origin="option_set",
        )

    def _option_set_for_pool(self, pool: CandidatePool) -> ActiveOptionSet | None:
        state = self.state
        for option_set in (
            state.active_option_set,
            state.soft_active_option_set,
            state.paused_option_set,
        ):
            if option_set is not None and option_set.option_set_id == pool.scope_instance_id:
                return option_set
        return None

    def _reactivate_soft(self) -> ActiveOptionSet | None:
        state = self.state
        soft = state.soft_active_option_set
        if soft is None:
            return None
        state.active_option_set = soft
        state.soft_active_option_set = None
        state.soft_active_since_turn = None
        state.pending_clarifier_type = "option_select"
        return soft


def _summarize_recent(recent: list[dict[str, str]]) -> str:
    if not recent:
        return "You haven't done anything yet in this session."
    latest = recent[0]
    message = f"Your last action was {latest['action'].replace('_', ' ')} \"{latest['target']}\"."
    if len(recent) > 1:
        before = recent[1]
        message += f" Before that: {before['action'].replace('_', ' ')} \"{before['target']}\"."
    return message
