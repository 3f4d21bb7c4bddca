from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Tuple

IntentKind = Literal[
    "affirmation",
    "rejection",
    "correction",
    "question",
    "command",
    "meta",
    "followup",
    "navigate",
    "unknown",
]
ScopeKind = Literal["chat", "widget", "dashboard", "workspace", "none"]
SourceKind = Literal["named", "generic", "none"]
DecisionOutcome = Literal[
    "deterministic_execute",
    "advisory_execute",
    "advisory_influenced",
    "safe_clarifier",
    "handoff",
]
TraceOutcome = Literal["success", "failed"]

SCOPES: tuple[str, ...] = ("chat", "widget", "dashboard", "workspace")
EXECUTE_OUTCOMES = frozenset({"deterministic_execute", "advisory_execute"})


@dataclass(frozen=True, slots=True)
class Utterance:
    text: str
    seq: int
    session_id: str
    ts: float


@dataclass(frozen=True, slots=True)
class ClassifiedIntent:
    kind: IntentKind
    normalized: str
    tokens: Tuple[str, ...] = ()
    is_question: bool = False
    is_command: bool = False
    extracted_topic: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ScopeCue:
    scope: ScopeKind = "none"
    source_kind: SourceKind = "none"
    stripped_text: str = ""
    cue_text: Optional[str] = None
    named_target: Optional[str] = None
    typo_scope: Optional[ScopeKind] = None
    typo_cue_text: Optional[str] = None

    @property
    def is_explicit(self) -> bool:
        return self.scope != "none"

    @property
    def is_typo(self) -> bool:
        return self.typo_scope is not None


@dataclass(frozen=True, slots=True)
class CandidateRef:
    id: str
    label: str
    type: str
    scope: ScopeKind
    sublabel: Optional[str] = None
    hint: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ActiveOptionSet:
    option_set_id: str
    candidates: Tuple[CandidateRef, ...]
    scope: ScopeKind
    created_at_turn: int
    question_text: str

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        return tuple(candidate.id for candidate in self.candidates)

    def get(self, candidate_id: str) -> CandidateRef | None:
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None


@dataclass(frozen=True, slots=True)
class TargetRef:
    kind: str
    id: str
    name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ActionTraceEntry:
    trace_id: str
    seq: int
    ts_ms: int
    action_type: str
    target: TargetRef
    scope: ScopeKind
    scope_instance_id: Optional[str]
    provenance: str
    dedupe_key: str
    is_user_meaningful: bool
    outcome: TraceOutcome
    parent_trace_id: Optional[str] = None


@dataclass(slots=True)
class LastResolvedAction:
    action_type: str
    target_id: str
    label: Optional[str]
    ts_ms: int
    option_set_id: Optional[str] = None
    source: str = "trace"


@dataclass(slots=True)
class PendingScopeTypo:
    residual_text: str
    suggested_scope: ScopeKind
    suggested_cue: str
    created_at_turn: int
    snapshot_fingerprint: str


@dataclass(slots=True)
class LoopGuardState:
    option_set_id: Optional[str]
    input_shape: str
    candidate_ids: Tuple[str, ...]
    evidence_fingerprint: str
    suggested_id: Optional[str] = None
    suggestion_order: Tuple[str, ...] = ()
    retry_attempted: bool = False


@dataclass(slots=True)
class ContinuityState:
    session_id: str
    turn: int = 0
    cycle_id: int = 0
    trace_seq: int = 0
    last_resolved_action: Optional[LastResolvedAction] = None
    recent_action_trace: List[ActionTraceEntry] = field(default_factory=list)
    action_trace: List[ActionTraceEntry] = field(default_factory=list)
    active_option_set: Optional[ActiveOptionSet] = None
    paused_option_set: Optional[ActiveOptionSet] = None
    paused_at_turn: Optional[int] = None
    soft_active_option_set: Optional[ActiveOptionSet] = None
    soft_active_since_turn: Optional[int] = None
    active_scope: ScopeKind = "none"
    last_accepted_choice_id: Optional[str] = None
    recent_accepted_choice_ids: List[str] = field(default_factory=list)
    recent_rejected_choice_ids: List[str] = field(default_factory=list)
    pending_clarifier_type: Optional[str] = None
    pending_suggestion_id: Optional[str] = None
    pending_scope_typo: Optional[PendingScopeTypo] = None
    loop_guard: Optional[LoopGuardState] = None
    scope_instances: dict[str, str] = field(default_factory=dict)
    last_topic: Optional[str] = None

    @property
    def active_option_set_id(self) -> str | None:
        if self.active_option_set is None:
            return None
        return self.active_option_set.option_set_id


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    outcome: DecisionOutcome
    tier_label: str
    chosen_candidate_id: Optional[str] = None
    clarifier_text: Optional[str] = None
    message: Optional[str] = None
    options: Tuple[CandidateRef, ...] = ()
    action_type: Optional[str] = None
    action_ok: Optional[bool] = None

    @property
    def executes(self) -> bool:
        return self.outcome in EXECUTE_OUTCOMES
