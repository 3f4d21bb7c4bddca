from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from chatnav.core.tracing import TraceWriter, emit
from chatnav.core.types import CandidateRef
from chatnav.routing.advisory import (
    EVIDENCE_TYPES,
    AdvisoryClient,
    AdvisoryMode,
    AdvisoryResult,
    need_more_info,
)
from chatnav.routing.candidates import snapshot_fingerprint

Enricher = Callable[[str], "Mapping[str, Any] | None"]


@dataclass(frozen=True, slots=True)
class ArbitrationRequest:
    mode: AdvisoryMode
    residual: str
    candidates: tuple[CandidateRef, ...]
    scope: str
    cycle_id: int
    clarifier_question: str | None = None
    evidence: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ArbitrationOutcome:
    result: AdvisoryResult
    cycle_id: int
    calls: int
    steps: int
    stop_reason: str
    fingerprint_before: str
    fingerprint_after: str
    budget_remaining: int
    evidence: Mapping[str, Any] = field(default_factory=dict)

    @property
    def selected_id(self) -> str | None:
        if self.result.kind == "select":
            return self.result.candidate_id
        return None


class Arbitrator:
    """Advisory call plus a bounded enrichment loop.

    The loop only runs on ``need_more_info`` carrying an evidence request. Each
    step fetches allow-listed metadata for the same scope; the candidate list
    itself never changes. It stops when the evidence fingerprint does not move,
    when the step budget runs out, or when no enrichment is available.
    """

    def __init__(
        self,
        client: AdvisoryClient,
        *,
        max_steps: int = 2,
        max_calls_per_step: int = 1,
        tracer: TraceWriter | None = None,
    ) -> None:
        self.client = client
        self.max_steps = max_steps
        self.max_calls_per_step = max_calls_per_step
        self.tracer = tracer

    def arbitrate(
        self,
        request: ArbitrationRequest,
        enricher: Enricher | None = None,
        is_current: Callable[[], bool] | None = None,
    ) -> ArbitrationOutcome:
        ids = [candidate.id for candidate in request.candidates]
        evidence: dict[str, Any] = dict(request.evidence)
        fingerprint = snapshot_fingerprint(ids, request.scope, evidence)
        fingerprint_before = fingerprint
        calls = 0
        steps = 0

        result, used = self._call(request, evidence, step=0)
        calls += used
        stop_reason = "resolved"
        while result.kind == "need_more_info":
            if not result.evidence_request:
                stop_reason = result.error or "need_more_info"
                break
            if steps >= self.max_steps:
                stop_reason = "budget_exhausted"
                break
            if enricher is None:
                stop_reason = "enrichment_unavailable"
                break
            fetched: dict[str, Any] = {}
            for evidence_type in result.evidence_request:
                if evidence_type not in EVIDENCE_TYPES:
                    continue
                data = enricher(evidence_type)
                if data:
                    fetched[evidence_type] = dict(data)
            if not fetched:
                stop_reason = "enrichment_unavailable"
                break
            next_evidence = {**evidence, **fetched}
            next_fingerprint = snapshot_fingerprint(ids, request.scope, next_evidence)
            if next_fingerprint == fingerprint:
                stop_reason = "no_new_evidence"
                break
            steps += 1
            emit(
                self.tracer,
                "enrichment_step",
                {
                    "cycle_id": request.cycle_id,
                    "step": steps,
                    "evidence_types": sorted(fetched),
                    "fingerprint_before": fingerprint,
                    "fingerprint_after": next_fingerprint,
                    "budget_remaining": self.max_steps - steps,
                },
            )
            evidence = next_evidence
            fingerprint = next_fingerprint
            result, used = self._call(request, evidence, step=steps)
            calls += used

        if is_current is not None and not is_current():
            emit(
                self.tracer,
                "stale_discard",
                {"cycle_id": request.cycle_id, "discarded_kind": result.kind},
            )
            result = need_more_info("stale")
            stop_reason = "stale"

        outcome = ArbitrationOutcome(
            result=result,
            cycle_id=request.cycle_id,
            calls=calls,
            steps=steps,
            stop_reason=stop_reason,
            fingerprint_before=fingerprint_before,
            fingerprint_after=fingerprint,
            budget_remaining=self.max_steps - steps,
            evidence=evidence,
        )
        emit(
            self.tracer,
            "arbitration_stop",
            {
                "cycle_id": request.cycle_id,
                "mode": request.mode,
                "result": result.kind,
                "reason": stop_reason,
                "calls": calls,
                "steps": steps,
                "fingerprint_before": fingerprint_before,
                "fingerprint_after": fingerprint,
                "budget_remaining": outcome.budget_remaining,
            },
        )
        return outcome

    def _call(
        self, request: ArbitrationRequest, evidence: Mapping[str, Any], *, step: int
    ) -> tuple[AdvisoryResult, int]:
        result = need_more_info("unavailable")
        attempts = 0
        # Only transport failures are retried; a timeout already spent the budget.
        while attempts < self.max_calls_per_step:
            attempts += 1
            result = self.client.invoke(
                request.mode,
                request.residual,
                request.candidates,
                clarifier_question=request.clarifier_question,
                evidence=evidence or None,
            )
            emit(
                self.tracer,
                "arbitration_call",
                {
                    "cycle_id": request.cycle_id,
                    "mode": request.mode,
                    "step": step,
                    "attempt": attempts,
                    "candidate_count": len(request.candidates),
                    "result": result.kind,
                    "error": result.error,
                },
            )
            if not result.is_transport_error:
                break
        return result, attempts
