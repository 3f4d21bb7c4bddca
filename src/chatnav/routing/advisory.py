from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence

from chatnav.backends.registry import Backend
from chatnav.core.types import CandidateRef

logger = logging.getLogger(__name__)

AdvisoryMode = Literal["selection", "clarifier_reply", "answer"]
AdvisoryKind = Literal["select", "need_more_info", "answer"]

EVIDENCE_TYPES = ("candidate_details", "recent_actions", "widget_context", "chat_history_labels")

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_MAX_RESIDUAL_CHARS = 500


@dataclass(frozen=True, slots=True)
class AdvisoryResult:
    kind: AdvisoryKind
    candidate_id: str | None = None
    confidence: float = 0.0
    evidence_request: tuple[str, ...] = ()
    answer_text: str | None = None
    error: str | None = None

    @property
    def is_transport_error(self) -> bool:
        return self.error in {"transport_error", "empty_response"}


def need_more_info(error: str | None = None, evidence: Sequence[str] = ()) -> AdvisoryResult:
    return AdvisoryResult(kind="need_more_info", evidence_request=tuple(evidence), error=error)


SYSTEM_PROMPT = """You help a navigation assistant decide which listed option the user means.
Rules:
- Only choose an option whose ID appears in the list.
- If the request is unclear, set decision to "need_more_info" and list the context you need
  in neededContext, using only: candidate_details, recent_actions, widget_context, chat_history_labels.
- In answer mode, reply with decision "answer" and a short explanation in "answer". Never select.
Respond with JSON only:
{"decision": "select|need_more_info|answer", "choiceId": "<ID or null>", "confidence": <0.0 to 1.0>,
 "neededContext": [], "answer": null}"""


def render_options(candidates: Sequence[CandidateRef]) -> str:
    lines = []
    for index, candidate in enumerate(candidates):
        line = f'[{index}] ID="{candidate.id}" Label="{candidate.label}"'
        if candidate.sublabel:
            line += f" ({candidate.sublabel})"
        if candidate.hint:
            line += f" hint={candidate.hint}"
        lines.append(line)
    return "\n".join(lines)


def build_prompt(
    mode: AdvisoryMode,
    residual: str,
    candidates: Sequence[CandidateRef],
    clarifier_question: str | None = None,
    evidence: Mapping[str, Any] | None = None,
) -> str:
    parts = [f"Mode: {mode}"]
    if candidates:
        parts.append("Options:\n" + render_options(candidates))
    if mode == "clarifier_reply" and clarifier_question:
        parts.append(f'You previously asked: "{clarifier_question}"')
    parts.append(f'User said: "{residual[:_MAX_RESIDUAL_CHARS]}"')
    if evidence:
        parts.append("Context:\n" + json.dumps(dict(evidence), sort_keys=True, default=str))
    if mode == "answer":
        parts.append("Answer the question using only the context above. Respond with JSON only.")
    else:
        parts.append(
            "Which option does the user want? Return choiceId (the stable ID), not the index. "
            "Respond with JSON only."
        )
    return "\n\n".join(parts)


def parse_response(raw: str) -> dict[str, Any] | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(text)
        if match is None:
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


class AdvisoryClient:
    """Bounded advisory call with a hard timeout.

    Every failure mode (timeout, transport error, unparsable output, a choice
    outside the supplied pool, a low-confidence choice) comes back as
    ``need_more_info`` so the caller can only enrich or clarify.
    """

    def __init__(
        self,
        backend: Backend | None,
        *,
        timeout_s: float = 1.5,
        min_select_confidence: float = 0.6,
        max_workers: int = 4,
    ) -> None:
        self.backend = backend
        self.timeout_s = timeout_s
        self.min_select_confidence = min_select_confidence
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="advisory")

    @property
    def available(self) -> bool:
        return self.backend is not None

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def invoke(
        self,
        mode: AdvisoryMode,
        residual: str,
        candidates: Sequence[CandidateRef],
        *,
        clarifier_question: str | None = None,
        evidence: Mapping[str, Any] | None = None,
    ) -> AdvisoryResult:
        if self.backend is None:
            return need_more_info("unavailable")
        prompt = build_prompt(mode, residual, candidates, clarifier_question, evidence)
        params = {
            "mode": mode,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        future = self._pool.submit(self.backend.complete, prompt, params)
        try:
            raw = future.result(timeout=self.timeout_s)
        except FutureTimeout:
            future.cancel()
            return need_more_info("timeout")
        except Exception as exc:  # noqa: BLE001
            logger.warning("advisory backend failed: %s", exc)
            return need_more_info("transport_error")
        if not raw:
            return need_more_info("empty_response")
        return self._validate(mode, parse_response(raw), candidates)

    def _validate(
        self,
        mode: AdvisoryMode,
        data: dict[str, Any] | None,
        candidates: Sequence[CandidateRef],
    ) -> AdvisoryResult:
        if data is None:
            return need_more_info("invalid_response")
        decision = data.get("decision")
        needed = data.get("neededContext") or []
        if not isinstance(needed, list):
            needed = []
        evidence = tuple(item for item in needed if item in EVIDENCE_TYPES)
        confidence = data.get("confidence", 0.0)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 0.0
        confidence = max(0.0, min(1.0, float(confidence)))

        if decision == "answer":
            answer = data.get("answer")
            if mode != "answer":
                return need_more_info("answer_in_selection_mode", evidence)
            if not isinstance(answer, str) or not answer.strip():
                return need_more_info("invalid_response")
            return AdvisoryResult(kind="answer", answer_text=answer.strip(), confidence=confidence)

        if decision == "select":
            if mode == "answer":
                return need_more_info("select_in_answer_mode")
            choice_id = data.get("choiceId")
            # Pool membership is checked for every select, whatever the confidence.
            if not isinstance(choice_id, str) or choice_id not in {c.id for c in candidates}:
                return need_more_info("out_of_pool", evidence)
            if confidence < self.min_select_confidence:
                return need_more_info("abstain", evidence)
            return AdvisoryResult(kind="select", candidate_id=choice_id, confidence=confidence)

        return need_more_info(None, evidence)
