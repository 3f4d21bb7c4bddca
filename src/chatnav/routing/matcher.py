"""Deterministic matching: the only path allowed to execute without asking.

Exactly two match kinds count: whole-input label/sublabel equality after case,
whitespace, separator and trailing-punctuation folding (optionally behind one
selection verb), and a whole-input ordinal. Substring, prefix, token-subset
and fuzzy matches are never exact.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Sequence

from chatnav.core.types import CandidateRef
from chatnav.routing.patterns import SELECTION_VERB_PATTERN, fold_label, parse_strict_ordinal

MatchKind = Literal["label", "sublabel", "ordinal"]


@dataclass(frozen=True, slots=True)
class MatchResult:
    candidate: CandidateRef
    kind: MatchKind


def _input_forms(residual: str) -> tuple[str, ...]:
    folded = fold_label(residual)
    without_verb = SELECTION_VERB_PATTERN.sub("", folded, count=1).strip()
    if without_verb and without_verb != folded:
        return (folded, without_verb)
    return (folded,)


def _unique(matches: Iterable[CandidateRef]) -> CandidateRef | None:
    found = {candidate.id: candidate for candidate in matches}
    if len(found) == 1:
        return next(iter(found.values()))
    return None


def match_exact(residual: str, pool: Sequence[CandidateRef]) -> MatchResult | None:
    if not residual or not pool:
        return None
    forms = _input_forms(residual)
    label_hit = _unique(c for c in pool if fold_label(c.label) in forms)
    if label_hit is not None:
        return MatchResult(candidate=label_hit, kind="label")
    if any(fold_label(c.label) in forms for c in pool):
        # Two candidates share the label; not unique.
        return None
    sublabel_hit = _unique(c for c in pool if c.sublabel and fold_label(c.sublabel) in forms)
    if sublabel_hit is not None:
        return MatchResult(candidate=sublabel_hit, kind="sublabel")
    return None


def match_ordinal(residual: str, pool: Sequence[CandidateRef]) -> MatchResult | None:
    index = parse_strict_ordinal(residual, len(pool))
    if index is None:
        return None
    return MatchResult(candidate=pool[index], kind="ordinal")


def match_deterministic(residual: str, pool: Sequence[CandidateRef]) -> MatchResult | None:
    """Unique exact or ordinal match against the pool's declared order, else None."""
    return match_ordinal(residual, pool) or match_exact(residual, pool)
