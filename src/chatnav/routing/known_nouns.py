from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from chatnav.core.types import CandidateRef
from chatnav.routing.patterns import levenshtein


@dataclass(frozen=True, slots=True)
class KnownNoun:
    panel_id: str
    title: str


@dataclass(frozen=True, slots=True)
class NearMatch:
    noun: KnownNoun
    key: str
    distance: int


def _quick_links() -> dict[str, KnownNoun]:
    entries: dict[str, KnownNoun] = {}
    for letter in "abcde":
        entries[f"quick links {letter}"] = KnownNoun(f"quick-links-{letter}", f"Quick Links {letter.upper()}")
        entries[f"links panel {letter}"] = KnownNoun(f"quick-links-{letter}", f"Links Panel {letter.upper()}")
    return entries


KNOWN_NOUNS: dict[str, KnownNoun] = {
    "recent": KnownNoun("recent", "Recent"),
    "recents": KnownNoun("recent", "Recent"),
    "recent items": KnownNoun("recent", "Recent"),
    "quick links": KnownNoun("quick-links", "Quick Links"),
    "quicklinks": KnownNoun("quick-links", "Quick Links"),
    "links": KnownNoun("quick-links", "Quick Links"),
    "links panel": KnownNoun("quick-links", "Quick Links"),
    **_quick_links(),
    "navigator": KnownNoun("navigator", "Navigator"),
    "demo": KnownNoun("demo", "Demo"),
    "widget manager": KnownNoun("widget-manager", "Widget Manager"),
    "quick capture": KnownNoun("quick-capture", "Quick Capture"),
    "links overview": KnownNoun("links-overview", "Links Overview"),
}

_VERB_PREFIXES = (
    "can you open ",
    "can you show ",
    "please open ",
    "pls open ",
    "please show ",
    "pls show ",
    "open ",
    "show ",
    "view ",
    "go to ",
    "launch ",
)
_QUESTION_WORD = re.compile(r"^(what|which|where|when|how|why|who|can|could|should|would|is|are|do|does)\b")
_FULL_QUESTION = re.compile(
    r"^(what is|what are|what's|how does|how do|how to|tell me about|explain|describe|define)\b"
)


def normalize_noun(text: str) -> str:
    normalized = re.sub(r"[?!.]+$", "", text.lower().strip())
    for prefix in _VERB_PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix) :]
            break
    normalized = re.sub(r"^(the|my)\s+", "", normalized.strip())
    return re.sub(r"\s+", " ", normalized).strip()


def match_known_noun(text: str) -> KnownNoun | None:
    normalized = normalize_noun(text)
    if normalized in KNOWN_NOUNS:
        return KNOWN_NOUNS[normalized]
    without_suffix = re.sub(r"\s+(widget|panel)$", "", normalized)
    without_suffix = re.sub(r"^widget\s+", "", without_suffix).strip()
    if without_suffix and without_suffix != normalized:
        return KNOWN_NOUNS.get(without_suffix)
    return None


def find_near_match(text: str, max_distance: int = 2) -> NearMatch | None:
    """Closest allow-listed noun within the edit distance. Suggest only."""
    normalized = normalize_noun(text)
    if len(normalized) < 5:
        return None
    best: NearMatch | None = None
    for key, noun in KNOWN_NOUNS.items():
        if abs(len(normalized) - len(key)) > max_distance:
            continue
        distance = levenshtein(normalized, key)
        if 0 < distance <= max_distance and (best is None or distance < best.distance):
            best = NearMatch(noun=noun, key=key, distance=distance)
    return best


def is_full_question(text: str) -> bool:
    normalized = text.lower().strip()
    if _FULL_QUESTION.match(normalized):
        return True
    return normalized.endswith("?") and bool(_QUESTION_WORD.match(normalized[:-1].strip()))


def is_trailing_question_only(text: str) -> bool:
    normalized = text.lower().strip()
    if not normalized.endswith("?"):
        return False
    return not _QUESTION_WORD.match(normalized.rstrip("?").strip())


def resolve_visible(noun: KnownNoun, visible: Sequence[CandidateRef]) -> CandidateRef | None:
    """Map an allow-listed noun onto the panel actually shown, by title, id or type."""
    title = noun.title.lower()
    for candidate in visible:
        if candidate.label.lower().strip() == title:
            return candidate
    for candidate in visible:
        if candidate.id == noun.panel_id:
            return candidate
    type_slug = noun.panel_id.replace("-", "_")
    for candidate in visible:
        if candidate.type == type_slug:
            return candidate
    return None


def overlaps_labels(text: str, labels: Sequence[str]) -> bool:
    """True when the noun phrase names or is named inside any shown label."""
    normalized = normalize_noun(text)
    if not normalized:
        return False
    for label in labels:
        folded = label.lower().strip()
        if not folded:
            continue
        if re.search(rf"\b{re.escape(folded)}\b", normalized) or re.search(
            rf"\b{re.escape(normalized)}\b", folded
        ):
            return True
    return False
