from __future__ import annotations

import re

from chatnav.core.types import ClassifiedIntent, IntentKind
from chatnav.routing import patterns

_TOPIC_PATTERNS = (
    re.compile(r"^(what|who) (is|are) (a |an |the )?(?P<topic>.+)$"),
    re.compile(r"^what does (a |an |the )?(?P<topic>.+?) (do|mean)$"),
    re.compile(r"^how (do|does|can|should) (i|you|we) (use )?(a |an |the )?(?P<topic>.+)$"),
    re.compile(r"^how to (use )?(a |an |the )?(?P<topic>.+)$"),
    re.compile(r"^(tell me about|explain|describe) (a |an |the )?(?P<topic>.+)$"),
    re.compile(r"^where (is|are|can i find) (a |an |the |my )?(?P<topic>.+)$"),
)
_SELECTION_SHAPE = re.compile(r"^(the\s+)?(one|option|item|choice)\b")


def normalize(text: str) -> tuple[str, tuple[str, ...]]:
    """Lower-case, fold separators and correct known typos token-wise."""
    base = patterns.normalize_text(text)
    tokens = patterns.apply_typo_table(base.split()) if base else []
    return " ".join(tokens), tuple(tokens)


def extract_topic(normalized: str) -> str | None:
    stripped = patterns.strip_conversational_prefix(normalized)
    for pattern in _TOPIC_PATTERNS:
        match = pattern.match(stripped)
        if match:
            topic = match.group("topic").strip()
            topic = re.sub(r"\s+(work|works|do|please)$", "", topic)
            return topic or None
    if stripped != normalized and stripped:
        return stripped
    return None


def _is_correction(normalized: str) -> bool:
    return normalized in patterns.CORRECTION_PHRASES or normalized.startswith("not that")


def _is_followup(normalized: str) -> bool:
    return any(
        normalized == phrase or normalized.startswith(phrase + " ")
        for phrase in patterns.FOLLOWUP_PHRASES
    )


def _is_meta(normalized: str) -> bool:
    if patterns.is_reshow_request(normalized):
        return True
    return any(pattern.match(normalized) for pattern in patterns.META_PATTERNS)


def classify(text: str) -> ClassifiedIntent:
    """Classify one turn. Total: anything unrecognised is ``unknown``."""
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    raw_question = text.strip().endswith("?")
    normalized, tokens = normalize(text)
    if not normalized:
        return ClassifiedIntent(kind="unknown", normalized="", tokens=())

    polite_command = patterns.is_polite_imperative(normalized)
    is_command = bool(patterns.COMMAND_START_PATTERN.match(normalized)) or polite_command
    is_question = not polite_command and (
        raw_question
        or bool(patterns.QUESTION_START_PATTERN.match(normalized))
        or bool(patterns.DOC_INSTRUCTION_PATTERN.search(normalized))
    )

    kind: IntentKind
    topic: str | None = None
    if patterns.AFFIRMATION_PATTERN.match(normalized):
        kind = "affirmation"
    elif patterns.REJECTION_PATTERN.match(normalized) or patterns.is_stop_request(normalized):
        kind = "rejection"
    elif _is_correction(normalized):
        kind = "correction"
    elif _is_followup(normalized):
        kind = "followup"
    elif _is_meta(normalized):
        kind = "meta"
    elif is_command and not patterns.NAVIGATE_PATTERN.match(normalized):
        kind = "command"
    elif is_question:
        kind = "question"
        topic = extract_topic(normalized)
    elif patterns.NAVIGATE_PATTERN.match(normalized):
        kind = "navigate"
    else:
        kind = "unknown"

    return ClassifiedIntent(
        kind=kind,
        normalized=normalized,
        tokens=tokens,
        is_question=is_question,
        is_command=is_command,
        extracted_topic=topic,
    )


def is_selection_shaped(text: str, labels: tuple[str, ...] = ()) -> bool:
    """True for ordinals, exact labels and bare selection nouns."""
    folded = patterns.fold_label(text)
    if not folded:
        return False
    if patterns.STRICT_ORDINAL_PATTERN.match(folded):
        return True
    without_verb = patterns.SELECTION_VERB_PATTERN.sub("", folded)
    folded_labels = {patterns.fold_label(label) for label in labels}
    if folded in folded_labels or without_verb in folded_labels:
        return True
    return bool(_SELECTION_SHAPE.match(folded)) and patterns.has_embedded_ordinal(folded)


def is_stop_request(text: str) -> bool:
    normalized, _ = normalize(text)
    return patterns.is_stop_request(normalized)


def canonicalize_command(text: str) -> str:
    normalized, _ = normalize(text)
    return patterns.canonicalize_command(normalized)
