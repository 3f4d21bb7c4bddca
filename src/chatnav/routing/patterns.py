"""Static lexicon shared by every routing tier.

All routing regexes, the typo table and the ordinal vocabulary live here so the
classifier, matcher and dispatcher cannot drift apart.
"""

from __future__ import annotations

import re

AFFIRMATION_PATTERN = re.compile(
    r"^(yes|yeah|yep|yup|sure|ok|okay|k|ya|ye|yea|mhm|uh\s*huh|go ahead|do it|proceed"
    r"|correct|right|exactly|confirm|confirmed)(\s+please)?$"
)
REJECTION_PATTERN = re.compile(
    r"^(no|nope|nah|negative|cancel|stop|abort|never\s*mind|forget it|don'?t|not now"
    r"|skip|pass)$"
)
STOP_PATTERN = re.compile(
    r"^((ok(ay)?|no|please|pls|just)\s+)?(stop|cancel|abort|quit|exit|nvm|never\s*mind|forget it"
    r"|stop (it|that|this)|cancel (it|that|this)|nevermind that)(\s+(please|pls|now))?$"
)
QUESTION_START_PATTERN = re.compile(
    r"^(what|which|where|when|how|why|who|is|are|do|does|did|can|could|should|would)\b"
)
COMMAND_START_PATTERN = re.compile(r"^(open|show|go|list|create|close|delete|rename|back|home)\b")
DOC_INSTRUCTION_PATTERN = re.compile(r"\b(how to|how do i|tell me how|show me how|walk me through)\b")
POLITE_IMPERATIVE_PATTERN = re.compile(
    r"^(can|could|would|will) you (please |pls )?(open|show|go to|view|launch|select|pick)\b"
)
NAVIGATE_PATTERN = re.compile(r"^(go|navigate|back|home)\b")
SEMANTIC_LANE_PATTERN = re.compile(
    r"\b(why did|what (just )?happened|what was that|summarize|recap|what have i been doing"
    r"|what did (i|we) (just )?do|my (recent )?activity|my session)\b"
)
RETURN_CUE_PATTERN = re.compile(
    r"^((go )?back to (the )?(options|list|choices)|return to (the )?(options|list)"
    r"|resume( (the )?(options|list))?|where was i|continue choosing)$"
)
RESHOW_PATTERNS = (
    re.compile(r"^show\s*(me\s*)?(the\s*)?options( again)?$"),
    re.compile(r"^(what\s*were\s*those|what\s*were\s*they)$"),
    re.compile(r"^i'?m\s*confused$"),
    re.compile(r"^(can\s*you\s*)?show\s*(me\s*)?(again|them)$"),
    re.compile(r"^remind\s*me$"),
    re.compile(r"^options$"),
)
META_PATTERNS = (
    re.compile(r"^what(\s+do\s+you)?\s+mean$"),
    re.compile(r"^explain(\s+that)?(\s+please)?$"),
    re.compile(r"^help(\s+me)?(\s+understand)?$"),
    re.compile(r"^what\s+are\s+(my\s+)?(the\s+)?options$"),
    re.compile(r"^what('s|s|\s+is)\s+the\s+difference$"),
    re.compile(r"^huh$"),
    re.compile(r"^\?+$"),
    re.compile(r"^what$"),
    re.compile(r"^(i('m|m)?\s+)?not\s+sure$"),
    re.compile(r"^i\s+don('t|t)\s+know$"),
    re.compile(r"^what\s+is\s+that$"),
    re.compile(r"^clarify(\s+please)?$"),
    re.compile(r"^options$"),
)
CONVERSATIONAL_PREFIXES = (
    re.compile(r"^(can|could|would|will) you (please |pls )?(tell me|explain|help me understand) "),
    re.compile(r"^(please |pls )?(tell me|explain) "),
    re.compile(r"^i('d| would) (like to|want to) (know|understand) "),
    re.compile(r"^(do you know|can you help me understand) "),
)
CORRECTION_PHRASES = (
    "no",
    "nope",
    "not that",
    "not that one",
    "not what i meant",
    "not what i asked",
    "that's wrong",
    "thats wrong",
    "wrong",
    "wrong one",
    "incorrect",
    "something else",
    "try again",
)
FOLLOWUP_PHRASES = (
    "tell me more",
    "more details",
    "explain more",
    "how does it work",
    "how does that work",
    "what else",
    "go on",
    "elaborate",
)

# Function words only. Label text is never rewritten, so the strict matcher is unaffected.
TYPO_TABLE = {
    "youu": "you",
    "yuo": "you",
    "opn": "open",
    "oepn": "open",
    "shwo": "show",
    "shw": "show",
    "optins": "options",
    "optons": "options",
    "optiosn": "options",
    "teh": "the",
    "plz": "please",
    "wat": "what",
    "whta": "what",
    "dashbaord": "dashboard",
    "wrokspace": "workspace",
}

# Verb prefixes the strict matcher may strip; a verb plus an exact label is
# still an exact reference.
SELECTION_VERB_PATTERN = re.compile(r"^(open|show|select|pick|choose|view|go to)\s+(the\s+)?")

ORDINAL_WORDS = {
    "first": 0,
    "1st": 0,
    "second": 1,
    "2nd": 1,
    "third": 2,
    "3rd": 2,
    "fourth": 3,
    "4th": 3,
    "fifth": 4,
    "5th": 4,
}
STRICT_ORDINAL_PATTERN = re.compile(
    r"^(?:(?:the\s+)?(?P<word>first|second|third|fourth|fifth|1st|2nd|3rd|4th|5th|last)"
    r"(?:\s+(?:one|option|item))?"
    r"|(?:option|number|#)?\s*(?P<num>[1-9]))$"
)
EMBEDDED_ORDINAL_PATTERN = re.compile(
    r"\b(first|second|third|fourth|fifth|1st|2nd|3rd|4th|5th|last)\b"
)

_SEPARATORS_RE = re.compile(r"[-_/,:;]+")
_TRAILING_PUNCT_RE = re.compile(r"[?!.]+$")
_SPACES_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    normalized = text.lower().strip()
    normalized = _SEPARATORS_RE.sub(" ", normalized)
    normalized = _TRAILING_PUNCT_RE.sub("", normalized)
    return _SPACES_RE.sub(" ", normalized).strip()


def fold_label(text: str) -> str:
    """Fold used for strict label equality.

    Labels and user input go through the same normalization, so a label like
    "Budget: 2025" still equals the normalized input "budget 2025".
    """
    return normalize_text(text)


def apply_typo_table(tokens: list[str]) -> list[str]:
    return [TYPO_TABLE.get(token, token) for token in tokens]


def strip_conversational_prefix(normalized: str) -> str:
    result = normalized
    for prefix in CONVERSATIONAL_PREFIXES:
        result = prefix.sub("", result)
    return result


def canonicalize_command(text: str) -> str:
    """Strip polite prefixes, a leading verb, articles and trailing filler."""
    normalized = normalize_text(text)
    normalized = re.sub(
        r"^(hey\s+)?((can|could|would|will) you\s+)?((please|pls)\s+)?", "", normalized
    )
    normalized = re.sub(r"^(open|show|view|go to|launch|list)\s+", "", normalized)
    normalized = re.sub(r"^(the|a|an|my)\s+", "", normalized)
    normalized = re.sub(r"\s+(please|pls|plz|thanks|thx|now)$", "", normalized)
    return _SPACES_RE.sub(" ", normalized).strip()


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def is_polite_imperative(normalized: str) -> bool:
    return bool(POLITE_IMPERATIVE_PATTERN.match(normalized))


def is_stop_request(normalized: str) -> bool:
    return bool(STOP_PATTERN.match(normalized))


def is_return_cue(normalized: str) -> bool:
    return bool(RETURN_CUE_PATTERN.match(normalized))


def is_reshow_request(normalized: str) -> bool:
    return any(pattern.match(normalized) for pattern in RESHOW_PATTERNS)


def parse_strict_ordinal(text: str, option_count: int) -> int | None:
    """Index for input that is wholly an ordinal reference, else None."""
    if option_count <= 0:
        return None
    match = STRICT_ORDINAL_PATTERN.match(fold_label(text))
    if match is None:
        return None
    word = match.group("word")
    if word == "last":
        index = option_count - 1
    elif word is not None:
        index = ORDINAL_WORDS[word]
    else:
        index = int(match.group("num")) - 1
    if 0 <= index < option_count:
        return index
    return None


def has_embedded_ordinal(normalized: str) -> bool:
    return bool(EMBEDDED_ORDINAL_PATTERN.search(normalized)) or bool(
        re.search(r"\b[1-9]\b", normalized)
    )
