from __future__ import annotations

import re
from dataclasses import dataclass

from chatnav.core.types import ScopeCue, ScopeKind
from chatnav.routing.patterns import levenshtein

# Words following "from"/"in" that never start a scope cue.
_NOT_A_SCOPE = frozenset({"that", "this", "what", "here", "there", "them", "then", "chats"})
_SCOPE_WORDS: dict[str, ScopeKind] = {
    "chat": "chat",
    "widget": "widget",
    "dashboard": "dashboard",
    "workspace": "workspace",
}


@dataclass(frozen=True, slots=True)
class _CuePattern:
    scope: ScopeKind
    regex: re.Pattern[str]
    named: bool = False


def _cue(pattern: str) -> re.Pattern[str]:
    # The lookahead keeps a cue from absorbing the first letters of a longer word.
    return re.compile(rf"(?:^|\s)(?P<cue>{pattern})(?![a-z0-9])")


# Ordered: earlier rows win. Chat cues precede widget cues so "back to options"
# is never read as a widget reference.
CUE_TABLE: tuple[_CuePattern, ...] = (
    _CuePattern("chat", _cue(r"back to (?:the )?options")),
    _CuePattern("chat", _cue(r"from (?:the )?earlier options?")),
    _CuePattern("chat", _cue(r"from (?:the )?chat options?")),
    _CuePattern("chat", _cue(r"(?:from|in) (?:the )?chat(?! history)")),
    _CuePattern("widget", _cue(r"from (?:the )?links panel (?P<name>[a-e])"), named=True),
    _CuePattern("widget", _cue(r"from (?:the )?(?P<name>recents?)(?! \w)"), named=True),
    _CuePattern("widget", _cue(r"(?:from|in) (?:the )?(?:active |current )?widgets?")),
    _CuePattern(
        "widget",
        _cue(r"(?:from|in) (?:the )?(?P<name>[a-z0-9][a-z0-9 ]{0,30}?) (?:widget|panel)"),
        named=True,
    ),
    _CuePattern("dashboard", _cue(r"(?:from|in|on) (?:the )?(?:active |current )?dashboards?")),
    _CuePattern("workspace", _cue(r"(?:from|in) (?:the )?(?:active |current )?workspaces?")),
)

_TYPO_CUE = re.compile(
    r"(?:^|\s)(?P<cue>(?P<prep>from|in) (?:the )?(?P<active>active )?(?P<word>[a-z]{3,}))(?![a-z0-9])"
)


def _strip(text: str, start: int, end: int) -> str:
    return re.sub(r"\s+", " ", (text[:start] + " " + text[end:])).strip()


def _named_target(match: re.Match[str]) -> str | None:
    name = match.groupdict().get("name")
    if not name:
        return None
    name = name.strip()
    if name in {"recent", "recents"}:
        return "recent"
    if len(name) == 1:
        return f"links panel {name}"
    if name in {"active", "current", "the"}:
        return None
    return name


def _detect_typo(text: str, max_distance: int) -> ScopeCue | None:
    for match in _TYPO_CUE.finditer(text):
        word = match.group("word")
        if len(word) < 4 or word in _NOT_A_SCOPE or word in _SCOPE_WORDS:
            continue
        best: tuple[int, str] | None = None
        for scope_word in _SCOPE_WORDS:
            distance = levenshtein(word, scope_word)
            if 0 < distance <= max_distance and (best is None or distance < best[0]):
                best = (distance, scope_word)
        if best is None:
            continue
        scope_word = best[1]
        active = match.group("active") or ""
        corrected = f"{match.group('prep')} {active}{scope_word}"
        return ScopeCue(
            scope="none",
            source_kind="none",
            stripped_text=_strip(text, match.start("cue"), match.end("cue")),
            typo_scope=_SCOPE_WORDS[scope_word],
            typo_cue_text=corrected,
            cue_text=match.group("cue"),
        )
    return None


def resolve_scope_cue(normalized: str, max_distance: int = 2) -> ScopeCue:
    """Find an explicit scope cue, strip it and report what remains.

    A cue that only nearly spells a scope word is reported through
    ``typo_scope`` with ``scope == "none"`` so the caller can ask before
    trusting it.
    """
    text = normalized.strip()
    if not text:
        return ScopeCue(stripped_text="")
    for row in CUE_TABLE:
        match = row.regex.search(text)
        if match is None:
            continue
        named = _named_target(match) if row.named else None
        return ScopeCue(
            scope=row.scope,
            source_kind="named" if named else "generic",
            stripped_text=_strip(text, match.start("cue"), match.end("cue")),
            cue_text=match.group("cue"),
            named_target=named,
        )
    typo = _detect_typo(text, max_distance)
    if typo is not None:
        return typo
    return ScopeCue(stripped_text=text)
