from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from chatnav.core.types import SCOPES, ActiveOptionSet, CandidateRef, ContinuityState, ScopeCue, ScopeKind


class SnapshotSource(Protocol):
    def get_visible_candidates(
        self, scope: ScopeKind, scope_instance_id: str | None
    ) -> list[CandidateRef]:
        ...


@dataclass(frozen=True, slots=True)
class CandidatePool:
    scope: ScopeKind
    candidates: tuple[CandidateRef, ...]
    scope_instance_id: str | None = None
    origin: str = "empty"

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        return tuple(candidate.id for candidate in self.candidates)

    def get(self, candidate_id: str) -> CandidateRef | None:
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None

    def __len__(self) -> int:
        return len(self.candidates)


EMPTY_POOL = CandidatePool(scope="none", candidates=())


class StaticSnapshotSource:
    """In-memory snapshot keyed by scope, optionally by scope instance."""

    def __init__(
        self,
        entries: Mapping[str, Iterable[CandidateRef] | Mapping[str, Iterable[CandidateRef]]]
        | None = None,
    ) -> None:
        self._entries: dict[str, dict[str | None, list[CandidateRef]]] = {}
        for scope, value in (entries or {}).items():
            if isinstance(value, Mapping):
                for instance_id, items in value.items():
                    self.set_candidates(scope, list(items), instance_id)
            else:
                self.set_candidates(scope, list(value))

    def set_candidates(
        self, scope: str, candidates: list[CandidateRef], scope_instance_id: str | None = None
    ) -> None:
        if scope not in SCOPES:
            raise ValueError(f"unknown scope '{scope}'")
        self._entries.setdefault(scope, {})[scope_instance_id] = list(candidates)

    def instances(self, scope: str) -> list[str]:
        return sorted(key for key in self._entries.get(scope, {}) if key is not None)

    def get_visible_candidates(
        self, scope: ScopeKind, scope_instance_id: str | None
    ) -> list[CandidateRef]:
        by_instance = self._entries.get(scope, {})
        if scope_instance_id is not None and scope_instance_id in by_instance:
            return list(by_instance[scope_instance_id])
        if scope_instance_id is None:
            if None in by_instance:
                return list(by_instance[None])
            # A single widget instance is the focused one by default.
            if len(by_instance) == 1:
                return list(next(iter(by_instance.values())))
        return []

    @classmethod
    def from_json(cls, path: Path) -> "StaticSnapshotSource":
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("snapshot file must contain an object")
        source = cls()
        for scope, value in payload.items():
            if isinstance(value, dict):
                for instance_id, items in value.items():
                    source.set_candidates(
                        scope, _coerce_candidates(items, scope), str(instance_id)
                    )
            else:
                source.set_candidates(scope, _coerce_candidates(value, scope))
        return source


def _coerce_candidates(items: Any, scope: str) -> list[CandidateRef]:
    if not isinstance(items, list):
        raise ValueError(f"snapshot scope '{scope}' must be a list of candidates")
    candidates: list[CandidateRef] = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("snapshot candidates must be objects")
        candidate_id = item.get("id")
        label = item.get("label")
        if not isinstance(candidate_id, str) or not isinstance(label, str):
            raise ValueError("snapshot candidates must include id/label strings")
        candidates.append(
            CandidateRef(
                id=candidate_id,
                label=label,
                type=str(item.get("type", "entry")),
                scope=scope,  # type: ignore[arg-type]
                sublabel=item.get("sublabel"),
                hint=item.get("hint"),
            )
        )
    return candidates


def candidate_to_dict(candidate: CandidateRef) -> dict[str, Any]:
    return {
        "id": candidate.id,
        "label": candidate.label,
        "type": candidate.type,
        "scope": candidate.scope,
        "sublabel": candidate.sublabel,
        "hint": candidate.hint,
    }


def candidate_from_dict(payload: Any) -> CandidateRef:
    if not isinstance(payload, dict):
        raise ValueError("candidate must be an object")
    for key in ("id", "label", "type", "scope"):
        if not isinstance(payload.get(key), str):
            raise ValueError(f"candidate field '{key}' must be str")
    return CandidateRef(
        id=payload["id"],
        label=payload["label"],
        type=payload["type"],
        scope=payload["scope"],
        sublabel=payload.get("sublabel"),
        hint=payload.get("hint"),
    )


def dedupe_and_cap(
    candidates: Iterable[CandidateRef], scope: ScopeKind, limit: int
) -> tuple[CandidateRef, ...]:
    seen: set[str] = set()
    result: list[CandidateRef] = []
    for candidate in candidates:
        if candidate.scope != scope or candidate.id in seen:
            continue
        seen.add(candidate.id)
        result.append(candidate)
        if len(result) >= limit:
            break
    return tuple(result)


def instance_for_cue(cue: ScopeCue, state: ContinuityState) -> str | None:
    if cue.named_target:
        target = cue.named_target
        if target.startswith("links panel "):
            return f"quick-links-{target[-1]}"
        return target.replace(" ", "-")
    if cue.scope in ("chat", "none"):
        return None
    return state.scope_instances.get(cue.scope)


def _option_set_pool(option_set: ActiveOptionSet, limit: int, origin: str) -> CandidatePool:
    # Option-set members are re-tagged as chat-scope references to the shown list.
    tagged = [replace(candidate, scope="chat") for candidate in option_set.candidates]
    return CandidatePool(
        scope="chat",
        candidates=dedupe_and_cap(tagged, "chat", limit),
        scope_instance_id=option_set.option_set_id,
        origin=origin,
    )


def build_scoped_pool(
    scope: ScopeKind,
    state: ContinuityState,
    source: SnapshotSource,
    *,
    limit: int,
    scope_instance_id: str | None = None,
) -> CandidatePool:
    """Pool for one explicit scope. Only that scope's collaborator is read."""
    if scope == "none":
        return EMPTY_POOL
    if scope == "chat":
        for option_set, origin in (
            (state.active_option_set, "active_set"),
            (state.soft_active_option_set, "soft_active"),
            (state.paused_option_set, "paused_set"),
        ):
            if option_set is not None:
                return _option_set_pool(option_set, limit, origin)
        return CandidatePool(scope="chat", candidates=(), origin="empty")
    visible = source.get_visible_candidates(scope, scope_instance_id)
    return CandidatePool(
        scope=scope,
        candidates=dedupe_and_cap(visible, scope, limit),
        scope_instance_id=scope_instance_id,
        origin="snapshot",
    )


def snapshot_fingerprint(
    candidate_ids: Iterable[str],
    scope: str,
    metadata: Mapping[str, Any] | None = None,
) -> str:
    meta = metadata or {}
    parts = [
        ",".join(sorted(candidate_ids)),
        scope,
        ",".join(f"{key}={json.dumps(meta[key], sort_keys=True, default=str)}" for key in sorted(meta)),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]
