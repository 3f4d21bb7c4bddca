"""Command routing ladder and session continuity."""

from . import checkpoints, clarifier, continuity, patterns
from .candidates import CandidatePool, SnapshotSource, StaticSnapshotSource
from .classifier import classify, normalize
from .dispatcher import Dispatcher
from .docs import DocResult, RetrievalResult, StaticDocRetriever
from .matcher import match_deterministic
from .scope_cues import resolve_scope_cue
from .sessions import Router, SessionStore

__all__ = [
    "CandidatePool",
    "DocResult",
    "Dispatcher",
    "RetrievalResult",
    "Router",
    "SessionStore",
    "SnapshotSource",
    "StaticDocRetriever",
    "StaticSnapshotSource",
    "checkpoints",
    "clarifier",
    "classify",
    "continuity",
    "match_deterministic",
    "normalize",
    "patterns",
    "resolve_scope_cue",
]
