"""Routing data model, settings and session telemetry."""

from .config import RouterConfig, load_config
from .tracing import TraceEvent, TraceWriter
from .types import (
    ActionTraceEntry,
    ActiveOptionSet,
    CandidateRef,
    ClassifiedIntent,
    ContinuityState,
    RoutingDecision,
    ScopeCue,
    TargetRef,
    Utterance,
)

__all__ = [
    "ActionTraceEntry",
    "ActiveOptionSet",
    "CandidateRef",
    "ClassifiedIntent",
    "ContinuityState",
    "RouterConfig",
    "RoutingDecision",
    "ScopeCue",
    "TargetRef",
    "TraceEvent",
    "TraceWriter",
    "Utterance",
    "load_config",
]
