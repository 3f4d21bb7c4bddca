from __future__ import annotations

import copy
import logging
import threading
import time
from pathlib import Path
from typing import Callable

from chatnav.actions.executor import ActionExecutor
from chatnav.actions.registry import ActionRegistry, NavigationLog, build_default_registry
from chatnav.backends.registry import Backend, get_backend, resolve_backend_name
from chatnav.core.config import RouterConfig, load_config
from chatnav.core.tracing import TraceWriter
from chatnav.core.types import (
    SCOPES,
    ActionTraceEntry,
    ContinuityState,
    RoutingDecision,
    TargetRef,
    Utterance,
)
from chatnav.routing import checkpoints
from chatnav.routing.advisory import AdvisoryClient
from chatnav.routing.candidates import SnapshotSource
from chatnav.routing.continuity import ActionTraceRecorder, now_ms
from chatnav.routing.dispatcher import Dispatcher
from chatnav.routing.docs import DocRetriever

logger = logging.getLogger(__name__)


class SessionStore:
    """Continuity state per session, each guarded by its own lock."""

    def __init__(self, checkpoint_dir: Path | None = None) -> None:
        self.checkpoint_dir = checkpoint_dir
        self._states: dict[str, ContinuityState] = {}
        self._revisions: dict[str, int] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def get(self, session_id: str) -> ContinuityState:
        """Callers must hold ``lock_for(session_id)``."""
        state = self._states.get(session_id)
        if state is not None:
            return state
        loaded = None
        if self.checkpoint_dir is not None:
            loaded = checkpoints.load_continuity(session_id, base_dir=self.checkpoint_dir)
        if loaded is None:
            state = ContinuityState(session_id=session_id)
            self._revisions[session_id] = 0
        else:
            state, revision = loaded
            self._revisions[session_id] = revision
        self._states[session_id] = state
        return state

    def peek(self, session_id: str) -> ContinuityState | None:
        state = self._states.get(session_id)
        if state is not None:
            return state
        if self.checkpoint_dir is None:
            return None
        with self.lock_for(session_id):
            loaded = checkpoints.load_continuity(session_id, base_dir=self.checkpoint_dir)
            if loaded is None:
                return None
            return self.get(session_id)

    def save(self, state: ContinuityState) -> None:
        if self.checkpoint_dir is None:
            return
        revision = self._revisions.get(state.session_id, 0)
        checkpoints.save_continuity(state, base_dir=self.checkpoint_dir, revision=revision)
        self._revisions[state.session_id] = revision + 1

    def revision(self, session_id: str) -> int:
        return self._revisions.get(session_id, 0)

    def session_ids(self) -> list[str]:
        known = set(self._states)
        if self.checkpoint_dir is not None:
            known.update(checkpoints.list_checkpoints(self.checkpoint_dir))
        return sorted(known)


def _require_text(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value


class Router:
    """Session-facing entry point: ``route(text, session_id) -> RoutingDecision``.

    Turns for one session run one at a time under that session's lock. Sessions
    never share continuity state, so different sessions may route concurrently.
    With a ``data_root`` the continuity state is checkpointed after every turn
    and telemetry lands in ``<data_root>/traces/<session>.jsonl``.
    """

    def __init__(
        self,
        source: SnapshotSource,
        *,
        config: RouterConfig | None = None,
        backend: Backend | None = None,
        backend_name: str | None = None,
        docs: DocRetriever | None = None,
        registry: ActionRegistry | None = None,
        data_root: Path | None = None,
        trace_dir: Path | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config or load_config(data_root)
        self.source = source
        self.data_root = data_root
        self.trace_dir = trace_dir or (data_root / "traces" if data_root is not None else None)
        self.clock = clock
        if backend is None:
            name = resolve_backend_name(backend_name)
            if name is not None:
                backend = get_backend(name)
        self.client = (
            AdvisoryClient(
                backend,
                timeout_s=self.config.advisory_timeout_s,
                min_select_confidence=self.config.min_select_confidence,
            )
            if backend is not None
            else None
        )
        self.navigation: NavigationLog | None = None
        if registry is None:
            registry, self.navigation = build_default_registry()
        self.executor = ActionExecutor(registry)
        self.dispatcher = Dispatcher(
            self.config,
            source,
            self.executor,
            client=self.client,
            docs=docs,
            clock=clock,
        )
        self.store = SessionStore(data_root / "checkpoints" if data_root is not None else None)

    def _tracer(self, session_id: str) -> TraceWriter | None:
        if self.trace_dir is None:
            return None
        return TraceWriter(session_id, base_dir=self.trace_dir)

    def route(self, text: str, session_id: str) -> RoutingDecision:
        _require_text(session_id, "session_id")
        _require_text(text, "text")
        with self.store.lock_for(session_id):
            state = self.store.get(session_id)
            utterance = Utterance(
                text=text, seq=state.turn + 1, session_id=session_id, ts=time.time()
            )
            decision = self.dispatcher.dispatch(state, utterance, self._tracer(session_id))
            self.store.save(state)
        logger.debug(
            "session %s turn %s -> %s (%s)",
            session_id,
            utterance.seq,
            decision.outcome,
            decision.tier_label,
        )
        return decision

    def continuity(self, session_id: str) -> ContinuityState | None:
        """Read-only copy of the session's continuity state."""
        _require_text(session_id, "session_id")
        state = self.store.peek(session_id)
        if state is None:
            return None
        with self.store.lock_for(session_id):
            return copy.deepcopy(state)

    def sessions(self) -> list[str]:
        return self.store.session_ids()

    def trace_path(self, session_id: str) -> Path | None:
        tracer = self._tracer(session_id)
        return tracer.path if tracer is not None else None

    def focus(self, session_id: str, scope: str, instance_id: str | None = None) -> ContinuityState:
        """Record which scope (and instance) the user is looking at."""
        _require_text(session_id, "session_id")
        if scope not in SCOPES:
            raise ValueError(f"scope must be one of {', '.join(SCOPES)}")
        with self.store.lock_for(session_id):
            state = self.store.get(session_id)
            state.active_scope = scope  # type: ignore[assignment]
            if instance_id:
                state.scope_instances[scope] = instance_id
            self.store.save(state)
            return copy.deepcopy(state)

    def record_action(
        self,
        session_id: str,
        *,
        action_type: str,
        target_id: str,
        target_kind: str,
        label: str | None = None,
        scope: str = "dashboard",
        scope_instance_id: str | None = None,
        provenance: str = "direct_ui",
        delta_hint_kind: str | None = None,
        parent_trace_id: str | None = None,
        ok: bool = True,
    ) -> ActionTraceEntry | None:
        """Commit an action that happened outside chat, e.g. a click."""
        _require_text(session_id, "session_id")
        _require_text(action_type, "action_type")
        _require_text(target_id, "target_id")
        if scope not in SCOPES:
            raise ValueError(f"scope must be one of {', '.join(SCOPES)}")
        with self.store.lock_for(session_id):
            state = self.store.get(session_id)
            recorder = ActionTraceRecorder(self.config, self._tracer(session_id), self.clock)
            entry = recorder.record(
                state,
                action_type=action_type,
                target=TargetRef(kind=target_kind, id=target_id, name=label),
                scope=scope,
                scope_instance_id=scope_instance_id,
                provenance=provenance,
                outcome="success" if ok else "failed",
                parent_trace_id=parent_trace_id,
                delta_hint_kind=delta_hint_kind,
            )
            self.store.save(state)
            return entry

    def record_legacy_action(
        self,
        session_id: str,
        *,
        action_type: str,
        target_id: str,
        label: str | None = None,
        ts_ms: int | None = None,
    ) -> bool:
        _require_text(session_id, "session_id")
        with self.store.lock_for(session_id):
            state = self.store.get(session_id)
            recorder = ActionTraceRecorder(self.config, self._tracer(session_id), self.clock)
            written = recorder.record_legacy_action(
                state,
                action_type=action_type,
                target_id=target_id,
                label=label,
                ts_ms=self.clock() if ts_ms is None else ts_ms,
            )
            if written:
                self.store.save(state)
            return written

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
