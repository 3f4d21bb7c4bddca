from __future__ import annotations

import os
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from chatnav.admin.trace_parser import parse_trace_file
from chatnav.core.types import RoutingDecision
from chatnav.routing.candidates import StaticSnapshotSource, candidate_to_dict
from chatnav.routing.docs import StaticDocRetriever
from chatnav.routing.sessions import Router


class RouteRequest(BaseModel):
    session_id: str
    text: str


class ActionRequest(BaseModel):
    action_type: str
    target_id: str
    target_kind: str = "panel"
    label: str | None = None
    scope: str = "dashboard"
    scope_instance_id: str | None = None
    provenance: str = "direct_ui"
    delta_hint_kind: str | None = None
    parent_trace_id: str | None = None
    ok: bool = True


class FocusRequest(BaseModel):
    scope: str
    instance_id: str | None = None


def _resolve_data_root(data_root: Path | None) -> Path:
    if data_root is not None:
        return data_root
    env_root = os.getenv("DATA_ROOT")
    if env_root:
        return Path(env_root)
    return Path("data")


def _build_router(root: Path) -> Router:
    snapshot_path = os.getenv("CHATNAV_SNAPSHOT")
    source = (
        StaticSnapshotSource.from_json(Path(snapshot_path))
        if snapshot_path
        else StaticSnapshotSource()
    )
    docs_path = os.getenv("CHATNAV_DOCS")
    docs = StaticDocRetriever.from_json(Path(docs_path)) if docs_path else None
    return Router(source, docs=docs, data_root=root)


def decision_to_dict(decision: RoutingDecision) -> dict[str, Any]:
    return {
        "outcome": decision.outcome,
        "tier_label": decision.tier_label,
        "executes": decision.executes,
        "chosen_candidate_id": decision.chosen_candidate_id,
        "clarifier_text": decision.clarifier_text,
        "message": decision.message,
        "options": [candidate_to_dict(option) for option in decision.options],
        "action_type": decision.action_type,
        "action_ok": decision.action_ok,
    }


def create_app(router: Router | None = None, data_root: Path | None = None) -> FastAPI:
    root = _resolve_data_root(data_root)
    if router is None:
        router = _build_router(root)

    app = FastAPI()
    app.state.data_root = root
    app.state.router = router

    @app.middleware("http")
    async def _auth_middleware(request: Request, call_next):
        token = os.getenv("CHATNAV_ADMIN_TOKEN")
        if token:
            header = request.headers.get("X-Admin-Token")
            if header != token:
                return JSONResponse(status_code=401, content={"detail": "Invalid admin token"})
        return await call_next(request)

    @app.post("/api/route")
    def route(payload: RouteRequest) -> dict[str, Any]:
        try:
            decision = router.route(payload.text, payload.session_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        trace_path = router.trace_path(payload.session_id)
        return {
            "session_id": payload.session_id,
            "decision": decision_to_dict(decision),
            "trace_file_name": trace_path.name if trace_path is not None else None,
        }

    @app.get("/api/sessions")
    def list_sessions() -> dict[str, Any]:
        sessions: list[dict[str, Any]] = []
        for session_id in router.sessions():
            state = router.continuity(session_id)
            if state is None:
                continue
            sessions.append(
                {
                    "session_id": session_id,
                    "revision": router.store.revision(session_id),
                    "turn": state.turn,
                    "active_option_set_id": state.active_option_set_id,
                    "active_scope": state.active_scope,
                }
            )
        return {"sessions": sessions}

    @app.get("/api/sessions/{session_id}/continuity")
    def get_continuity(session_id: str) -> dict[str, Any]:
        state = router.continuity(session_id)
        if state is None:
            raise HTTPException(status_code=404, detail="session not found")
        return {"session_id": session_id, "continuity": asdict(state)}

    @app.post("/api/sessions/{session_id}/actions")
    def record_action(session_id: str, payload: ActionRequest) -> dict[str, Any]:
        try:
            entry = router.record_action(
                session_id,
                action_type=payload.action_type,
                target_id=payload.target_id,
                target_kind=payload.target_kind,
                label=payload.label,
                scope=payload.scope,
                scope_instance_id=payload.scope_instance_id,
                provenance=payload.provenance,
                delta_hint_kind=payload.delta_hint_kind,
                parent_trace_id=payload.parent_trace_id,
                ok=payload.ok,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "session_id": session_id,
            "recorded": entry is not None,
            "entry": asdict(entry) if entry is not None else None,
        }

    @app.post("/api/sessions/{session_id}/focus")
    def focus(session_id: str, payload: FocusRequest) -> dict[str, Any]:
        try:
            state = router.focus(session_id, payload.scope, payload.instance_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "session_id": session_id,
            "active_scope": state.active_scope,
            "scope_instances": dict(state.scope_instances),
        }

    @app.get("/api/sessions/{session_id}/trace")
    def get_trace(session_id: str) -> dict[str, Any]:
        trace_path = router.trace_path(session_id)
        if trace_path is None or not trace_path.exists():
            raise HTTPException(status_code=404, detail="Trace file not found")
        return {
            "session_id": session_id,
            "file_name": trace_path.name,
            **parse_trace_file(trace_path),
        }

    return app
