from __future__ import annotations

import json
from pathlib import Path

import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from chatnav.admin.app import create_app
from chatnav.core.config import RouterConfig
from chatnav.core.types import CandidateRef
from chatnav.routing import Router, StaticSnapshotSource

pytestmark = pytest.mark.admin


def _client(tmp_path: Path) -> TestClient:
    source = StaticSnapshotSource(
        {
            "dashboard": [CandidateRef(id="recent", label="Recent", type="panel", scope="dashboard")],
            "widget": {
                "quick-links-a": [
                    CandidateRef(id=f"s{i}", label=f"sample{i}", type="entry", scope="widget")
                    for i in (1, 2, 3)
                ]
            },
        }
    )
    router = Router(source, config=RouterConfig(), data_root=tmp_path)
    return TestClient(create_app(router=router, data_root=tmp_path))


def test_route_and_inspect_session(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHATNAV_ADMIN_TOKEN", raising=False)
    client = _client(tmp_path)

    response = client.post(
        "/api/route", json={"session_id": "s", "text": "open sample from active widget"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["decision"]["tier_label"] == "command_clarifier"
    assert [option["id"] for option in body["decision"]["options"]] == ["s1", "s2", "s3"]
    assert body["decision"]["executes"] is False
    assert body["trace_file_name"] == "s.jsonl"

    picked = client.post("/api/route", json={"session_id": "s", "text": "2"}).json()
    assert picked["decision"]["chosen_candidate_id"] == "s2"
    assert picked["decision"]["executes"] is True

    sessions = client.get("/api/sessions").json()["sessions"]
    assert sessions == [
        {
            "session_id": "s",
            "revision": 2,
            "turn": 2,
            "active_option_set_id": None,
            "active_scope": "widget",
        }
    ]

    continuity = client.get("/api/sessions/s/continuity").json()["continuity"]
    assert continuity["last_resolved_action"]["target_id"] == "s2"
    assert continuity["soft_active_option_set"]["candidates"][1]["label"] == "sample2"

    trace = client.get("/api/sessions/s/trace").json()
    assert trace["file_name"] == "s.jsonl"
    assert trace["decisions_by_tier"] == {"clarifier_ordinal": 1, "command_clarifier": 1}
    assert trace["final_decision"]["chosen_candidate_id"] == "s2"


def test_route_rejects_blank_text(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHATNAV_ADMIN_TOKEN", raising=False)
    client = _client(tmp_path)

    response = client.post("/api/route", json={"session_id": "s", "text": "  "})

    assert response.status_code == 400
    assert "text must be a non-empty string" in response.json()["detail"]


def test_missing_session_and_trace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHATNAV_ADMIN_TOKEN", raising=False)
    client = _client(tmp_path)

    assert client.get("/api/sessions/nobody/continuity").status_code == 404
    missing = client.get("/api/sessions/nobody/trace")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Trace file not found"


def test_record_action_and_focus(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHATNAV_ADMIN_TOKEN", raising=False)
    client = _client(tmp_path)

    recorded = client.post(
        "/api/sessions/s/actions",
        json={"action_type": "open_panel", "target_id": "recent", "label": "Recent"},
    ).json()
    assert recorded["recorded"] is True
    assert recorded["entry"]["target"] == {"kind": "panel", "id": "recent", "name": "Recent"}
    assert recorded["entry"]["provenance"] == "direct_ui"

    focus = client.post(
        "/api/sessions/s/focus", json={"scope": "widget", "instance_id": "quick-links-a"}
    ).json()
    assert focus == {
        "session_id": "s",
        "active_scope": "widget",
        "scope_instances": {"widget": "quick-links-a"},
    }

    bad = client.post("/api/sessions/s/focus", json={"scope": "sidebar"})
    assert bad.status_code == 400

    checkpoint = json.loads((tmp_path / "checkpoints" / "s.json").read_text(encoding="utf-8"))
    assert checkpoint["state"]["scope_instances"] == {"widget": "quick-links-a"}


def test_admin_token_required(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATNAV_ADMIN_TOKEN", "secret")
    client = _client(tmp_path)

    assert client.get("/api/sessions").status_code == 401
    ok = client.get("/api/sessions", headers={"X-Admin-Token": "secret"})
    assert ok.status_code == 200
    assert ok.json() == {"sessions": []}


def test_create_app_builds_router_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHATNAV_ADMIN_TOKEN", raising=False)
    monkeypatch.delenv("CHATNAV_BACKEND", raising=False)
    monkeypatch.delenv("CHATNAV_DOCS", raising=False)
    snapshot = tmp_path / "snapshot.json"
    snapshot.write_text(
        json.dumps({"dashboard": [{"id": "recent", "label": "Recent", "type": "panel"}]}),
        encoding="utf-8",
    )
    monkeypatch.setenv("CHATNAV_SNAPSHOT", str(snapshot))
    monkeypatch.setenv("DATA_ROOT", str(tmp_path / "data"))

    client = TestClient(create_app())
    body = client.post("/api/route", json={"session_id": "s", "text": "open recent"}).json()

    assert body["decision"]["tier_label"] == "command_known_noun"
    assert (tmp_path / "data" / "traces" / "s.jsonl").exists()
