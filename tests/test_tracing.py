from __future__ import annotations

import json
import logging
from pathlib import Path

from chatnav.core.tracing import TraceEvent, TraceWriter, emit, read_events


def test_trace_writer_appends_jsonl(tmp_path: Path) -> None:
    writer = TraceWriter("session-1", base_dir=tmp_path)

    writer.write(TraceEvent(ts=1.0, kind="scope_typo", data={"typed": "from dashbord"}))
    path = writer.write(TraceEvent(ts=2.0, kind="routing_decision", data={"tier_label": "command_label"}))

    assert path == tmp_path / "session-1.jsonl"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0]) == {"ts": 1.0, "kind": "scope_typo", "data": {"typed": "from dashbord"}}


def test_trace_writer_run_id_in_file_name(tmp_path: Path) -> None:
    writer = TraceWriter("session-1", base_dir=tmp_path, run_id="r2")

    assert writer.path.name == "session-1__r2.jsonl"


def test_emit_without_tracer_is_a_no_op(tmp_path: Path) -> None:
    emit(None, "routing_decision", {"x": 1})

    assert list(tmp_path.iterdir()) == []


def test_emit_copies_data(tmp_path: Path) -> None:
    writer = TraceWriter("s", base_dir=tmp_path)
    data = {"candidate_ids": ("a",)}

    emit(writer, "routing_decision", data)
    data["candidate_ids"] = ("a", "b")

    events = writer.events()
    assert [event.kind for event in events] == ["routing_decision"]
    assert events[0].data["candidate_ids"] == ["a"]


def test_emit_warns_on_unknown_kind(tmp_path: Path, caplog) -> None:
    writer = TraceWriter("s", base_dir=tmp_path)

    with caplog.at_level(logging.WARNING, logger="chatnav.core.tracing"):
        emit(writer, "pool", {})

    assert "unknown routing event kind 'pool'" in caplog.text
    assert writer.events()[0].kind == "pool"


def test_read_events_skips_bad_lines(tmp_path: Path) -> None:
    path = tmp_path / "s.jsonl"
    path.write_text(
        "\n".join(
            [
                json.dumps({"ts": 1.0, "kind": "action_trace", "data": {"target_id": "recent"}}),
                "not json",
                "",
                json.dumps([1, 2]),
                json.dumps({"ts": 2.0, "kind": "routing_decision", "data": "oops"}),
            ]
        ),
        encoding="utf-8",
    )

    events = list(read_events(path))

    assert [event.kind for event in events] == ["action_trace", "routing_decision"]
    assert events[1].data == {}
    assert list(read_events(tmp_path / "missing.jsonl")) == []
