from __future__ import annotations

import argparse
import json
import os
from pathlib import Path

from chatnav.admin.trace_parser import parse_trace_file
from chatnav.backends import list_backends
from chatnav.core.types import RoutingDecision
from chatnav.routing.candidates import StaticSnapshotSource
from chatnav.routing.docs import StaticDocRetriever
from chatnav.routing.sessions import Router


def _resolve_data_root(cli_value: str | None = None) -> Path:
    if cli_value:
        return Path(cli_value)
    env_root = os.getenv("DATA_ROOT")
    if env_root:
        return Path(env_root)
    return Path("data")


def _build_router(args: argparse.Namespace) -> Router:
    snapshot = args.snapshot or os.getenv("CHATNAV_SNAPSHOT")
    source = StaticSnapshotSource.from_json(Path(snapshot)) if snapshot else StaticSnapshotSource()
    docs_path = args.docs or os.getenv("CHATNAV_DOCS")
    docs = StaticDocRetriever.from_json(Path(docs_path)) if docs_path else None
    return Router(
        source,
        backend_name=args.backend,
        docs=docs,
        data_root=_resolve_data_root(args.data_root),
    )


def render_decision(decision: RoutingDecision) -> str:
    lines = [decision.message or decision.clarifier_text or ""]
    for index, option in enumerate(decision.options, start=1):
        suffix = f" ({option.sublabel})" if option.sublabel else ""
        lines.append(f"  {index}. {option.label}{suffix}")
    return "\n".join(line for line in lines if line)


def _print_decision(decision: RoutingDecision, as_json: bool) -> None:
    if as_json:
        from chatnav.admin.app import decision_to_dict

        print(json.dumps(decision_to_dict(decision), indent=2))
        return
    print(render_decision(decision))


def _route_command(args: argparse.Namespace) -> int:
    router = _build_router(args)
    try:
        decision = router.route(args.text, args.session)
    finally:
        router.close()
    _print_decision(decision, args.json)
    return 0


def _repl_command(args: argparse.Namespace) -> int:
    router = _build_router(args)
    session_id = args.session
    try:
        while True:
            try:
                line = input("> ")
            except EOFError:
                break
            if line.strip() == "/exit":
                break
            if not line.strip():
                continue
            _print_decision(router.route(line, session_id), args.json)
    finally:
        router.close()
    return 0


def _trace_command(args: argparse.Namespace) -> int:
    if args.trace:
        trace_path = Path(args.trace)
    else:
        trace_path = _resolve_data_root(args.data_root) / "traces" / f"{args.session}.jsonl"
    if not trace_path.exists():
        raise SystemExit(f"trace file not found: {trace_path}")
    summary = parse_trace_file(trace_path)
    if not args.events:
        summary.pop("events", None)
    print(f"Trace: {trace_path}")
    print(json.dumps(summary, indent=2))
    return 0


def _serve_command(args: argparse.Namespace) -> int:
    import uvicorn

    from chatnav.admin.app import create_app

    router = _build_router(args)
    app = create_app(router=router, data_root=_resolve_data_root(args.data_root))
    try:
        uvicorn.run(app, host=args.host, port=args.port)
    finally:
        router.close()
    return 0


def _add_router_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--session", default="demo-1")
    parser.add_argument("--snapshot", help="JSON file of visible candidates per scope")
    parser.add_argument("--docs", help="JSON file of documents for the docs lane")
    parser.add_argument("--backend", choices=list_backends())
    parser.add_argument("--data-root")
    parser.add_argument("--json", action="store_true")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatnav")
    subparsers = parser.add_subparsers(dest="command", required=True)

    route_parser = subparsers.add_parser("route", help="Route a single utterance")
    _add_router_arguments(route_parser)
    route_parser.add_argument("--text", required=True)
    route_parser.set_defaults(func=_route_command)

    repl_parser = subparsers.add_parser("repl", help="Route utterances interactively")
    _add_router_arguments(repl_parser)
    repl_parser.set_defaults(func=_repl_command)

    trace_parser = subparsers.add_parser("trace", help="Summarize a routing trace file")
    trace_parser.add_argument("--session", default="demo-1")
    trace_parser.add_argument("--trace")
    trace_parser.add_argument("--data-root")
    trace_parser.add_argument("--events", action="store_true")
    trace_parser.set_defaults(func=_trace_command)

    serve_parser = subparsers.add_parser("serve", help="Run the admin HTTP API")
    _add_router_arguments(serve_parser)
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8765)
    serve_parser.set_defaults(func=_serve_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
