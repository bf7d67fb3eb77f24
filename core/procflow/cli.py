"""
Command-line interface for procflow.

Usage:
    procflow validate graphs/purchase.json
    procflow build-linear --task "Collect quotes" --task "Compare" --approver-type requester_manager
    procflow build-fork-join --branch IT --branch HR --branch Facilities --output onboarding.json
    procflow sweep --storage ./data --graphs ./graphs
    procflow show-run --storage ./data <run_id>
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from procflow.builder import BranchSpec, TaskSpec, build_fork_join, build_linear
from procflow.errors import ProcessEngineError
from procflow.graph import ApproverType, GraphSpec, ValidationConfig
from procflow.observability import configure_logging


def _load_graph(path: Path) -> GraphSpec:
    return GraphSpec.model_validate_json(path.read_text(encoding="utf-8"))


def _write_graph(graph: GraphSpec, output: str | None) -> None:
    payload = graph.model_dump_json(indent=2)
    if output:
        Path(output).write_text(payload + "\n", encoding="utf-8")
        print(f"Wrote graph {graph.id} to {output}", file=sys.stderr)
    else:
        print(payload)


def _load_graph_store(directory: str | None):
    from procflow.runtime import InMemoryGraphStore

    store = InMemoryGraphStore()
    if directory:
        for path in sorted(Path(directory).glob("*.json")):
            store.add(_load_graph(path))
    return store


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate graph definition files."""
    failures = 0
    for name in args.paths:
        path = Path(name)
        try:
            graph = _load_graph(path)
        except (OSError, ValidationError) as e:
            print(f"✗ {path}: cannot load graph\n{e}")
            failures += 1
            continue

        errors = graph.validate()
        if errors:
            failures += 1
            print(f"✗ {path}: {len(errors)} problem(s)")
            for error in errors:
                print(f"   • {error}")
        else:
            summary = graph.summary()
            print(f"✓ {path}: {summary['nodes']} nodes, {summary['edges']} edges")
    return 1 if failures else 0


def cmd_build_linear(args: argparse.Namespace) -> int:
    approver = ValidationConfig(
        approver_type=args.approver_type,
        approver_id=args.approver_id,
        approver_role=args.approver_role,
        sla_hours=args.sla_hours,
    )
    graph = build_linear(
        [TaskSpec(title=title) for title in args.task or []],
        approver,
        graph_id=args.graph_id,
        name=args.name,
    )
    _write_graph(graph, args.output)
    return 0


def cmd_build_fork_join(args: argparse.Namespace) -> int:
    graph = build_fork_join(
        [BranchSpec(name=name) for name in args.branch or []],
        graph_id=args.graph_id,
        name=args.name,
    )
    _write_graph(graph, args.output)
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    """Process due domain events stored under --storage."""
    from procflow.runtime import ProcessEngine
    from procflow.storage import FileStorage

    engine = ProcessEngine(storage=FileStorage(args.storage), graphs=_load_graph_store(args.graphs))
    result = asyncio.run(engine.process_pending_events())
    print(
        json.dumps(
            {
                "processed": result.processed,
                "errors": result.errors,
                "failed_event_ids": result.failed_event_ids,
            },
            indent=2,
        )
    )
    return 1 if result.errors else 0


def cmd_show_run(args: argparse.Namespace) -> int:
    from procflow.storage import FileStorage

    storage = FileStorage(args.storage)

    async def _show() -> int:
        run = await storage.get_run(args.run_id)
        if run is None:
            print(f"Run {args.run_id} not found", file=sys.stderr)
            return 1
        print(run.model_dump_json(indent=2))
        if not args.no_log:
            print("\nExecution log:")
            for entry in await storage.get_log(run.id):
                node = entry.node_id or "-"
                print(
                    f"  {entry.sequence:>4}  {entry.timestamp.isoformat(timespec='seconds')}  "
                    f"{node:<20} {entry.action}  {json.dumps(entry.details, default=str)}"
                )
        return 0

    return asyncio.run(_show())


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    validate = subparsers.add_parser("validate", help="Validate graph definition files")
    validate.add_argument("paths", nargs="+", help="Graph JSON files")
    validate.set_defaults(func=cmd_validate)

    linear = subparsers.add_parser(
        "build-linear", help="Build start → tasks → validation → notification → end"
    )
    linear.add_argument("--task", action="append", help="Task title (repeatable, in order)")
    linear.add_argument(
        "--approver-type",
        choices=[a.value for a in ApproverType] + ["user"],
        default=ApproverType.REQUESTER_MANAGER.value,
    )
    linear.add_argument("--approver-id", default=None)
    linear.add_argument("--approver-role", default=None)
    linear.add_argument("--sla-hours", type=float, default=None)
    linear.add_argument("--graph-id", default=None)
    linear.add_argument("--name", default="")
    linear.add_argument("--output", "-o", default=None, help="Write to file instead of stdout")
    linear.set_defaults(func=cmd_build_linear)

    fork_join = subparsers.add_parser(
        "build-fork-join", help="Build a fork/join graph over sub-process branches"
    )
    fork_join.add_argument("--branch", action="append", help="Branch name (repeatable)")
    fork_join.add_argument("--graph-id", default=None)
    fork_join.add_argument("--name", default="")
    fork_join.add_argument("--output", "-o", default=None, help="Write to file instead of stdout")
    fork_join.set_defaults(func=cmd_build_fork_join)

    sweep = subparsers.add_parser("sweep", help="Process pending domain events")
    sweep.add_argument("--storage", required=True, help="FileStorage directory")
    sweep.add_argument("--graphs", default=None, help="Directory of graph JSON files")
    sweep.set_defaults(func=cmd_sweep)

    show = subparsers.add_parser("show-run", help="Print a run and its execution log")
    show.add_argument("run_id")
    show.add_argument("--storage", required=True, help="FileStorage directory")
    show.add_argument("--no-log", action="store_true", help="Omit the execution log")
    show.set_defaults(func=cmd_show_run)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="procflow",
        description="procflow - Graph-based process execution engine",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument(
        "--log-format", choices=["auto", "json", "human"], default="auto", help="Log format"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)

    try:
        return args.func(args)
    except ProcessEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
