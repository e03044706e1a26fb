"""Command-line driver: validate, run, schedule, query lineage and backfill DAGs."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sqlite3
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Sequence

from dagflow.dag import Dag, DagError, DagSpec, NodeIndex, SpecError
from dagflow.forjar import ForjarError, ForjarRunner
from dagflow.lineage import LineageError, LineageStore
from dagflow.local import ClosureTask, LocalRunner
from dagflow.report import RunReport
from dagflow.scheduler import DagScheduler, SchedulerError
from dagflow.task import Context, Task, TaskOutput

logger = logging.getLogger(__name__)

_DEFAULT_LINEAGE_DB = "lineage.sqlite"
_HANDLED_ERRORS = (
    DagError,
    LineageError,
    ForjarError,
    SchedulerError,
    sqlite3.Error,
    OSError,
    ValueError,
)


class CommandError(Exception):
    """A command could not complete."""


def _scratch_root() -> Path:
    return Path(tempfile.gettempdir()) / "dag-cli-scratch"


def parse_date(text: str) -> datetime:
    """Parse ``YYYY-MM-DD`` (midnight UTC) or an RFC 3339 timestamp into UTC."""
    try:
        return datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    error = ValueError(f"invalid date {text!r}: expected YYYY-MM-DD or RFC 3339")
    if len(text) < 11 or text[10] not in "Tt ":
        raise error
    candidate = text[:-1] + "+00:00" if text[-1:] in ("Z", "z") else text
    try:
        moment = datetime.fromisoformat(candidate)
    except ValueError:
        raise error from None
    if moment.tzinfo is None:
        raise error
    return moment.astimezone(timezone.utc)


def _echo(task_id: str) -> Callable[[Context], TaskOutput]:
    def body(_ctx: Context) -> TaskOutput:
        return TaskOutput.text(task_id)

    return body


def build_runnable_dag(spec: DagSpec) -> Dag[Task]:
    """Build a DAG whose tasks each emit their own id as text output."""
    dag: Dag[Task] = Dag()
    indices: dict[str, NodeIndex] = {}
    for task_spec in spec.tasks:
        indices[task_spec.id] = dag.add_node(ClosureTask(task_spec.id, _echo(task_spec.id)))
    for task_spec in spec.tasks:
        target = indices[task_spec.id]
        for dep in task_spec.depends_on:
            if dep not in indices:
                raise SpecError(f"'{task_spec.id}' depends on unknown '{dep}'")
            dag.add_edge(indices[dep], target)
    dag.cycle_check()
    return dag


def _read_spec(path: Path) -> DagSpec:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CommandError(f"failed to read {path}: {exc}") from exc
    return DagSpec.from_yaml(raw)


def _print_report(report: RunReport) -> None:
    print(json.dumps(report.to_dict(), indent=2))


def _cmd_validate(args: argparse.Namespace) -> None:
    spec = _read_spec(args.path)
    dag = spec.build()
    order = dag.topo_sort()
    print(f"OK: {spec.name} ({dag.node_count()} tasks, {dag.edge_count()} edges)")
    if args.print_order:
        for task_id in dag.payloads(order):
            print(f"  - {task_id}")


def _cmd_run(args: argparse.Namespace) -> None:
    run_id = args.run_id or f"run-{int(datetime.now(timezone.utc).timestamp() * 1_000_000)}"
    with LineageStore.open(args.lineage_db) as lineage:
        if args.runner == "local":
            spec = _read_spec(args.path)
            runner = LocalRunner(build_runnable_dag(spec), lineage, _scratch_root())
        else:
            runner = ForjarRunner(args.path, args.forjar_state_dir, lineage)
        _print_report(runner.run(run_id))


def _cmd_schedule(args: argparse.Namespace) -> None:
    spec = _read_spec(args.path)
    spec.build()
    scheduler = DagScheduler()
    job_id = scheduler.schedule(
        spec.name,
        args.cron,
        lambda: logger.info("(cron tick) — would trigger DAG run here"),
    )
    upcoming = scheduler.next_fire(job_id)
    shown = upcoming.isoformat() if upcoming is not None else "none"
    print(f"Registered '{spec.name}' as job {job_id} (next fire: {shown})")


def _cmd_lineage(args: argparse.Namespace) -> None:
    run_id = args.run_id or "default"
    with LineageStore.open(args.lineage_db) as lineage:
        if args.mermaid:
            print(lineage.render_mermaid(run_id), end="")
            return
        payload = {
            "run_id": run_id,
            "task_id": args.task_id,
            "upstream": lineage.query_upstream(run_id, args.task_id),
            "downstream": lineage.query_downstream(run_id, args.task_id),
        }
    print(json.dumps(payload, indent=2, sort_keys=True))


def _cmd_backfill(args: argparse.Namespace) -> None:
    start = parse_date(args.start)
    end = parse_date(args.end)
    if end < start:
        raise CommandError(f"--end ({end}) is before --start ({start})")
    spec = _read_spec(args.path)
    runs_executed = 0
    with LineageStore.open(args.lineage_db) as lineage:
        cursor = start
        while cursor <= end:
            run_id = f"backfill-{cursor:%Y-%m-%d}"
            runner = LocalRunner(build_runnable_dag(spec), lineage, _scratch_root())
            report = runner.run(run_id)
            if not report.all_succeeded():
                states = {key: str(value) for key, value in report.task_states.items()}
                raise CommandError(f"backfill run {run_id} did not succeed (states: {states})")
            runs_executed += 1
            cursor += timedelta(days=1)
    print(
        f"OK: backfill complete — {runs_executed} run(s) "
        f"from {start:%Y-%m-%d} to {end:%Y-%m-%d}"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dag", description="Workflow orchestration CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="parse a DAG spec and check its topology")
    validate.add_argument("path", type=Path, help="path to a DAG yaml file")
    validate.add_argument("--print-order", action="store_true", help="print the topo order")
    validate.set_defaults(handler=_cmd_validate)

    run = sub.add_parser("run", help="execute a DAG end to end")
    run.add_argument("path", type=Path)
    run.add_argument("--runner", choices=("local", "forjar"), default="local")
    run.add_argument("--lineage-db", type=Path, default=Path(_DEFAULT_LINEAGE_DB))
    run.add_argument("--run-id", default=None)
    run.add_argument("--forjar-state-dir", type=Path, default=Path("state"))
    run.set_defaults(handler=_cmd_run)

    schedule = sub.add_parser("schedule", help="validate a cron trigger and show its next fire")
    schedule.add_argument("path", type=Path)
    schedule.add_argument("--cron", required=True, help="sec min hour day month weekday")
    schedule.set_defaults(handler=_cmd_schedule)

    lineage = sub.add_parser("lineage", help="query upstream and downstream edges of a task")
    lineage.add_argument("task_id")
    lineage.add_argument("--run-id", default=None)
    lineage.add_argument("--lineage-db", type=Path, default=Path(_DEFAULT_LINEAGE_DB))
    lineage.add_argument("--mermaid", action="store_true", help="render the run as Mermaid")
    lineage.set_defaults(handler=_cmd_lineage)

    backfill = sub.add_parser("backfill", help="run the DAG once per day in a closed range")
    backfill.add_argument("path", type=Path)
    backfill.add_argument("--start", required=True)
    backfill.add_argument("--end", required=True)
    backfill.add_argument("--lineage-db", type=Path, default=Path(_DEFAULT_LINEAGE_DB))
    backfill.set_defaults(handler=_cmd_backfill)

    return parser


def _configure_logging() -> None:
    level = logging.getLevelName(os.environ.get("DAGFLOW_LOG", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the process exit status."""
    _configure_logging()
    args = _build_parser().parse_args(argv)
    try:
        args.handler(args)
    except (CommandError, *_HANDLED_ERRORS) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())