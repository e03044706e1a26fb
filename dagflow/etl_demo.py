"""Five-task ETL pipeline run through both runners, checking runtime contracts.

The pipeline is a linear chain ``extract -> transform -> validate -> load ->
notify``. It runs once in-process, once through the ``forjar`` command (when
that command is available), and ten more times in-process to check that the
topological order is deterministic.
"""

from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import sqlite3
import sys
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import yaml

from dagflow.dag import Dag, DagError
from dagflow.forjar import ForjarError, ForjarRunner
from dagflow.lineage import LineageError, LineageStore
from dagflow.local import ClosureTask, LocalRunner
from dagflow.report import RunReport
from dagflow.task import Context, OutputKind, Task, TaskOutput

logger = logging.getLogger(__name__)

TASK_IDS = ("extract", "transform", "validate", "load", "notify")
_DETERMINISM_RUNS = 10

_SAMPLE_ORDERS = [
    {"id": 1, "sku": "SKU-ALPHA", "qty": 2, "unit_price": 4.5},
    {"id": 2, "sku": "SKU-BRAVO", "qty": 1, "unit_price": 12.0},
    {"id": 3, "sku": "SKU-CHARLIE", "qty": 5, "unit_price": 1.25},
]
SAMPLE_FIXTURE = json.dumps(_SAMPLE_ORDERS)


class _ContractError(Exception):
    """A runtime contract of the demo did not hold."""


def _field(data: Any, key: str) -> Any:
    if not isinstance(data, dict):
        raise ValueError("order must be a JSON object")
    if key not in data:
        raise ValueError(f"order is missing field '{key}'")
    return data[key]


def _unsigned(data: Any, key: str) -> int:
    value = _field(data, key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"order field '{key}' must be a non-negative integer")
    return value


def _number(data: Any, key: str) -> float:
    value = _field(data, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"order field '{key}' must be a number")
    return float(value)


def _string(data: Any, key: str) -> str:
    value = _field(data, key)
    if not isinstance(value, str):
        raise ValueError(f"order field '{key}' must be a string")
    return value


@dataclass(frozen=True)
class Order:
    """One order row of the input fixture."""

    id: int
    sku: str
    qty: int
    unit_price: float

    @classmethod
    def from_dict(cls, data: Any) -> Order:
        """Validate and build an order from a JSON object."""
        return cls(
            id=_unsigned(data, "id"),
            sku=_string(data, "sku"),
            qty=_unsigned(data, "qty"),
            unit_price=_number(data, "unit_price"),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible mapping of the order."""
        return asdict(self)


@dataclass(frozen=True)
class EnrichedOrder:
    """An order with its derived ``total = qty * unit_price``."""

    id: int
    sku: str
    qty: int
    unit_price: float
    total: float

    @classmethod
    def from_order(cls, order: Order) -> EnrichedOrder:
        """Derive the enriched row from a plain order."""
        return cls(
            id=order.id,
            sku=order.sku,
            qty=order.qty,
            unit_price=order.unit_price,
            total=order.qty * order.unit_price,
        )

    @classmethod
    def from_dict(cls, data: Any) -> EnrichedOrder:
        """Validate and build an enriched order from a JSON object."""
        return cls(
            id=_unsigned(data, "id"),
            sku=_string(data, "sku"),
            qty=_unsigned(data, "qty"),
            unit_price=_number(data, "unit_price"),
            total=_number(data, "total"),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible mapping of the enriched order."""
        return asdict(self)


def _rows(value: Any, factory: Any, context: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValueError(f"{context}: expected a list of orders")
    try:
        return [factory(item) for item in value]
    except ValueError as exc:
        raise ValueError(f"{context}: {exc}") from exc


def _upstream(ctx: Context, key: str, task: str) -> TaskOutput:
    output = ctx.get(key)
    if output is None:
        raise ValueError(f"{task}: {key} missing")
    return output


def build_etl_dag(workdir: str | os.PathLike[str], fixture: str) -> Dag[Task]:
    """Build the five-task linear ETL chain that works in ``workdir``.

    ``fixture`` is a JSON array of orders with ``id``, ``sku``, ``qty`` and
    ``unit_price`` fields.
    """
    root = Path(workdir)

    def extract(_ctx: Context) -> TaskOutput:
        try:
            parsed = json.loads(fixture)
        except json.JSONDecodeError as exc:
            raise ValueError(f"extract: bad fixture json: {exc}") from exc
        orders = _rows(parsed, Order.from_dict, "extract: bad fixture json")
        rows = [order.to_dict() for order in orders]
        (root / "extract.json").write_text(json.dumps(rows, indent=2), encoding="utf-8")
        return TaskOutput.json(rows)

    def transform(ctx: Context) -> TaskOutput:
        upstream = _upstream(ctx, "extract", "transform")
        orders = _rows(
            upstream.as_json(), Order.from_dict, "transform: extract output not a list of orders"
        )
        return TaskOutput.json([EnrichedOrder.from_order(o).to_dict() for o in orders])

    def validate(ctx: Context) -> TaskOutput:
        upstream = _upstream(ctx, "transform", "validate")
        enriched = _rows(
            upstream.as_json(),
            EnrichedOrder.from_dict,
            "validate: transform output not a list of enriched orders",
        )
        if not enriched:
            raise ValueError("validate: empty batch")
        for order in enriched:
            if not order.total > 0.0:
                raise ValueError(f"validate: total must be positive: {order!r}")
            if not order.sku:
                raise ValueError("validate: sku must be non-empty")
        return TaskOutput.integer(len(enriched))

    def load(ctx: Context) -> TaskOutput:
        upstream = _upstream(ctx, "transform", "load")
        enriched = _rows(
            upstream.as_json(),
            EnrichedOrder.from_dict,
            "load: transform output not a list of enriched orders",
        )
        db_path = root / "orders.sqlite"
        with contextlib.closing(sqlite3.connect(str(db_path))) as conn:
            with conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS orders (id INTEGER PRIMARY KEY, "
                    "sku TEXT NOT NULL, qty INTEGER NOT NULL, unit_price REAL NOT NULL, "
                    "total REAL NOT NULL)"
                )
                conn.executemany(
                    "INSERT OR REPLACE INTO orders (id, sku, qty, unit_price, total) "
                    "VALUES (?, ?, ?, ?, ?)",
                    [(o.id, o.sku, o.qty, o.unit_price, o.total) for o in enriched],
                )
        return TaskOutput.text(f"wrote {len(enriched)} rows to {db_path}")

    def notify(ctx: Context) -> TaskOutput:
        count = _upstream(ctx, "validate", "notify")
        rows = count.value if count.kind is OutputKind.INT else 0
        stamp = datetime.now(timezone.utc).isoformat()
        message = f"[{stamp}] etl_pipeline_dag — loaded {rows} rows\n"
        with (root / "notifications.log").open("a", encoding="utf-8") as log:
            log.write(message)
        return TaskOutput.text(message.rstrip())

    bodies = {
        "extract": extract,
        "transform": transform,
        "validate": validate,
        "load": load,
        "notify": notify,
    }
    dag: Dag[Task] = Dag()
    nodes = [dag.add_node(ClosureTask(task_id, bodies[task_id])) for task_id in TASK_IDS]
    for source, target in zip(nodes, nodes[1:]):
        dag.add_edge(source, target)
    return dag


def forjar_yaml_for_etl(directory: str | os.PathLike[str]) -> str:
    """Render a ``forjar.yaml`` with the same five-node linear topology.

    Each task is a ``file`` resource with ``state: directory`` under
    ``directory``, the cheapest resource available on every host.
    """
    base = str(directory)
    resources: dict[str, Any] = {}
    previous: str | None = None
    for task_id in TASK_IDS:
        resource: dict[str, Any] = {
            "type": "file",
            "machine": "local",
            "state": "directory",
            "path": f"{base}/{task_id}",
            "mode": "0755",
        }
        if previous is not None:
            resource["depends_on"] = [previous]
        resources[task_id] = resource
        previous = task_id
    document = {
        "version": "1.0",
        "name": "etl-pipeline-dag",
        "description": "workflow-orchestration closing demo, executed via forjar",
        "machines": {"local": {"hostname": "localhost", "addr": "127.0.0.1"}},
        "resources": resources,
    }
    return yaml.safe_dump(document, sort_keys=False)


def _print_report(title: str, report: RunReport) -> None:
    print(f"\n[{title}]")
    print(f"topo_order = {report.topo_order}")
    print(f"states     = { {k: v.as_label() for k, v in report.task_states.items()} }")


def _run_forjar(workdir: Path, lineage: LineageStore) -> RunReport | None:
    yaml_path = workdir / "forjar.yaml"
    files_dir = Path(tempfile.gettempdir()) / "etl-pipeline-dag-forjar-files"
    yaml_path.write_text(forjar_yaml_for_etl(files_dir), encoding="utf-8")
    runner = ForjarRunner(yaml_path, workdir / "forjar-state", lineage)
    try:
        report = runner.run("forjar-run")
    except ForjarError as exc:
        print(f"\n[ForjarRunner] skipped — {exc}", file=sys.stderr)
        print("(install forjar to exercise the second runner.)", file=sys.stderr)
        return None
    _print_report("ForjarRunner", report)
    return report


def _demo(workdir: Path, fixture: str, use_forjar: bool) -> None:
    workdir.mkdir(parents=True, exist_ok=True)
    print("=== Workflow Orchestration — closing demo ===")
    print(f"workdir: {workdir}")

    with LineageStore.open(workdir / "lineage.sqlite") as lineage:
        local_runner = LocalRunner(build_etl_dag(workdir, fixture), lineage, workdir / "scratch")
        local_report = local_runner.run("local-run")
        _print_report("LocalRunner", local_report)

        if use_forjar:
            forjar_report = _run_forjar(workdir, lineage)
        else:
            forjar_report = None
            print("\n[ForjarRunner] skipped — disabled on the command line", file=sys.stderr)

        topo_orders = []
        for i in range(_DETERMINISM_RUNS):
            with LineageStore.open_memory() as probe_lineage:
                probe = LocalRunner(
                    build_etl_dag(workdir, fixture),
                    probe_lineage,
                    workdir / f"scratch-determ-{i}",
                )
                topo_orders.append(probe.run(f"determ-{i}").topo_order)
        first = topo_orders[0]

        print("\n=== runtime contracts ===")

        if not local_report.all_succeeded():
            states = {k: v.as_label() for k, v in local_report.task_states.items()}
            raise _ContractError(
                f"C1 all-tasks-complete: every LocalRunner task must succeed; got {states}"
            )
        print(f"C1 all-tasks-complete:        OK ({len(TASK_IDS)} tasks, all Succeeded)")

        edges = lineage.edge_count("local-run")
        expected_edges = len(TASK_IDS) - 1
        if edges != expected_edges:
            raise _ContractError(
                f"C2 lineage-edge-count: linear chain must have {expected_edges} edges, "
                f"got {edges}"
            )
        print(f"C2 lineage-edge-count:        OK ({edges} edges in the linear chain)")

        if forjar_report is not None:
            if local_report.topo_order != forjar_report.topo_order:
                raise _ContractError(
                    "C3 runner-output-equivalence: topo orders disagree:\n"
                    f"  local:  {local_report.topo_order}\n"
                    f"  forjar: {forjar_report.topo_order}"
                )
            if set(local_report.task_outputs) != set(forjar_report.task_outputs):
                raise _ContractError("C3 runner-output-equivalence: task id sets differ")
            print("C3 runner-output-equivalence: OK (both runners agree on topo + task set)")
        else:
            print("C3 runner-output-equivalence: SKIPPED (forjar not available)")

        for i, order in enumerate(topo_orders):
            if order != first:
                raise _ContractError(
                    f"C4 topo-determinism: run {i} produced a different order: "
                    f"{order} vs {first}"
                )
        print(
            f"C4 topo-determinism:          OK ({_DETERMINISM_RUNS}/{_DETERMINISM_RUNS} "
            "LocalRunner runs identical topo)"
        )

        print(f"\n=== lineage (Mermaid, local-run) ===\n{lineage.render_mermaid('local-run')}")
    print("\nDemo complete.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="etl-demo", description="Run the ETL pipeline DAG and check its contracts"
    )
    parser.add_argument("--workdir", type=Path, default=None, help="working directory")
    parser.add_argument(
        "--fixture", type=Path, default=None, help="JSON file holding the input orders"
    )
    parser.add_argument(
        "--no-forjar", action="store_true", help="skip the forjar-backed runner"
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the demo; return the process exit status."""
    args = _build_parser().parse_args(argv)
    workdir = args.workdir or Path(tempfile.gettempdir()) / (
        f"etl-pipeline-dag-{int(datetime.now(timezone.utc).timestamp() * 1_000_000)}"
    )
    try:
        fixture = (
            args.fixture.read_text(encoding="utf-8") if args.fixture else SAMPLE_FIXTURE
        )
        _demo(workdir, fixture, use_forjar=not args.no_forjar)
    except (_ContractError, DagError, LineageError, sqlite3.Error, OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())