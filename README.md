# dagflow

A compact workflow-orchestration toolkit. You describe a pipeline as a
directed acyclic graph of tasks and run it in topological order. Every task
run and every upstream → downstream edge is recorded in a single SQLite file.

## Contents

- **`dagflow.dag`**
  - `Dag` is a graph that is generic over its payload. Nodes are integer
    handles given out in insertion order. It offers `add_node`, `add_edge`,
    `topo_sort`, `cycle_check`, `payloads`, `parents`, `children`, `edges`
    and `every_task_reachable`.
  - Adding an edge twice raises `DuplicateEdgeError`.
  - A foreign handle raises `UnknownNodeError`.
  - A loop raises `CycleError`.
  - The topological order is deterministic for a given sequence of insertions.
  - `DagSpec` / `TaskSpec` hold a YAML description of a DAG that builds into a
    `Dag[str]`. Malformed specs raise `SpecError`.
- **`dagflow.task`**
  - `Task` is the abstract unit of work, with `id()` and `execute(ctx)`.
  - `Context` carries the run id and the run's scratch directory. It also holds
    a thread-safe `get`/`put` bag of upstream outputs.
  - `TaskOutput` is the typed value a task hands downstream. Build one with
    `TaskOutput.unit()`, `.integer(n)`, `.text(s)` or `.json(v)`. Use
    `as_json()`, `to_dict()` and `from_dict()` to convert it.
- **`dagflow.state`**
  - `TaskState` has the values `Queued`, `Running`, `Succeeded`, `Failed` and
    `Skipped`.
- **`dagflow.lineage`**
  - `LineageStore` is an SQLite store of `TaskRunRecord`s and `LineageEdge`s.
  - It offers upstream/downstream queries, edge counts and Mermaid rendering.
  - It can be opened on a file or in memory, and it is usable as a context
    manager.
- **`dagflow.report`**
  - `RunReport` has `all_succeeded()`, `outputs_in_order()` and `to_dict()`.
  - `Runner` is the abstract runner interface.
- **`dagflow.local`**
  - `ClosureTask` wraps a callable `ctx -> TaskOutput`.
  - `LocalRunner` executes a DAG in-process, one task after another, with a
    fail-fast policy. After the first failing task, every later task is
    recorded as `Skipped`.
- **`dagflow.forjar`**
  - `ForjarRunner` hands a `forjar.yaml` resource graph to an external
    `forjar` executable. The executable is found on `PATH`, through the
    `FORJAR_BIN` environment variable, or through `with_forjar_bin()`.
  - It reports in the same `RunReport` shape as `LocalRunner`.
  - `topo_order_from_resources` orders a `resources:` block.
- **`dagflow.scheduler`**
  - `CronSchedule` parses cron expressions with 6 or 7 fields
    (`sec min hour day month weekday [year]`), or `@daily`-style shorthands.
  - `DagScheduler` registers bodies against those expressions and fires them
    from a background thread.

## Installation

```console
pip install dagflow
```

## Describing a DAG

```yaml
name: etl
description: tiny ETL
tasks:
  - id: extract
  - id: transform
    depends_on: [extract]
  - id: load
    depends_on: [transform]
```

Building the spec checks for three problems: duplicate task ids, dependencies
on unknown tasks, and cycles.

```python
from dagflow.dag import DagSpec

with open("etl.yaml") as fh:
    spec = DagSpec.from_yaml(fh.read())

dag = spec.build()
print(dag.payloads(dag.topo_sort()))   # ['extract', 'transform', 'load']
```

## Running tasks in-process

```python
from dagflow.dag import Dag
from dagflow.lineage import LineageStore
from dagflow.local import ClosureTask, LocalRunner
from dagflow.task import TaskOutput

dag = Dag()
a = dag.add_node(ClosureTask("a", lambda ctx: TaskOutput.integer(1)))
b = dag.add_node(ClosureTask("b", lambda ctx: TaskOutput.integer(ctx.get("a").value + 1)))
dag.add_edge(a, b)

with LineageStore.open_memory() as lineage:
    report = LocalRunner(dag, lineage, "scratch").run("r1")
    print(report.all_succeeded(), report.task_outputs)   # True {'a': 1, 'b': 2}
    print(lineage.render_mermaid("r1"))
```

If a task raises, the runner does not stop with an error. Instead:

- The failed task is reported as `Failed`, with the output `{"error": "..."}`.
- Every task after it in the topological order is reported as `Skipped`.

## Scheduling

```python
from dagflow.scheduler import DagScheduler

with DagScheduler() as scheduler:          # starts and later stops the tick loop
    job = scheduler.schedule("etl-daily", "0 0 6 * * *", lambda: print("tick"))
    print(scheduler.next_fire(job))
```

Weekdays are numbered 1 (Sunday) to 7 (Saturday). Names such as `MON` and
`JAN` are accepted. A body's exceptions are logged and do not stop the
scheduler.

## Command line

The `dag` command works from a DAG YAML file. The log level comes from the
`DAGFLOW_LOG` environment variable (default `INFO`).

Validate a file and print its topological order:

```console
dag validate etl.yaml --print-order
```

Run it in-process. Lineage is recorded in `lineage.sqlite` by default; use
`--lineage-db` to change the file. The report is printed as JSON.

```console
dag run etl.yaml --runner local --run-id nightly-1
```

Run a `forjar.yaml` through the external `forjar` tool instead:

```console
dag run forjar.yaml --runner forjar --forjar-state-dir state
```

Check a cron expression and see when it would next fire:

```console
dag schedule etl.yaml --cron "0 0 6 * * *"
```

Ask the lineage store about a task, or draw a whole run as Mermaid. Without
`--run-id`, the run id `default` is used.

```console
dag lineage transform --run-id nightly-1
dag lineage transform --run-id nightly-1 --mermaid
```

Re-run a DAG once per day over an inclusive date range. Each run gets the id
`backfill-YYYY-MM-DD`. Dates may be `YYYY-MM-DD` or full RFC 3339.

```console
dag backfill etl.yaml --start 2026-05-01 --end 2026-05-04
```

## End-to-end demo

`dagflow-etl-demo` builds a five-task chain: extract → transform → validate →
load → notify. It uses a small order fixture, or a JSON file passed with
`--fixture`, and writes its files to `--workdir` (a fresh temporary directory
by default).

It runs the chain with the local runner. It also runs it with `forjar` when
that tool is available, unless `--no-forjar` is given. It then checks four
things:

- every task succeeded;
- the lineage store holds exactly four edges;
- both runners agree on order and task set;
- ten consecutive runs produce the same topological order.

It finishes by printing the run's lineage as Mermaid.

```console
dagflow-etl-demo --no-forjar
```

## What it does not do

- `dag run --runner local` and `dag backfill` have no way to load task code.
  Each task in the YAML file becomes a placeholder that outputs its own id as
  text. Real task bodies have to be built in Python with `ClosureTask` or a
  `Task` subclass, as `dagflow.etl_demo` does.
- `dag schedule` only validates the expression and prints the next fire time,
  then exits. There is no long-running scheduler daemon.
- `LocalRunner` executes tasks one at a time; there is no parallel or
  distributed execution.
- `ForjarRunner` needs the `forjar` executable. Without it, runs fail with
  `ForjarError`.

## Running the tests

```console
pip install "dagflow[test]"
pytest
```