"""In-process DAG executor that walks tasks in topological order."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from dagflow.dag import Dag
from dagflow.lineage import LineageStore, TaskRunRecord
from dagflow.report import RunReport, Runner
from dagflow.state import TaskState
from dagflow.task import Context, Task, TaskOutput

logger = logging.getLogger(__name__)

_TERMINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED})


def _compact_json(value: object) -> str:
    return json.dumps(value, separators=(",", ":"))


class ClosureTask(Task):
    """A task whose body is a callable taking the run :class:`Context`."""

    def __init__(self, task_id: str, func: Callable[[Context], TaskOutput]) -> None:
        self._id = task_id
        self._func = func

    def __repr__(self) -> str:
        return f"ClosureTask({self._id!r})"

    def id(self) -> str:
        """The task's identifier."""
        return self._id

    def execute(self, ctx: Context) -> TaskOutput:
        """Call the wrapped function with ``ctx``."""
        return self._func(ctx)


class LocalRunner(Runner):
    """Run a DAG of tasks in-process, fail-fast, recording lineage as it goes.

    The first failing task stops execution; every later task in the
    topological order is recorded as skipped.
    """

    def __init__(
        self,
        dag: Dag[Task],
        lineage: LineageStore,
        scratch_root: str | os.PathLike[str],
    ) -> None:
        self._dag = dag
        self._lineage = lineage
        self._scratch_root = Path(scratch_root)

    @property
    def dag(self) -> Dag[Task]:
        """The DAG this runner executes."""
        return self._dag

    @property
    def lineage(self) -> LineageStore:
        """The lineage store this runner writes into."""
        return self._lineage

    def name(self) -> str:
        return "LocalRunner"

    def _persist_state(
        self,
        run_id: str,
        task_id: str,
        state: TaskState,
        output_json: str | None = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        self._lineage.record_task_run(
            TaskRunRecord(
                run_id=run_id,
                task_id=task_id,
                state=state.as_label(),
                started_at=now,
                finished_at=now if state in _TERMINAL_STATES else None,
                output_json=output_json,
            )
        )

    def run(self, run_id: str) -> RunReport:
        """Execute every task of the DAG under ``run_id`` and report the outcome."""
        self._dag.cycle_check()
        order = self._dag.topo_sort()
        tasks = self._dag.payloads(order)

        # Edges are recorded up front so lineage reflects the DAG shape even
        # when a task fails part-way through.
        for source, target in self._dag.edges():
            self._lineage.record_edge(
                run_id,
                self._dag.payload(source).id(),
                self._dag.payload(target).id(),
            )

        scratch_dir = self._scratch_root / run_id
        scratch_dir.mkdir(parents=True, exist_ok=True)
        ctx = Context(run_id, scratch_dir)

        report = RunReport(run_id=run_id)
        failure_seen = False

        for task in tasks:
            task_id = task.id()
            report.topo_order.append(task_id)

            if failure_seen:
                self._persist_state(run_id, task_id, TaskState.SKIPPED)
                report.task_states[task_id] = TaskState.SKIPPED
                continue

            self._persist_state(run_id, task_id, TaskState.RUNNING)
            report.task_states[task_id] = TaskState.RUNNING
            logger.info("task running: run=%s task=%s", run_id, task_id)

            try:
                output = task.execute(ctx)
                if not isinstance(output, TaskOutput):
                    raise TypeError(
                        f"task '{task_id}' returned {type(output).__name__}, "
                        "expected TaskOutput"
                    )
            except Exception as exc:  # a task failure must not abort the run
                logger.warning("task failed: run=%s task=%s error=%s", run_id, task_id, exc)
                error = {"error": str(exc)}
                self._persist_state(run_id, task_id, TaskState.FAILED, _compact_json(error))
                report.task_states[task_id] = TaskState.FAILED
                report.task_outputs[task_id] = error
                failure_seen = True
                continue

            ctx.put(task_id, output)
            value = output.as_json()
            report.task_outputs[task_id] = value
            self._persist_state(run_id, task_id, TaskState.SUCCEEDED, _compact_json(value))
            report.task_states[task_id] = TaskState.SUCCEEDED

        return report