"""SQLite-backed store of task runs and lineage edges for DAG runs."""

from __future__ import annotations

import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS task_runs (
        run_id        TEXT NOT NULL,
        task_id       TEXT NOT NULL,
        state         TEXT NOT NULL,
        started_at    TEXT NOT NULL,
        finished_at   TEXT,
        output_json   TEXT,
        PRIMARY KEY (run_id, task_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lineage_edges (
        run_id        TEXT NOT NULL,
        upstream_id   TEXT NOT NULL,
        downstream_id TEXT NOT NULL,
        recorded_at   TEXT NOT NULL,
        PRIMARY KEY (run_id, upstream_id, downstream_id)
    )
    """,
)


class LineageError(Exception):
    """Raised when the lineage store cannot be opened or queried."""


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _format(moment: datetime) -> str:
    return _utc(moment).isoformat()


def _parse(text: str) -> datetime:
    try:
        return _utc(datetime.fromisoformat(text))
    except ValueError as exc:
        raise LineageError(f"bad timestamp in lineage store: {text!r}") from exc


@dataclass(frozen=True)
class TaskRunRecord:
    """One recorded task execution."""

    run_id: str
    task_id: str
    state: str
    started_at: datetime
    finished_at: datetime | None = None
    output_json: str | None = None


@dataclass(frozen=True)
class LineageEdge:
    """One recorded upstream -> downstream edge of a run."""

    run_id: str
    upstream_id: str
    downstream_id: str
    recorded_at: datetime


class LineageStore:
    """Run and lineage records kept in a single SQLite database.

    The store is safe to share between threads; use it as a context manager
    or call :meth:`close` when done.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._lock = threading.Lock()
        self.init_schema()

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> LineageStore:
        """Open (or create) a store at ``path``, creating parent directories."""
        target = Path(path)
        try:
            if str(target.parent) not in ("", "."):
                target.parent.mkdir(parents=True, exist_ok=True)
            connection = sqlite3.connect(str(target), check_same_thread=False)
        except (OSError, sqlite3.Error) as exc:
            raise LineageError(f"failed to open SQLite at {target}: {exc}") from exc
        return cls(connection)

    @classmethod
    def open_memory(cls) -> LineageStore:
        """Open a fresh in-memory store."""
        return cls(sqlite3.connect(":memory:", check_same_thread=False))

    def __enter__(self) -> LineageStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(sql, params)

    def _fetch(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def init_schema(self) -> None:
        """Create the tables if they do not exist yet; idempotent."""
        with self._lock:
            with self._conn:
                for statement in _SCHEMA:
                    self._conn.execute(statement)

    def record_task_run(self, rec: TaskRunRecord) -> None:
        """Insert a task run, or update state, finish time and output of an existing one."""
        self._execute(
            """
            INSERT INTO task_runs (run_id, task_id, state, started_at, finished_at, output_json)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(run_id, task_id) DO UPDATE SET
                state = excluded.state,
                finished_at = excluded.finished_at,
                output_json = excluded.output_json
            """,
            (
                rec.run_id,
                rec.task_id,
                str(rec.state),
                _format(rec.started_at),
                _format(rec.finished_at) if rec.finished_at is not None else None,
                rec.output_json,
            ),
        )

    def record_edge(self, run_id: str, upstream_id: str, downstream_id: str) -> None:
        """Record an edge of a run; recording the same edge again has no effect."""
        self._execute(
            """
            INSERT OR IGNORE INTO lineage_edges (run_id, upstream_id, downstream_id, recorded_at)
            VALUES (?, ?, ?, ?)
            """,
            (run_id, upstream_id, downstream_id, _format(datetime.now(timezone.utc))),
        )

    def edge_count(self, run_id: str | None = None) -> int:
        """Number of edges recorded for ``run_id``, or across all runs."""
        if run_id is None:
            rows = self._fetch("SELECT COUNT(*) FROM lineage_edges")
        else:
            rows = self._fetch(
                "SELECT COUNT(*) FROM lineage_edges WHERE run_id = ?", (run_id,)
            )
        return rows[0][0]

    def query_upstream(self, run_id: str, task_id: str) -> list[str]:
        """Direct upstream task ids of ``task_id`` in ``run_id``, sorted."""
        rows = self._fetch(
            "SELECT upstream_id FROM lineage_edges WHERE run_id = ? AND downstream_id = ? "
            "ORDER BY upstream_id",
            (run_id, task_id),
        )
        return [row[0] for row in rows]

    def query_downstream(self, run_id: str, task_id: str) -> list[str]:
        """Direct downstream task ids of ``task_id`` in ``run_id``, sorted."""
        rows = self._fetch(
            "SELECT downstream_id FROM lineage_edges WHERE run_id = ? AND upstream_id = ? "
            "ORDER BY downstream_id",
            (run_id, task_id),
        )
        return [row[0] for row in rows]

    def edges_for_run(self, run_id: str) -> list[LineageEdge]:
        """All edges of a run, sorted by upstream then downstream id."""
        rows = self._fetch(
            "SELECT run_id, upstream_id, downstream_id, recorded_at "
            "FROM lineage_edges WHERE run_id = ? ORDER BY upstream_id, downstream_id",
            (run_id,),
        )
        return [
            LineageEdge(
                run_id=rid,
                upstream_id=upstream,
                downstream_id=downstream,
                recorded_at=_parse(recorded),
            )
            for rid, upstream, downstream, recorded in rows
        ]

    def task_runs_for_run(self, run_id: str) -> list[TaskRunRecord]:
        """All task-run records of a run, sorted by task id."""
        rows = self._fetch(
            "SELECT run_id, task_id, state, started_at, finished_at, output_json "
            "FROM task_runs WHERE run_id = ? ORDER BY task_id",
            (run_id,),
        )
        return [
            TaskRunRecord(
                run_id=rid,
                task_id=task_id,
                state=state,
                started_at=_parse(started),
                finished_at=_parse(finished) if finished is not None else None,
                output_json=output,
            )
            for rid, task_id, state, started, finished, output in rows
        ]

    def render_mermaid(self, run_id: str) -> str:
        """Render the run's lineage as a Mermaid ``graph TD`` block."""
        edges = self.edges_for_run(run_id)
        nodes = {edge.upstream_id for edge in edges}
        nodes.update(edge.downstream_id for edge in edges)
        nodes.update(rec.task_id for rec in self.task_runs_for_run(run_id))

        ordered = sorted(nodes)
        aliases = {name: f"t{i}" for i, name in enumerate(ordered)}
        lines = ["graph TD"]
        lines.extend(f'    {aliases[name]}["{name}"]' for name in ordered)
        lines.extend(
            f"    {aliases[edge.upstream_id]} --> {aliases[edge.downstream_id]}"
            for edge in edges
        )
        return "\n".join(lines) + "\n"