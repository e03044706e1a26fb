"""Runner that hands a ``forjar.yaml`` DAG to the external ``forjar`` command."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from dagflow.dag import Dag, DagError, NodeIndex
from dagflow.lineage import LineageStore, TaskRunRecord
from dagflow.report import RunReport, Runner
from dagflow.state import TaskState

logger = logging.getLogger(__name__)

_TERMINAL_STATES = frozenset({TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED})


class ForjarError(Exception):
    """Raised when the forjar description or the forjar command fails."""


@dataclass(frozen=True)
class _Resource:
    depends_on: tuple[str, ...]
    resource_type: str | None


def _parse_resources(raw: Any) -> dict[str, _Resource]:
    """Validate a ``resources:`` block, keeping declaration order."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ForjarError("forjar.yaml: 'resources' must be a mapping")
    resources: dict[str, _Resource] = {}
    for resource_id, body in raw.items():
        if not isinstance(resource_id, str):
            raise ForjarError(f"forjar.yaml: resource id {resource_id!r} is not a string")
        if body is None:
            body = {}
        if not isinstance(body, Mapping):
            raise ForjarError(f"forjar.yaml: resource '{resource_id}' must be a mapping")
        depends_on = body.get("depends_on")
        if depends_on is None:
            depends_on = []
        if not isinstance(depends_on, list) or not all(
            isinstance(dep, str) for dep in depends_on
        ):
            raise ForjarError(
                f"forjar.yaml: '{resource_id}' depends_on must be a list of strings"
            )
        resource_type = body.get("type")
        if resource_type is not None and not isinstance(resource_type, str):
            raise ForjarError(f"forjar.yaml: '{resource_id}' type must be a string")
        resources[resource_id] = _Resource(tuple(depends_on), resource_type)
    return resources


def _as_resources(resources: Mapping[str, Any]) -> dict[str, _Resource]:
    if all(isinstance(res, _Resource) for res in resources.values()):
        return dict(resources)
    return _parse_resources(resources)


def topo_order_from_resources(resources: Mapping[str, Any]) -> list[str]:
    """Topologically order the ids of a ``resources:`` block.

    Ties are broken the same way as for any other DAG built in declaration
    order, so the result matches the in-process runner on the same topology.
    """
    parsed = _as_resources(resources)
    dag: Dag[str] = Dag()
    indices: dict[str, NodeIndex] = {
        resource_id: dag.add_node(resource_id) for resource_id in parsed
    }
    for resource_id, res in parsed.items():
        target = indices[resource_id]
        for dep in res.depends_on:
            if dep not in indices:
                raise ForjarError(
                    f"forjar.yaml: '{resource_id}' depends on unknown '{dep}'"
                )
            try:
                dag.add_edge(indices[dep], target)
            except DagError as exc:
                raise ForjarError(
                    f"ForjarRunner: failed to add edge {dep} -> {resource_id}: {exc}"
                ) from exc
    try:
        order = dag.topo_sort()
    except DagError as exc:
        raise ForjarError(f"ForjarRunner: topo_sort failed: {exc}") from exc
    return dag.payloads(order)


class ForjarRunner(Runner):
    """Validate and traverse a ``forjar.yaml`` DAG through the ``forjar`` command.

    Lineage edges and task states are recorded in the same shape the
    in-process runner produces, so reports of both runners can be compared.
    """

    def __init__(
        self,
        yaml_path: str | os.PathLike[str],
        state_dir: str | os.PathLike[str],
        lineage: LineageStore,
        forjar_bin: str | os.PathLike[str] | None = None,
    ) -> None:
        self.yaml_path = Path(yaml_path)
        self.state_dir = Path(state_dir)
        self.lineage = lineage
        if forjar_bin is None:
            forjar_bin = os.environ.get("FORJAR_BIN", "forjar")
        self.forjar_bin = Path(forjar_bin)

    def with_forjar_bin(self, binary: str | os.PathLike[str]) -> ForjarRunner:
        """Use ``binary`` as the forjar executable; returns the runner."""
        self.forjar_bin = Path(binary)
        return self

    def name(self) -> str:
        return "ForjarRunner"

    def _parse_yaml(self) -> dict[str, _Resource]:
        try:
            raw = self.yaml_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ForjarError(
                f"failed to read forjar.yaml at {self.yaml_path}: {exc}"
            ) from exc
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ForjarError(f"malformed forjar yaml at {self.yaml_path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ForjarError(
                f"malformed forjar yaml at {self.yaml_path}: top level must be a mapping"
            )
        return _parse_resources(data.get("resources"))

    def _run_forjar(self, *args: str) -> subprocess.CompletedProcess[bytes]:
        logger.debug("spawning forjar: bin=%s args=%s", self.forjar_bin, args)
        try:
            return subprocess.run(
                [str(self.forjar_bin), *args], capture_output=True, check=False
            )
        except OSError as exc:
            raise ForjarError(f"failed to spawn forjar at {self.forjar_bin}: {exc}") from exc

    def check_forjar_present(self) -> None:
        """Raise :class:`ForjarError` unless ``forjar --version`` succeeds."""
        result = self._run_forjar("--version")
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ForjarError(
                f"`{self.forjar_bin} --version` exited {result.returncode}: {stderr}"
            )

    def _persist_state(
        self,
        run_id: str,
        task_id: str,
        state: TaskState,
        output_json: str | None = None,
    ) -> None:
        now = datetime.now(timezone.utc)
        self.lineage.record_task_run(
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
        """Validate the DAG with forjar and report every resource as a task."""
        resources = self._parse_yaml()

        for resource_id, res in resources.items():
            for dep in res.depends_on:
                self.lineage.record_edge(run_id, dep, resource_id)

        self.check_forjar_present()

        for resource_id in resources:
            self._persist_state(run_id, resource_id, TaskState.RUNNING)
        logger.info("forjar validate: yaml=%s state=%s", self.yaml_path, self.state_dir)
        validated = self._run_forjar("validate", "-f", str(self.yaml_path))
        if validated.returncode != 0:
            for resource_id in resources:
                self._persist_state(run_id, resource_id, TaskState.FAILED)
            stderr = validated.stderr.decode("utf-8", errors="replace").strip()
            raise ForjarError(f"forjar validate failed: {stderr}")

        # The rendered graph is not needed for the report.
        self._run_forjar("graph", "-f", str(self.yaml_path), "--format", "mermaid")

        topo_order = topo_order_from_resources(resources)

        report = RunReport(run_id=run_id, topo_order=list(topo_order))
        for resource_id in topo_order:
            res = resources[resource_id]
            payload = {"task_id": resource_id, "kind": res.resource_type or "unknown"}
            report.task_outputs[resource_id] = payload
            self._persist_state(
                run_id,
                resource_id,
                TaskState.SUCCEEDED,
                json.dumps(payload, sort_keys=True, separators=(",", ":")),
            )
            report.task_states[resource_id] = TaskState.SUCCEEDED
        return report