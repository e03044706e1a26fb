"""Run reports and the common runner interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from dagflow.state import TaskState


@dataclass
class RunReport:
    """Outcome of a DAG run, comparable across runners."""

    run_id: str
    task_states: dict[str, TaskState] = field(default_factory=dict)
    task_outputs: dict[str, Any] = field(default_factory=dict)
    topo_order: list[str] = field(default_factory=list)

    def all_succeeded(self) -> bool:
        """True if there is at least one task and every task succeeded."""
        return bool(self.task_states) and all(
            state is TaskState.SUCCEEDED for state in self.task_states.values()
        )

    def outputs_in_order(self) -> list[Any]:
        """Task outputs in topological order, skipping tasks without output."""
        return [
            self.task_outputs[task_id]
            for task_id in self.topo_order
            if task_id in self.task_outputs
        ]

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible mapping with task keys sorted."""
        return {
            "run_id": self.run_id,
            "task_states": {
                key: self.task_states[key].as_label() for key in sorted(self.task_states)
            },
            "task_outputs": {
                key: self.task_outputs[key] for key in sorted(self.task_outputs)
            },
            "topo_order": list(self.topo_order),
        }


class Runner(ABC):
    """An executor that runs a DAG end to end and reports the outcome."""

    @abstractmethod
    def run(self, run_id: str) -> RunReport:
        """Execute the DAG under ``run_id``."""

    @abstractmethod
    def name(self) -> str:
        """Stable, human-readable runner name."""