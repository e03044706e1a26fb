"""Lifecycle states of a task within a DAG run."""

from __future__ import annotations

from enum import Enum


class TaskState(str, Enum):
    """Lifecycle of a single task within a run; the value is its stable label."""

    QUEUED = "Queued"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"

    def as_label(self) -> str:
        """Label used for persistence and JSON serialisation."""
        return self.value

    @classmethod
    def parse(cls, label: str) -> TaskState:
        """Parse a label back into a state; raises ``ValueError`` if unknown."""
        for state in cls:
            if state.value == label:
                return state
        raise ValueError(f"unknown TaskState: {label}")

    def __str__(self) -> str:
        return self.value