"""Task interface, typed task outputs and the per-run execution context."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class OutputKind(Enum):
    """Variant tag of a :class:`TaskOutput`."""

    UNIT = "Unit"
    INT = "Int"
    TEXT = "Text"
    JSON = "Json"


@dataclass(frozen=True)
class TaskOutput:
    """Typed value produced by a task and handed to downstream tasks."""

    kind: OutputKind
    value: Any = None

    @classmethod
    def unit(cls) -> TaskOutput:
        """An output carrying no value, for purely effectful tasks."""
        return cls(OutputKind.UNIT)

    @classmethod
    def integer(cls, value: int) -> TaskOutput:
        """A single integer, such as a row count."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"integer output needs an int, got {type(value).__name__}")
        return cls(OutputKind.INT, value)

    @classmethod
    def text(cls, value: str) -> TaskOutput:
        """A string: a path, an identifier or a one-line summary."""
        if not isinstance(value, str):
            raise TypeError(f"text output needs a str, got {type(value).__name__}")
        return cls(OutputKind.TEXT, value)

    @classmethod
    def json(cls, value: Any) -> TaskOutput:
        """Nested JSON-compatible data."""
        return cls(OutputKind.JSON, value)

    def as_json(self) -> Any:
        """Return the payload as a JSON-compatible value (``None`` for unit)."""
        if self.kind is OutputKind.UNIT:
            return None
        return self.value

    def to_dict(self) -> dict[str, Any]:
        """Serialise as an adjacently tagged mapping ``{"kind": ..., "value": ...}``."""
        if self.kind is OutputKind.UNIT:
            return {"kind": self.kind.value}
        return {"kind": self.kind.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskOutput:
        """Inverse of :meth:`to_dict`."""
        if not isinstance(data, dict) or "kind" not in data:
            raise ValueError("task output must be a mapping with a 'kind' key")
        try:
            kind = OutputKind(data["kind"])
        except ValueError:
            raise ValueError(f"unknown task output kind: {data['kind']!r}") from None
        if kind is OutputKind.UNIT:
            return cls.unit()
        if "value" not in data:
            raise ValueError(f"task output of kind {kind.value} is missing 'value'")
        value = data["value"]
        try:
            if kind is OutputKind.INT:
                return cls.integer(value)
            if kind is OutputKind.TEXT:
                return cls.text(value)
        except TypeError as exc:
            raise ValueError(str(exc)) from None
        return cls.json(value)


@dataclass
class Context:
    """Per-run state shared by every task of a run.

    Carries the run id, the run's scratch directory and a thread-safe bag of
    upstream outputs keyed by task id.
    """

    run_id: str
    scratch_dir: Path
    state: dict[str, TaskOutput] = field(default_factory=dict)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self.scratch_dir = Path(self.scratch_dir)

    def get(self, key: str) -> TaskOutput | None:
        """Return the output published under ``key``, or ``None``."""
        with self._lock:
            return self.state.get(key)

    def put(self, key: str, value: TaskOutput) -> None:
        """Publish ``value`` under ``key`` for downstream tasks."""
        with self._lock:
            self.state[key] = value


class Task(ABC):
    """One unit of work in a DAG."""

    @abstractmethod
    def id(self) -> str:
        """Stable identifier used for lineage keys and labels."""

    @abstractmethod
    def execute(self, ctx: Context) -> TaskOutput:
        """Run the task, reading upstream values from ``ctx``."""