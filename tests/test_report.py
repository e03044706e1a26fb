import pytest

from dagflow.report import RunReport, Runner
from dagflow.state import TaskState


def test_run_report_all_succeeded_works():
    r = RunReport(run_id="r1", topo_order=["a", "b"])
    r.task_states["a"] = TaskState.SUCCEEDED
    r.task_states["b"] = TaskState.SUCCEEDED
    assert r.all_succeeded() is True

    r.task_states["b"] = TaskState.FAILED
    assert r.all_succeeded() is False


def test_all_succeeded_false_when_empty():
    assert RunReport(run_id="r1").all_succeeded() is False


def test_outputs_in_order_uses_topo():
    r = RunReport(
        run_id="r1",
        task_outputs={"c": 3, "a": 1, "b": 2},
        topo_order=["a", "b", "c"],
    )
    v = r.outputs_in_order()
    assert len(v) == 3
    assert v[0] == 1
    assert v[2] == 3


def test_outputs_in_order_skips_missing():
    r = RunReport(run_id="r1", task_outputs={"b": "x"}, topo_order=["a", "b"])
    assert r.outputs_in_order() == ["x"]


def test_to_dict_sorts_keys_and_uses_labels():
    r = RunReport(
        run_id="r1",
        task_states={"b": TaskState.SKIPPED, "a": TaskState.FAILED},
        task_outputs={"b": None, "a": {"error": "boom"}},
        topo_order=["a", "b"],
    )
    d = r.to_dict()
    assert d == {
        "run_id": "r1",
        "task_states": {"a": "Failed", "b": "Skipped"},
        "task_outputs": {"a": {"error": "boom"}, "b": None},
        "topo_order": ["a", "b"],
    }
    assert list(d["task_states"]) == ["a", "b"]


def test_runner_requires_implementation():
    with pytest.raises(TypeError):
        Runner()


class _Fixed(Runner):
    def run(self, run_id):
        return RunReport(
            run_id=run_id,
            task_states={"x": TaskState.SUCCEEDED},
            topo_order=["x"],
        )

    def name(self):
        return "Fixed"


def test_runner_subclass_returns_report():
    runner = _Fixed()
    report = runner.run("r9")
    expected = RunReport(
        run_id="r9",
        task_states={"x": TaskState.SUCCEEDED},
        topo_order=["x"],
    )
    assert runner.name() == "Fixed"
    assert report.to_dict() == expected.to_dict()
    assert report.to_dict()["task_states"] == {"x": "Succeeded"}
    assert report.all_succeeded() is True