import threading

import pytest

from dagflow.task import Context, OutputKind, Task, TaskOutput


class EchoTask(Task):
    def __init__(self, task_id, value):
        self._id = task_id
        self._value = value

    def id(self):
        return self._id

    def execute(self, ctx):
        return TaskOutput.integer(self._value)


def test_echo_task_runs(tmp_path):
    ctx = Context("run-1", tmp_path)
    task = EchoTask("echo", 42)
    assert task.execute(ctx) == TaskOutput.integer(42)
    assert task.id() == "echo"


def test_context_state_roundtrip(tmp_path):
    ctx = Context("run-1", tmp_path)
    ctx.put("k", TaskOutput.integer(7))
    assert ctx.get("k") == TaskOutput.integer(7)
    assert ctx.get("missing") is None


def test_context_put_overwrites(tmp_path):
    ctx = Context("run-1", str(tmp_path))
    ctx.put("k", TaskOutput.integer(1))
    ctx.put("k", TaskOutput.text("two"))
    assert ctx.get("k") == TaskOutput.text("two")
    assert ctx.scratch_dir == tmp_path


def test_context_concurrent_puts(tmp_path):
    ctx = Context("run-1", tmp_path)

    def worker(n):
        ctx.put(f"k{n}", TaskOutput.integer(n))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(ctx.state) == sorted(f"k{n}" for n in range(20))
    assert ctx.get("k13") == TaskOutput.integer(13)


def test_task_output_as_json_normalizes():
    assert TaskOutput.unit().as_json() is None
    assert TaskOutput.integer(5).as_json() == 5
    assert TaskOutput.text("ok").as_json() == "ok"
    assert TaskOutput.json({"a": [1, 2]}).as_json() == {"a": [1, 2]}


def test_kinds_distinguish_equal_values():
    assert TaskOutput.integer(1) != TaskOutput.json(1)
    assert TaskOutput.integer(1).kind is OutputKind.INT


@pytest.mark.parametrize(
    "output",
    [
        TaskOutput.unit(),
        TaskOutput.integer(-3),
        TaskOutput.text("hello"),
        TaskOutput.json([{"id": 1, "sku": "A"}]),
    ],
)
def test_dict_roundtrip(output):
    assert TaskOutput.from_dict(output.to_dict()) == output


def test_to_dict_shapes():
    assert TaskOutput.unit().to_dict() == {"kind": "Unit"}
    assert TaskOutput.integer(5).to_dict() == {"kind": "Int", "value": 5}
    assert TaskOutput.text("x").to_dict() == {"kind": "Text", "value": "x"}


def test_from_dict_unknown_kind():
    with pytest.raises(ValueError, match="unknown task output kind"):
        TaskOutput.from_dict({"kind": "Float", "value": 1.5})


def test_from_dict_wrong_value_type():
    with pytest.raises(ValueError):
        TaskOutput.from_dict({"kind": "Int", "value": "seven"})


def test_from_dict_missing_value():
    with pytest.raises(ValueError, match="missing 'value'"):
        TaskOutput.from_dict({"kind": "Text"})


def test_integer_rejects_bool():
    with pytest.raises(TypeError):
        TaskOutput.integer(True)