import json
import os
import stat
import sys
from pathlib import Path

import pytest
import yaml

from dagflow.forjar import ForjarError, ForjarRunner, topo_order_from_resources
from dagflow.lineage import LineageStore
from dagflow.state import TaskState

CHAIN_YAML = """
version: "1.0"
name: chain
resources:
  extract:
    type: file
  transform:
    type: file
    depends_on: [extract]
  load:
    depends_on: [transform]
"""


def _write_yaml(directory: Path, body: str) -> Path:
    path = directory / "forjar.yaml"
    path.write_text(body, encoding="utf-8")
    return path


def _fake_forjar(directory: Path, validate_exit: int) -> Path:
    script = directory / "fake-forjar"
    script.write_text(
        f"#!{sys.executable}\n"
        "import sys\n"
        "if sys.argv[1] == 'validate' and " + str(validate_exit) + " != 0:\n"
        "    sys.stderr.write('bad resource\\n')\n"
        "    sys.exit(" + str(validate_exit) + ")\n"
        "print('forjar 1.0')\n",
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def lineage():
    store = LineageStore.open_memory()
    yield store
    store.close()


def test_topo_order_for_linear_chain():
    resources = yaml.safe_load(
        """
extract:
  type: file
transform:
  type: file
  depends_on: [extract]
load:
  type: file
  depends_on: [transform]
"""
    )
    assert topo_order_from_resources(resources) == ["extract", "transform", "load"]


def test_topo_order_dangling_dep_errors():
    resources = {"bad": {"type": "file", "depends_on": ["ghost"]}}
    with pytest.raises(ForjarError, match="ghost"):
        topo_order_from_resources(resources)


def test_topo_order_cycle_errors():
    resources = {"a": {"depends_on": ["b"]}, "b": {"depends_on": ["a"]}}
    with pytest.raises(ForjarError, match="topo_sort failed"):
        topo_order_from_resources(resources)


def test_topo_order_duplicate_dependency_errors():
    resources = {"a": {}, "b": {"depends_on": ["a", "a"]}}
    with pytest.raises(ForjarError, match="a -> b"):
        topo_order_from_resources(resources)


def test_missing_forjar_binary_fails_fast(tmp_path, lineage):
    yaml_path = _write_yaml(
        tmp_path, 'version: "1.0"\nname: t\nresources:\n  one:\n    type: file\n'
    )
    runner = ForjarRunner(yaml_path, tmp_path / "state", lineage).with_forjar_bin(
        "/definitely/not/a/path/to/forjar"
    )
    with pytest.raises(ForjarError, match="failed to spawn forjar"):
        runner.run("r1")


def test_edges_recorded_before_preflight(tmp_path, lineage):
    yaml_path = _write_yaml(tmp_path, CHAIN_YAML)
    runner = ForjarRunner(yaml_path, tmp_path / "state", lineage).with_forjar_bin(
        tmp_path / "missing-forjar"
    )
    with pytest.raises(ForjarError):
        runner.run("r1")
    assert lineage.edge_count("r1") == 2
    assert lineage.query_upstream("r1", "load") == ["transform"]


def test_forjar_bin_from_environment(tmp_path, lineage, monkeypatch):
    monkeypatch.setenv("FORJAR_BIN", str(tmp_path / "env-forjar"))
    runner = ForjarRunner(_write_yaml(tmp_path, CHAIN_YAML), tmp_path, lineage)
    with pytest.raises(ForjarError, match="env-forjar"):
        runner.check_forjar_present()


def test_malformed_yaml_errors(tmp_path, lineage):
    yaml_path = _write_yaml(tmp_path, "resources: [unclosed\n")
    runner = ForjarRunner(yaml_path, tmp_path / "state", lineage)
    with pytest.raises(ForjarError, match="malformed forjar yaml"):
        runner.run("r1")


def test_missing_yaml_file_errors(tmp_path, lineage):
    runner = ForjarRunner(tmp_path / "absent.yaml", tmp_path / "state", lineage)
    with pytest.raises(ForjarError, match="failed to read forjar.yaml"):
        runner.run("r1")


def test_runner_name(tmp_path, lineage):
    runner = ForjarRunner(tmp_path / "forjar.yaml", tmp_path, lineage)
    assert runner.name() == "ForjarRunner"


def test_successful_run_reports_resources(tmp_path, lineage):
    yaml_path = _write_yaml(tmp_path, CHAIN_YAML)
    runner = ForjarRunner(
        yaml_path, tmp_path / "state", lineage, forjar_bin=_fake_forjar(tmp_path, 0)
    )
    report = runner.run("fr")

    assert report.run_id == "fr"
    assert report.topo_order == ["extract", "transform", "load"]
    assert report.all_succeeded()
    assert report.task_outputs["extract"] == {"task_id": "extract", "kind": "file"}
    assert report.task_outputs["load"] == {"task_id": "load", "kind": "unknown"}

    runs = {rec.task_id: rec for rec in lineage.task_runs_for_run("fr")}
    assert {rec.state for rec in runs.values()} == {TaskState.SUCCEEDED.as_label()}
    assert json.loads(runs["transform"].output_json) == {
        "task_id": "transform",
        "kind": "file",
    }
    assert runs["transform"].finished_at is not None
    assert lineage.edge_count("fr") == 2


def test_validate_failure_marks_tasks_failed(tmp_path, lineage):
    yaml_path = _write_yaml(tmp_path, CHAIN_YAML)
    runner = ForjarRunner(
        yaml_path, tmp_path / "state", lineage, forjar_bin=_fake_forjar(tmp_path, 2)
    )
    with pytest.raises(ForjarError, match="forjar validate failed: bad resource"):
        runner.run("vf")
    states = [rec.state for rec in lineage.task_runs_for_run("vf")]
    assert states == ["Failed", "Failed", "Failed"]


def test_version_check_reports_exit_code(tmp_path, lineage):
    script = tmp_path / "broken-forjar"
    script.write_text(
        f"#!{sys.executable}\nimport sys\nsys.stderr.write('nope')\nsys.exit(3)\n",
        encoding="utf-8",
    )
    os.chmod(script, 0o755)
    runner = ForjarRunner(tmp_path / "forjar.yaml", tmp_path, lineage, forjar_bin=script)
    with pytest.raises(ForjarError, match="exited 3: nope"):
        runner.check_forjar_present()