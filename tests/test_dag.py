import pytest

from dagflow.dag import (
    CycleError,
    Dag,
    DagSpec,
    DuplicateEdgeError,
    SpecError,
    UnknownNodeError,
)


def linear_chain():
    dag = Dag()
    a = dag.add_node("extract")
    b = dag.add_node("transform")
    c = dag.add_node("load")
    dag.add_edge(a, b)
    dag.add_edge(b, c)
    return dag


def test_topo_sort_linear():
    dag = linear_chain()
    assert dag.payloads(dag.topo_sort()) == ["extract", "transform", "load"]


def test_topo_sort_linear_inserted_backwards():
    dag = Dag()
    load = dag.add_node("load")
    transform = dag.add_node("transform")
    extract = dag.add_node("extract")
    dag.add_edge(extract, transform)
    dag.add_edge(transform, load)
    assert dag.payloads(dag.topo_sort()) == ["extract", "transform", "load"]


def test_topo_sort_branch_then_join():
    dag = Dag()
    root = dag.add_node("root")
    a = dag.add_node("a")
    b = dag.add_node("b")
    join = dag.add_node("join")
    dag.add_edge(root, a)
    dag.add_edge(root, b)
    dag.add_edge(a, join)
    dag.add_edge(b, join)

    names = dag.payloads(dag.topo_sort())
    assert sorted(names) == ["a", "b", "join", "root"]
    pos = names.index
    assert pos("root") < pos("a")
    assert pos("root") < pos("b")
    assert pos("a") < pos("join")
    assert pos("b") < pos("join")


def test_cycle_detection():
    dag = Dag()
    a = dag.add_node("a")
    b = dag.add_node("b")
    dag.add_edge(a, b)
    dag.add_edge(b, a)
    with pytest.raises(CycleError) as info:
        dag.cycle_check()
    assert info.value.node in (a, b)
    with pytest.raises(CycleError):
        dag.topo_sort()


def test_self_loop_is_cycle():
    dag = Dag()
    a = dag.add_node("a")
    dag.add_edge(a, a)
    with pytest.raises(CycleError) as info:
        dag.topo_sort()
    assert info.value.node == a


def test_cycle_downstream_of_acyclic_prefix():
    dag = Dag()
    start = dag.add_node("start")
    x = dag.add_node("x")
    y = dag.add_node("y")
    dag.add_edge(start, x)
    dag.add_edge(x, y)
    dag.add_edge(y, x)
    with pytest.raises(CycleError) as info:
        dag.topo_sort()
    assert info.value.node in (x, y)


def test_duplicate_edge_rejected():
    dag = Dag()
    a = dag.add_node("a")
    b = dag.add_node("b")
    dag.add_edge(a, b)
    with pytest.raises(DuplicateEdgeError) as info:
        dag.add_edge(a, b)
    assert (info.value.source, info.value.target) == (a, b)
    assert dag.edge_count() == 1


def test_unknown_node_rejected():
    dag = Dag()
    a = dag.add_node("a")
    with pytest.raises(UnknownNodeError) as info:
        dag.add_edge(a, 5)
    assert info.value.node == 5
    assert dag.edge_count() == 0


def test_topo_sort_is_deterministic():
    first = linear_chain().topo_sort()
    for _ in range(10):
        assert linear_chain().topo_sort() == first


def test_parents_and_children():
    dag = Dag()
    a = dag.add_node("a")
    b = dag.add_node("b")
    c = dag.add_node("c")
    dag.add_edge(a, b)
    dag.add_edge(b, c)
    assert dag.parents(b) == [a]
    assert dag.children(b) == [c]
    assert dag.parents(a) == []


def test_edges_in_insertion_order():
    dag = linear_chain()
    assert list(dag.edges()) == [(0, 1), (1, 2)]


def test_payload_lookup():
    dag = linear_chain()
    assert dag.payload(1) == "transform"
    assert dag.payload(99) is None
    with pytest.raises(UnknownNodeError):
        dag.payloads([0, 99])


def test_every_task_reachable():
    dag = linear_chain()
    assert dag.every_task_reachable() is True
    dag.add_node("orphan")
    assert dag.every_task_reachable() is False

    single = Dag()
    single.add_node("only")
    assert single.every_task_reachable() is True


def test_edge_count_tracks_inserts():
    dag = linear_chain()
    assert dag.node_count() == 3
    assert dag.edge_count() == 2


def test_dag_spec_yaml_roundtrip():
    yaml_text = """
name: etl
description: tiny ETL
tasks:
  - id: extract
  - id: transform
    depends_on: [extract]
  - id: load
    depends_on: [transform]
"""
    spec = DagSpec.from_yaml(yaml_text)
    assert spec.name == "etl"
    assert spec.description == "tiny ETL"
    assert len(spec.tasks) == 3
    dag = spec.build()
    assert dag.payloads(dag.topo_sort()) == ["extract", "transform", "load"]


def test_dag_spec_description_defaults_empty():
    spec = DagSpec.from_yaml("name: x\ntasks:\n  - id: a\n")
    assert spec.description == ""
    assert spec.tasks[0].depends_on == []


def test_dag_spec_dangling_dep_errors():
    spec = DagSpec.from_yaml(
        """
name: bad
tasks:
  - id: a
    depends_on: [ghost]
"""
    )
    with pytest.raises(SpecError, match="ghost"):
        spec.build()


def test_dag_spec_duplicate_id_errors():
    spec = DagSpec.from_yaml("name: d\ntasks:\n  - id: a\n  - id: a\n")
    with pytest.raises(SpecError, match="duplicate task id: a"):
        spec.build()


def test_dag_spec_cycle_errors():
    spec = DagSpec.from_yaml(
        """
name: loop
tasks:
  - id: a
    depends_on: [b]
  - id: b
    depends_on: [a]
"""
    )
    with pytest.raises(CycleError):
        spec.build()


@pytest.mark.parametrize(
    "text",
    [
        "tasks: []\n",
        "name: x\n",
        "- just\n- a list\n",
        "name: x\ntasks:\n  - depends_on: [a]\n",
        "name: x\ntasks: [\n",
    ],
)
def test_dag_spec_malformed(text):
    with pytest.raises(SpecError):
        DagSpec.from_yaml(text)