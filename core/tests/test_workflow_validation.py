"""Tests for Workflow construction-time validation."""

import pytest

from flowgraph.graph.composite import MapReduceNode, ParallelGroupNode
from flowgraph.graph.edge import EdgeCondition, EdgeSpec
from flowgraph.graph.errors import WorkflowDefinitionError
from flowgraph.graph.node import ConditionNode, TransformNode
from flowgraph.graph.workflow import Workflow


def step(name: str, **kwargs) -> TransformNode:
    return TransformNode(name, lambda input, ctx: input, **kwargs)


def build(nodes, edges, start="a", **kwargs) -> Workflow:
    return Workflow("wf", nodes=nodes, edges=edges, start=start, **kwargs)


def errors_of(nodes, edges, start="a", **kwargs) -> list[str]:
    with pytest.raises(WorkflowDefinitionError) as exc_info:
        build(nodes, edges, start, **kwargs)
    return exc_info.value.errors


def test_valid_linear_workflow():
    workflow = build([step("a"), step("b"), step("c")], [("a", "b"), ("b", "c")])
    assert workflow.output_node == "c"
    assert workflow.validate() == []


def test_edge_dicts_and_specs_accepted():
    workflow = build(
        [step("a"), step("b")],
        [{"source": "a", "target": "b", "condition": "on_success"}],
    )
    assert workflow.edges == [EdgeSpec(source="a", target="b")]


def test_duplicate_names():
    errors = errors_of([step("a"), step("a")], [])
    assert any("Duplicate node name 'a'" in e for e in errors)


def test_duplicate_with_nested_child():
    group = ParallelGroupNode("g", [step("x"), step("y")])
    errors = errors_of([step("a"), group, step("x")], [("a", "g"), ("g", "x")])
    assert any("Duplicate node name 'x'" in e for e in errors)


def test_duplicate_with_map_reduce_parts():
    mr = MapReduceNode("m", step("a"), step("sum"))
    errors = errors_of([step("a"), mr], [("a", "m")])
    assert any("Duplicate node name 'a'" in e for e in errors)


def test_unknown_start_and_endpoints():
    errors = errors_of([step("a")], [("a", "ghost")], start="nope")
    assert any("Start node 'nope' not found" in e for e in errors)
    assert any("missing target 'ghost'" in e for e in errors)


def test_unknown_dependency():
    errors = errors_of([step("a"), step("b", dependencies=["zzz"])], [("a", "b")])
    assert any("unknown node 'zzz'" in e for e in errors)


def test_multiple_unconditional_edges_need_fan_out():
    errors = errors_of([step("a"), step("b"), step("c"), step("d")], [
        ("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"),
    ])
    assert any("only fan-out nodes" in e for e in errors)

    workflow = build(
        [step("a", fan_out=True), step("b"), step("c"), step("d", dependencies=["b", "c"])],
        [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")],
    )
    assert workflow.detect_fan_out_nodes() == {"a": ["b", "c"]}


def test_fan_out_siblings_must_be_independent():
    errors = errors_of(
        [step("a", fan_out=True), step("b"), step("c", dependencies=["b"]), step("d")],
        [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")],
        output_node="d",
    )
    assert any("'c' depends on sibling 'b'" in e for e in errors)


def test_parallel_group_children_must_be_independent():
    group = ParallelGroupNode("g", [step("x"), step("y", dependencies=["x"])])
    errors = errors_of([step("a"), group], [("a", "g")])
    assert any("parallel group 'g'" in e for e in errors)


def test_branch_edge_from_non_branching_node():
    errors = errors_of(
        [step("a"), step("b")],
        [EdgeSpec(source="a", target="b", branch="yes")],
    )
    assert any("not a condition or switch node" in e for e in errors)


def test_branch_edge_with_unknown_key():
    check = ConditionNode("a", lambda i, c: True, "yes", "no")
    errors = errors_of([check, step("b")], [EdgeSpec(source="a", target="b", branch="maybe")])
    assert any("'maybe'" in e for e in errors)


def test_unreachable_node():
    errors = errors_of([step("a"), step("b"), step("island")], [("a", "b")], output_node="b")
    assert any("'island' is unreachable" in e for e in errors)


def test_unconditional_cycle_rejected():
    errors = errors_of([step("a"), step("b"), step("end")], [("a", "b"), ("b", "a")])
    assert any("Cycle" in e for e in errors)


def test_conditional_cycle_allowed():
    check = ConditionNode("check", lambda i, c: c.iteration("work") >= 3, "done", "again")
    workflow = build(
        [step("work"), check, step("end")],
        [
            ("work", "check"),
            EdgeSpec(source="check", target="work", branch="again"),
            EdgeSpec(source="check", target="end", branch="done"),
        ],
        start="work",
    )
    assert workflow.output_node == "end"


def test_ambiguous_output_node():
    errors = errors_of(
        [step("a", fan_out=True), step("b"), step("c")], [("a", "b"), ("a", "c")]
    )
    assert any("Ambiguous output node" in e for e in errors)

    workflow = build(
        [step("a", fan_out=True), step("b"), step("c")],
        [("a", "b"), ("a", "c")],
        output_node="c",
    )
    assert workflow.output_node == "c"


def test_missing_output_node():
    check = ConditionNode("a", lambda i, c: True, "yes", "no")
    errors = errors_of(
        [check, step("b")],
        [
            EdgeSpec(source="a", target="b", branch="yes"),
            EdgeSpec(source="b", target="a", condition=EdgeCondition.ON_FAILURE),
        ],
    )
    assert any("declare output_node" in e for e in errors)


def test_all_problems_reported_together():
    errors = errors_of([step("a"), step("a"), step("b")], [("a", "ghost")], start="nope")
    assert len(errors) >= 3


def test_empty_workflow():
    assert errors_of([], [], start="a") == ["Workflow has no nodes"]
