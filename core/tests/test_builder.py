"""Tests for WorkflowBuilder."""

import pytest

from flowgraph.builder.workflow import WorkflowBuilder
from flowgraph.graph.edge import EdgeCondition
from flowgraph.graph.errors import WorkflowDefinitionError
from flowgraph.graph.node import ConditionNode, TransformNode


def step(name: str, fn=None, **kwargs) -> TransformNode:
    return TransformNode(name, fn or (lambda input, ctx: input), **kwargs)


class TestWiring:
    def test_linear_steps(self):
        workflow = (
            WorkflowBuilder("linear")
            .step(step("fetch"))
            .step(step("transform"), after="fetch")
            .step(step("report"), after="transform")
            .build()
        )
        assert workflow.start == "fetch"
        assert workflow.output_node == "report"
        assert [(e.source, e.target) for e in workflow.edges] == [
            ("fetch", "transform"),
            ("transform", "report"),
        ]

    def test_when_makes_edges_conditional(self):
        workflow = (
            WorkflowBuilder("cond")
            .step(step("a"))
            .step(step("b"), after="a", when=lambda ctx: True)
            .build()
        )
        edge = workflow.get_outgoing_edges("a")[0]
        assert edge.condition == EdgeCondition.CONDITIONAL

    def test_on_error_adds_failure_edge(self):
        workflow = (
            WorkflowBuilder("errors")
            .step(step("a"))
            .step(step("charge"), after="a", on_error="refund")
            .step(step("refund"))
            .output("charge")
            .build()
        )
        failure_edges = [
            e for e in workflow.get_outgoing_edges("charge")
            if e.condition == EdgeCondition.ON_FAILURE
        ]
        assert [e.target for e in failure_edges] == ["refund"]

    def test_join_gets_dependencies_and_fan_out(self):
        workflow = (
            WorkflowBuilder("diamond")
            .step(step("a"))
            .step(step("b"), after="a")
            .step(step("c"), after="a")
            .step(step("d"), after=["b", "c"])
            .build()
        )
        assert workflow.get_node("d").dependencies == ("b", "c")
        assert workflow.get_node("a").fan_out
        assert workflow.detect_fan_out_nodes() == {"a": ["b", "c"]}

    def test_build_leaves_caller_nodes_untouched(self):
        fetch = step("fetch")
        merge = step("merge")
        diamond = (
            WorkflowBuilder("diamond")
            .step(fetch)
            .step(step("b"), after="fetch")
            .step(step("c"), after="fetch")
            .step(merge, after=["b", "c"])
            .build()
        )
        assert diamond.get_node("fetch").fan_out
        assert diamond.get_node("merge").dependencies == ("b", "c")
        assert not fetch.fan_out
        assert merge.dependencies == ()

        linear = WorkflowBuilder("linear").step(fetch).step(merge, after="fetch").build()
        assert linear.get_node("fetch") is fetch
        assert linear.get_node("merge").dependencies == ()
        assert linear.detect_fan_out_nodes() == {}

    def test_branch(self):
        check = ConditionNode("check", lambda i, c: i > 10, "big", "small")
        workflow = (
            WorkflowBuilder("branches")
            .step(check)
            .step(step("big"))
            .step(step("small"))
            .branch("check", "big", "big")
            .branch("check", "small", "small")
            .output("big")
            .build()
        )
        assert {e.branch for e in workflow.get_outgoing_edges("check")} == {"big", "small"}

    def test_settings(self):
        calls = []
        workflow = (
            WorkflowBuilder("settings", description="demo")
            .step(step("a"))
            .step(step("b"))
            .edge("b", "a", when=lambda ctx: False)
            .edge("a", "b")
            .start("a")
            .output("b")
            .max_iterations(5)
            .hooks(on_complete=lambda ctx: calls.append("done"))
            .build()
        )
        assert workflow.max_iterations == 5
        assert workflow.output_node == "b"
        assert workflow.description == "demo"
        assert workflow.hooks.on_complete is not None


class TestBuild:
    def test_no_steps(self):
        with pytest.raises(ValueError):
            WorkflowBuilder("empty").build()

    def test_unwired_step_is_reported(self):
        builder = WorkflowBuilder("loose").step(step("a")).step(step("island"))
        with pytest.raises(WorkflowDefinitionError) as exc_info:
            builder.output("a").build()
        assert any("'island' is unreachable" in e for e in exc_info.value.errors)

    def test_after_unknown_step(self):
        builder = WorkflowBuilder("typo").step(step("a")).step(step("b"), after="aa")
        with pytest.raises(WorkflowDefinitionError) as exc_info:
            builder.build()
        assert any("missing source 'aa'" in e for e in exc_info.value.errors)

    @pytest.mark.asyncio
    async def test_built_workflow_runs(self):
        workflow = (
            WorkflowBuilder("sum")
            .step(step("a", lambda i, c: 2))
            .step(step("b", lambda i, c: i * 3), after="a")
            .step(step("c", lambda i, c: i + 1), after="a")
            .step(step("total", lambda i, c: i["b"] + i["c"]), after=["b", "c"])
            .build()
        )
        result = await workflow.run()
        assert result.success
        assert result.final_output == 9
