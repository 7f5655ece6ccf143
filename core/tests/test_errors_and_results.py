"""Tests for the error taxonomy and the Success/Failure result types."""

import asyncio

import pytest
from pydantic import BaseModel, ValidationError

from flowgraph.graph.errors import (
    ErrorCategory,
    ErrorKind,
    NodeError,
    WorkflowDefinitionError,
    classify_exception,
)
from flowgraph.graph.result import Failure, Success, finish


class Point(BaseModel):
    x: int


def _validation_error() -> ValidationError:
    try:
        Point.model_validate({"x": "not a number"})
    except ValidationError as e:
        return e
    raise AssertionError("expected a ValidationError")


class TestErrorKind:
    @pytest.mark.parametrize(
        "kind",
        [
            ErrorKind.TIMEOUT,
            ErrorKind.RATE_LIMIT,
            ErrorKind.NETWORK,
            ErrorKind.PROVIDER,
            ErrorKind.TOOL_EXECUTION,
        ],
    )
    def test_transient_kinds_are_retriable(self, kind):
        assert kind.category == ErrorCategory.TRANSIENT
        assert kind.retriable

    @pytest.mark.parametrize(
        "kind",
        [
            ErrorKind.VALIDATION,
            ErrorKind.AUTH,
            ErrorKind.NOT_FOUND,
            ErrorKind.CIRCUIT_OPEN,
            ErrorKind.ITERATION_LIMIT_EXCEEDED,
            ErrorKind.CANCELLED,
            ErrorKind.UNKNOWN,
        ],
    )
    def test_other_kinds_are_not_retriable(self, kind):
        assert not kind.retriable

    def test_every_kind_has_a_category(self):
        for kind in ErrorKind:
            assert isinstance(kind.category, ErrorCategory)


class TestClassifyException:
    def test_node_error_keeps_its_kind(self):
        assert classify_exception(NodeError("slow down", kind=ErrorKind.RATE_LIMIT)) == (
            ErrorKind.RATE_LIMIT
        )

    def test_builtin_exceptions(self):
        assert classify_exception(TimeoutError()) == ErrorKind.TIMEOUT
        assert classify_exception(ConnectionResetError()) == ErrorKind.NETWORK
        assert classify_exception(PermissionError()) == ErrorKind.AUTH
        assert classify_exception(asyncio.CancelledError()) == ErrorKind.CANCELLED
        assert classify_exception(KeyError("x")) == ErrorKind.UNKNOWN

    def test_pydantic_validation_error(self):
        assert classify_exception(_validation_error()) == ErrorKind.VALIDATION


class TestNodeError:
    def test_retriable_defaults_to_kind(self):
        assert NodeError("x", kind=ErrorKind.NETWORK).retriable
        assert not NodeError("x", kind=ErrorKind.AUTH).retriable

    def test_retriable_override(self):
        assert not NodeError("x", kind=ErrorKind.NETWORK, retriable=False).retriable


def test_workflow_definition_error_lists_every_problem():
    error = WorkflowDefinitionError("wf", ["first problem", "second problem"])
    assert error.errors == ["first problem", "second problem"]
    assert "first problem" in str(error)
    assert "second problem" in str(error)
    assert isinstance(error, ValueError)


class TestResults:
    def test_success(self):
        result = Success(42)
        assert result.ok
        assert result.value == 42
        assert not result.finish

    def test_failure_retriable_from_kind(self):
        assert Failure(ErrorKind.TIMEOUT, "slow").retriable is True
        assert Failure(ErrorKind.VALIDATION, "bad").retriable is False
        assert Failure(ErrorKind.TIMEOUT, "slow", retriable=False).retriable is False

    def test_with_node_returns_copy(self):
        original = Failure(ErrorKind.NETWORK, "down")
        stamped = original.with_node("fetch")
        assert stamped.node == "fetch"
        assert original.node is None

    def test_to_dict(self):
        assert Failure(ErrorKind.AUTH, "denied", node="login").to_dict() == {
            "ok": False,
            "node": "login",
            "kind": "auth",
            "message": "denied",
            "retriable": False,
        }
        assert Success("v", node="a").to_dict()["value"] == "v"

    def test_finish_marks_success(self):
        result = finish("done")
        assert result.ok
        assert result.finish
        assert result.value == "done"

    def test_failure_str_mentions_node_and_kind(self):
        text = str(Failure(ErrorKind.TIMEOUT, "too slow", node="fetch"))
        assert "fetch" in text
        assert "timeout" in text
