"""
Node results - the tagged union every node invocation produces.

A node either succeeds with a payload or fails with a kind and message.
Composite nodes (parallel groups, map-reduce) attach the results of the
nodes they ran internally as ``children`` so the executor can merge them
into the context in the same single-writer step as the parent.
"""

from dataclasses import dataclass, field, replace
from typing import Any

from flowgraph.graph.errors import ErrorKind


@dataclass(frozen=True)
class Success:
    """Successful node invocation."""

    value: Any = None
    node: str | None = None
    finish: bool = False  # Explicit request to end the run after this node
    children: dict[str, "NodeResult"] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True

    def with_node(self, node: str) -> "Success":
        return replace(self, node=node)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "node": self.node,
            "value": self.value,
            "finish": self.finish,
        }


@dataclass(frozen=True)
class Failure:
    """Failed node invocation."""

    kind: ErrorKind
    message: str
    retriable: bool | None = None
    node: str | None = None
    children: dict[str, "NodeResult"] = field(default_factory=dict)

    def __post_init__(self):
        if self.retriable is None:
            object.__setattr__(self, "retriable", self.kind.retriable)

    @property
    def ok(self) -> bool:
        return False

    def with_node(self, node: str) -> "Failure":
        return replace(self, node=node)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": False,
            "node": self.node,
            "kind": self.kind.value,
            "message": self.message,
            "retriable": self.retriable,
        }

    def __str__(self) -> str:
        origin = f"{self.node}: " if self.node else ""
        return f"{origin}[{self.kind}] {self.message}"


NodeResult = Success | Failure


def finish(value: Any = None) -> Success:
    """Succeed and end the run: no outgoing edges are evaluated afterwards."""
    return Success(value=value, finish=True)
