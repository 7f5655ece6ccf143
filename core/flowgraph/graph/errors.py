"""
Error taxonomy for workflow runs.

Every failure a node can produce carries an ErrorKind. Kinds are grouped
into four categories that decide how the rest of the engine reacts:

- transient: rate limits, timeouts, network blips - eligible for Retry
- permanent: validation, auth, not-found - never retried
- resource: circuit open, iteration limit, cancellation - control-flow signals
- unknown: anything unclassified, treated as non-retriable
"""

import asyncio
from enum import StrEnum

from pydantic import ValidationError


class ErrorCategory(StrEnum):
    """Coarse grouping of error kinds."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


class ErrorKind(StrEnum):
    """Specific reason a node invocation failed."""

    # Transient
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    PROVIDER = "provider"
    TOOL_EXECUTION = "tool_execution"

    # Permanent
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    DEPENDENCY_UNSATISFIED = "dependency_unsatisfied"
    DEFINITION = "definition"

    # Resource (control-flow signals)
    CIRCUIT_OPEN = "circuit_open"
    ITERATION_LIMIT_EXCEEDED = "iteration_limit_exceeded"
    CANCELLED = "cancelled"

    UNKNOWN = "unknown"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]

    @property
    def retriable(self) -> bool:
        """Default retry eligibility: only transient kinds."""
        return self.category == ErrorCategory.TRANSIENT


_CATEGORIES: dict[ErrorKind, ErrorCategory] = {
    ErrorKind.TIMEOUT: ErrorCategory.TRANSIENT,
    ErrorKind.RATE_LIMIT: ErrorCategory.TRANSIENT,
    ErrorKind.NETWORK: ErrorCategory.TRANSIENT,
    ErrorKind.PROVIDER: ErrorCategory.TRANSIENT,
    ErrorKind.TOOL_EXECUTION: ErrorCategory.TRANSIENT,
    ErrorKind.VALIDATION: ErrorCategory.PERMANENT,
    ErrorKind.AUTH: ErrorCategory.PERMANENT,
    ErrorKind.NOT_FOUND: ErrorCategory.PERMANENT,
    ErrorKind.DEPENDENCY_UNSATISFIED: ErrorCategory.PERMANENT,
    ErrorKind.DEFINITION: ErrorCategory.PERMANENT,
    ErrorKind.CIRCUIT_OPEN: ErrorCategory.RESOURCE,
    ErrorKind.ITERATION_LIMIT_EXCEEDED: ErrorCategory.RESOURCE,
    ErrorKind.CANCELLED: ErrorCategory.RESOURCE,
    ErrorKind.UNKNOWN: ErrorCategory.UNKNOWN,
}


class NodeError(Exception):
    """
    Raised inside a node to fail with a specific kind.

    Example:
        if response.status == 429:
            raise NodeError("rate limited", kind=ErrorKind.RATE_LIMIT)
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        retriable: bool | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.retriable = kind.retriable if retriable is None else retriable


class WorkflowDefinitionError(ValueError):
    """Raised when a workflow graph fails build-time validation."""

    def __init__(self, workflow_name: str, errors: list[str]):
        self.workflow_name = workflow_name
        self.errors = list(errors)
        joined = "; ".join(self.errors)
        super().__init__(f"Invalid workflow '{workflow_name}': {joined}")


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an arbitrary exception raised by node code to an ErrorKind."""
    if isinstance(exc, NodeError):
        return exc.kind
    if isinstance(exc, asyncio.CancelledError):
        return ErrorKind.CANCELLED
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorKind.NETWORK
    if isinstance(exc, ValidationError):
        return ErrorKind.VALIDATION
    if isinstance(exc, PermissionError):
        return ErrorKind.AUTH
    return ErrorKind.UNKNOWN
