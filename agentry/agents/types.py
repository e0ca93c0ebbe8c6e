"""Shared types for the agent execution engine.

Defines enums, dataclasses, and exceptions used by
:func:`~agentry.agents.executor.execute_agent` and the components it drives.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from ..drivers.base import TokenUsage

RunT = TypeVar("RunT")
AttemptT = TypeVar("AttemptT")


class ExecutionStatus(enum.Enum):
    """Lifecycle state of one :func:`execute_agent` call."""

    idle = "idle"
    prompt_generation = "prompt_generation"
    tool_call_iteration = "tool_call_iteration"
    validating = "validating"
    retrying = "retrying"
    success = "success"
    exhausted = "exhausted"
    cancelled = "cancelled"
    projection_failed = "projection_failed"
    failed = "failed"


class ExecutionPhase(str, enum.Enum):
    """Suspension point at which a cancellation was observed."""

    prompt_generation = "prompt_generation"
    iteration = "iteration"
    validation = "validation"
    error_prompt = "error_prompt"


class LayerKind(str, enum.Enum):
    """Classification of a validation layer."""

    schema = "schema"
    custom = "custom"


class ModelRetry(Exception):
    """Raised to feed an error message back to the model.

    Helper tool handlers raise this to return an error tool result,
    reflection handlers raise it to reject a candidate output, and
    custom validators raise it to fail their layer.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ------------------------------------------------------------------
# Three-tier state
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionContext:
    """Framework-owned counters for the current attempt and iteration.

    Attributes:
        attempt: Current attempt number (1-based, 0 before the first attempt).
        max_attempts: Effective attempt budget for this execution.
        iteration: Current tool-calling iteration within the attempt
            (0 before the first model call of the attempt).
        max_iterations: Iteration budget per attempt.
    """

    attempt: int
    max_attempts: int
    iteration: int = 0
    max_iterations: int = 0


@dataclass(frozen=True)
class ExecutionState(Generic[RunT, AttemptT]):
    """The ``(context, run, attempt)`` triple handed to user code.

    Every instance a handler receives is a private snapshot; mutating
    ``run`` or ``attempt`` in place never reaches the framework's copy.
    """

    context: ExecutionContext
    run: RunT
    attempt: AttemptT


@dataclass(frozen=True)
class StateUpdate(Generic[RunT, AttemptT]):
    """New run and attempt state returned by a helper tool handler."""

    run: RunT
    attempt: AttemptT


@dataclass(frozen=True)
class ToolReducerResult(Generic[RunT, AttemptT]):
    """Return value of a helper tool handler.

    Attributes:
        new_state: State adopted for the next tool call.
        tool_result: Value reported back to the model. Strings are sent
            verbatim; anything else is JSON-encoded.
    """

    new_state: StateUpdate[RunT, AttemptT]
    tool_result: Any = None


# ------------------------------------------------------------------
# Validation observability
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationLayerInfo:
    """Identity of a validation layer, passed to ``on_validation_layer_start``."""

    name: str
    description: str
    kind: LayerKind


@dataclass(frozen=True)
class ValidationLayerOutcome:
    """Result of one validation layer, passed to ``on_validation_layer_complete``."""

    name: str
    description: str
    kind: LayerKind
    success: bool
    error: Any = None


# ------------------------------------------------------------------
# Callbacks
# ------------------------------------------------------------------


@dataclass
class ExecuteCallbacks:
    """Execution-level observability callbacks.

    All callbacks are optional, synchronous and fire-and-forget.  An
    exception raised inside a callback is caught, recorded into
    :attr:`ExecuteMetadata.callback_errors` and never interrupts execution.

    Attributes:
        on_attempt_start: Called with the :class:`ExecutionContext` when an
            attempt begins.
        on_attempt_complete: Called with ``(context, success)`` when an
            attempt's output has been validated.
        on_validation_failure: Called with ``(context, error)`` for every
            retryable failure.
        on_validation_layer_start: Called with ``(context, layer_info)``.
        on_validation_layer_complete: Called with ``(context, outcome)``.
        on_tool_call: Called with ``(context, tool_name, tool_input)`` before
            a tool is handled.
        on_tool_result: Called with ``(context, tool_name, result_text)``
            after a tool is handled.
        on_success: Called with ``(output, metadata)``.
        on_failure: Called with ``(errors, metadata)``.  Not called on
            cancellation.
    """

    on_attempt_start: Callable[[ExecutionContext], None] | None = None
    on_attempt_complete: Callable[[ExecutionContext, bool], None] | None = None
    on_validation_failure: Callable[[ExecutionContext, Any], None] | None = None
    on_validation_layer_start: Callable[[ExecutionContext, ValidationLayerInfo], None] | None = None
    on_validation_layer_complete: Callable[[ExecutionContext, ValidationLayerOutcome], None] | None = None
    on_tool_call: Callable[[ExecutionContext, str, Any], None] | None = None
    on_tool_result: Callable[[ExecutionContext, str, str], None] | None = None
    on_success: Callable[[Any, ExecuteMetadata], None] | None = None
    on_failure: Callable[[list[Any], ExecuteMetadata], None] | None = None


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


@dataclass
class ExecuteMetadata:
    """Resource usage for one execution.

    Fields whose observability flag is disabled are ``None``.

    Attributes:
        latency_ms: Wall-clock duration of the execution.
        tokens: Input/output tokens summed over every model call.
        cost: Cost summed over every model call, as reported by the backend.
        attempts: Number of attempts started.
        callback_errors: Exceptions raised by user callbacks.
    """

    latency_ms: float | None = None
    tokens: TokenUsage | None = None
    cost: float | None = None
    attempts: int | None = None
    callback_errors: list[Exception] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "latency_ms": self.latency_ms,
            "tokens": self.tokens.to_dict() if self.tokens is not None else None,
            "cost": self.cost,
            "attempts": self.attempts,
            "callback_errors": [f"{type(e).__name__}: {e}" for e in self.callback_errors],
        }


@dataclass
class ExecuteSuccess:
    """Successful outcome of :func:`execute_agent`.

    Attributes:
        output: Validated output (an instance of the definition's output schema).
        attempts: Attempt on which validation succeeded (1..max_attempts).
        metadata: Resource usage for the execution.
        state_projection: Value returned by ``project_final_state``, if configured.
        history: The full conversation history sent to the model.
        status: Always :attr:`ExecutionStatus.success`.
    """

    output: Any
    attempts: int
    metadata: ExecuteMetadata
    state_projection: Any = None
    history: list[dict[str, Any]] = field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.success

    @property
    def ok(self) -> bool:
        return True


@dataclass
class ExecuteFailure:
    """Failed or cancelled outcome of :func:`execute_agent`.

    Attributes:
        errors: One or more :class:`~agentry.agents.errors.AgentError`.
        metadata: Resource usage up to the point of failure.
        history: Conversation history accumulated before the failure.
        status: Terminal :class:`ExecutionStatus`.
    """

    errors: list[Any]
    metadata: ExecuteMetadata
    history: list[dict[str, Any]] = field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.failed

    @property
    def ok(self) -> bool:
        return False

    @property
    def error(self) -> Any:
        """The first (usually only) error."""
        return self.errors[0] if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        """Convert this failure to a dictionary for serialization."""
        return {
            "status": self.status.value,
            "errors": [e.to_dict() for e in self.errors],
            "metadata": self.metadata.to_dict(),
            "exported_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    def export_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)
