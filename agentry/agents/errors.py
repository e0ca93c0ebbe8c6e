"""Structured error values reported by the agent engine.

Failures are returned, not raised: :func:`~agentry.agents.definition.define_agent`
and :func:`~agentry.agents.executor.execute_agent` report problems as lists
of :class:`AgentError`.  Each error carries a stable :class:`AgentErrorCode`,
a category, an optional JSONPath-style location, and a context mapping with
the values needed to explain it.

Example::

    result = define_agent(name="", ...)
    if not result.ok:
        print(format_agent_errors(result.errors))
        # ## Errors (1)
        # - Agent name must be a non-empty string; was given "" at $.name
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any


class AgentErrorCode(str, enum.Enum):
    """Stable identifiers for every failure the engine can report."""

    # Definition
    EMPTY_NAME = "EMPTY_NAME"
    EMPTY_DESCRIPTION = "EMPTY_DESCRIPTION"
    EMPTY_MODEL_NAME = "EMPTY_MODEL_NAME"
    EMPTY_OUTPUT_TOOL_NAME = "EMPTY_OUTPUT_TOOL_NAME"
    EMPTY_OUTPUT_TOOL_DESCRIPTION = "EMPTY_OUTPUT_TOOL_DESCRIPTION"
    MISSING_OUTPUT_SCHEMA = "MISSING_OUTPUT_SCHEMA"
    INVALID_MAX_ATTEMPTS = "INVALID_MAX_ATTEMPTS"
    INVALID_TEMPERATURE = "INVALID_TEMPERATURE"
    INVALID_MAX_TOKENS = "INVALID_MAX_TOKENS"
    INVALID_MODEL_OPTIONS = "INVALID_MODEL_OPTIONS"
    INVALID_CUSTOM_VALIDATOR = "INVALID_CUSTOM_VALIDATOR"
    INVALID_HELPER_TOOL = "INVALID_HELPER_TOOL"
    TOOL_NAME_CONFLICT = "TOOL_NAME_CONFLICT"

    # Execution
    PROMPT_GENERATION_FAILED = "PROMPT_GENERATION_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    MAX_ITERATIONS_EXCEEDED = "MAX_ITERATIONS_EXCEEDED"
    EXECUTION_CANCELLED = "EXECUTION_CANCELLED"
    STATE_PROJECTION_FAILED = "STATE_PROJECTION_FAILED"

    # Model
    API_ERROR = "API_ERROR"
    OUTPUT_TOOL_NOT_USED = "OUTPUT_TOOL_NOT_USED"
    SUBMIT_BEFORE_OUTPUT = "SUBMIT_BEFORE_OUTPUT"

    def __str__(self) -> str:
        return self.value


class ErrorCategory(str, enum.Enum):
    validation = "validation"
    execution = "execution"
    model = "model"


class Severity(str, enum.Enum):
    error = "error"
    warning = "warning"


_CATEGORIES: dict[AgentErrorCode, ErrorCategory] = {
    AgentErrorCode.EMPTY_NAME: ErrorCategory.validation,
    AgentErrorCode.EMPTY_DESCRIPTION: ErrorCategory.validation,
    AgentErrorCode.EMPTY_MODEL_NAME: ErrorCategory.validation,
    AgentErrorCode.EMPTY_OUTPUT_TOOL_NAME: ErrorCategory.validation,
    AgentErrorCode.EMPTY_OUTPUT_TOOL_DESCRIPTION: ErrorCategory.validation,
    AgentErrorCode.MISSING_OUTPUT_SCHEMA: ErrorCategory.validation,
    AgentErrorCode.INVALID_MAX_ATTEMPTS: ErrorCategory.validation,
    AgentErrorCode.INVALID_TEMPERATURE: ErrorCategory.validation,
    AgentErrorCode.INVALID_MAX_TOKENS: ErrorCategory.validation,
    AgentErrorCode.INVALID_MODEL_OPTIONS: ErrorCategory.validation,
    AgentErrorCode.INVALID_CUSTOM_VALIDATOR: ErrorCategory.validation,
    AgentErrorCode.INVALID_HELPER_TOOL: ErrorCategory.validation,
    AgentErrorCode.TOOL_NAME_CONFLICT: ErrorCategory.validation,
    AgentErrorCode.PROMPT_GENERATION_FAILED: ErrorCategory.execution,
    AgentErrorCode.VALIDATION_FAILED: ErrorCategory.execution,
    AgentErrorCode.MAX_ATTEMPTS_EXCEEDED: ErrorCategory.execution,
    AgentErrorCode.MAX_ITERATIONS_EXCEEDED: ErrorCategory.execution,
    AgentErrorCode.EXECUTION_CANCELLED: ErrorCategory.execution,
    AgentErrorCode.STATE_PROJECTION_FAILED: ErrorCategory.execution,
    AgentErrorCode.API_ERROR: ErrorCategory.model,
    AgentErrorCode.OUTPUT_TOOL_NOT_USED: ErrorCategory.model,
    AgentErrorCode.SUBMIT_BEFORE_OUTPUT: ErrorCategory.model,
}


def category_for(code: AgentErrorCode) -> ErrorCategory:
    return _CATEGORIES[code]


@dataclass(frozen=True)
class AgentError:
    """A single structured failure.

    Attributes:
        code: What went wrong.
        severity: ``error`` or ``warning``.
        category: Where it went wrong (definition, execution, model).
        path: JSONPath-style location of the offending field, if any.
        context: Values explaining the failure (``attempt``, ``phase``, ...).
        suggestion: Optional hint appended to the message.
    """

    code: AgentErrorCode
    severity: Severity = Severity.error
    category: ErrorCategory | None = None
    path: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    suggestion: str | None = None

    def __post_init__(self) -> None:
        if self.category is None:
            object.__setattr__(self, "category", category_for(self.code))

    @property
    def message(self) -> str:
        return format_agent_error(self)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code.value,
            "severity": self.severity.value,
            "category": self.category.value if self.category else None,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.path is not None:
            data["path"] = self.path
        if self.suggestion is not None:
            data["suggestion"] = self.suggestion
        return data


def make_error(code: AgentErrorCode, path: str | None = None, **context: Any) -> AgentError:
    """Build an :class:`AgentError` with its default category and severity."""
    return AgentError(code=code, path=path, context=context)


# ------------------------------------------------------------------
# Formatting
# ------------------------------------------------------------------


def _empty_field(label: str) -> Callable[[dict[str, Any]], str]:
    def fmt(ctx: dict[str, Any]) -> str:
        base = f"{label} must be a non-empty string"
        if "provided_value" in ctx:
            return f'{base}; was given "{ctx["provided_value"]}"'
        return base

    return fmt


def _at_least(label: str) -> Callable[[dict[str, Any]], str]:
    def fmt(ctx: dict[str, Any]) -> str:
        base = f"{label} must be at least {ctx.get('minimum_value', 1)}"
        if "provided_value" in ctx:
            return f"{base}; was given {ctx['provided_value']}"
        return base

    return fmt


def _temperature(ctx: dict[str, Any]) -> str:
    base = f"Temperature must be between {ctx.get('minimum_value', 0)} and {ctx.get('maximum_value', 1)}"
    if "provided_value" in ctx:
        return f"{base}; was given {ctx['provided_value']}"
    return base


def _joined(head: str, *parts: tuple[str, str]) -> Callable[[dict[str, Any]], str]:
    """Build a formatter that appends ``template`` for each present context key."""

    def fmt(ctx: dict[str, Any]) -> str:
        message = head
        for key, template in parts:
            value = ctx.get(key)
            if value is not None and value != "":
                sep = "" if template.startswith(";") else " "
                message += sep + template.format(value)
        return message

    return fmt


def _invalid_helper(ctx: dict[str, Any]) -> str:
    if ctx.get("reason"):
        return f"Invalid helper tool; {ctx['reason']}"
    return f"Helper tools must be HelperTool instances; was given {ctx.get('provided_type')}"


def _max_attempts(ctx: dict[str, Any]) -> str:
    message = f"Maximum attempts exceeded ({ctx.get('max_attempts')})"
    if ctx.get("last_error"):
        message += f"; last error: {ctx['last_error']}"
    return message


_FORMATTERS: dict[AgentErrorCode, Callable[[dict[str, Any]], str]] = {
    AgentErrorCode.EMPTY_NAME: _empty_field("Agent name"),
    AgentErrorCode.EMPTY_DESCRIPTION: _empty_field("Agent description"),
    AgentErrorCode.EMPTY_MODEL_NAME: _empty_field("Model name"),
    AgentErrorCode.EMPTY_OUTPUT_TOOL_NAME: _empty_field("Output tool name"),
    AgentErrorCode.EMPTY_OUTPUT_TOOL_DESCRIPTION: _empty_field("Output tool description"),
    AgentErrorCode.MISSING_OUTPUT_SCHEMA: lambda ctx: "Validation output schema must be provided",
    AgentErrorCode.INVALID_MAX_ATTEMPTS: _at_least("Validation max_attempts"),
    AgentErrorCode.INVALID_TEMPERATURE: _temperature,
    AgentErrorCode.INVALID_MAX_TOKENS: _at_least("Maximum tokens"),
    AgentErrorCode.INVALID_MODEL_OPTIONS: lambda ctx: f"Model options must be a mapping; was given {ctx.get('provided_type')}",
    AgentErrorCode.INVALID_CUSTOM_VALIDATOR: lambda ctx: (
        f"Custom validators must be a sequence of ValidationLayer; was given {ctx.get('provided_type')}"
    ),
    AgentErrorCode.INVALID_HELPER_TOOL: _invalid_helper,
    AgentErrorCode.TOOL_NAME_CONFLICT: lambda ctx: (
        f'Helper tool name "{ctx.get("tool_name")}" conflicts with the {ctx.get("conflicts_with")}'
    ),
    AgentErrorCode.PROMPT_GENERATION_FAILED: _joined(
        "Prompt generation failed",
        ("prompt_type", "for {} prompt"),
        ("attempt", "on attempt {}"),
        ("reason", "; {}"),
    ),
    AgentErrorCode.VALIDATION_FAILED: _joined(
        "Validation failed",
        ("layer", 'in "{}"'),
        ("attempt", "on attempt {}"),
        ("reason", "; {}"),
    ),
    AgentErrorCode.MAX_ATTEMPTS_EXCEEDED: _max_attempts,
    AgentErrorCode.MAX_ITERATIONS_EXCEEDED: lambda ctx: (
        f"Maximum iterations exceeded; reached {ctx.get('iteration_count')} of {ctx.get('max_iterations')} allowed"
    ),
    AgentErrorCode.EXECUTION_CANCELLED: lambda ctx: (
        f"Execution cancelled at attempt {ctx.get('attempt')} during {ctx.get('phase')} phase"
    ),
    AgentErrorCode.STATE_PROJECTION_FAILED: lambda ctx: f"State projection failed: {ctx.get('error')}",
    AgentErrorCode.API_ERROR: _joined(
        "API error",
        ("provider", "from {}"),
        ("status_code", "(status {})"),
        ("message", "; {}"),
    ),
    AgentErrorCode.OUTPUT_TOOL_NOT_USED: lambda ctx: (
        f"Model did not call output tool; expected {ctx.get('expected_tool')}"
    ),
    AgentErrorCode.SUBMIT_BEFORE_OUTPUT: lambda ctx: "Model called submit before calling output tool",
}


def format_agent_error(error: AgentError) -> str:
    """Return a developer-readable message for *error*."""
    message = _FORMATTERS[error.code](dict(error.context))
    if error.path:
        message += f" at {error.path}"
    if error.suggestion:
        message += f". {error.suggestion}"
    return message


def format_agent_errors(errors: Iterable[AgentError], *, markdown: bool = True) -> str:
    """Format several errors grouped by severity, errors first.

    Returns an empty string when *errors* is empty.
    """
    errors = list(errors)
    if not errors:
        return ""

    sections: list[str] = []
    for severity, label in ((Severity.error, "Errors"), (Severity.warning, "Warnings")):
        group = [e for e in errors if e.severity == severity]
        if not group:
            continue
        header = f"## {label} ({len(group)})" if markdown else f"{label.upper()} ({len(group)})"
        sections.append("\n".join([header, *(f"- {format_agent_error(e)}" for e in group)]))
    return "\n\n".join(sections)
