"""Layered output validation.

A candidate output passes through the schema layer first (the definition's
pydantic ``output_schema``), then through each custom
:class:`~agentry.agents.definition.ValidationLayer` in declared order.  The
first failing layer stops the pipeline.  Observers receive a start and a
complete event per layer that actually ran.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .definition import ValidationLayer
from .errors import AgentError, format_agent_errors
from .types import LayerKind, ModelRetry, ValidationLayerInfo, ValidationLayerOutcome

logger = logging.getLogger("agentry.validation")

SCHEMA_LAYER_NAME = "output_schema"
SCHEMA_LAYER_DESCRIPTION = "Validates that your output matches the expected JSON schema structure"
_GENERIC_LAYER_DESCRIPTION = "No description provided for validation layer"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :func:`validate_output`.

    Attributes:
        ok: Whether every layer passed.
        output: The parsed output (a schema instance) when the schema layer passed.
        layer: The failing layer, ``None`` on success.
        error: The raw error raised by the failing layer.
    """

    ok: bool
    output: Any = None
    layer: ValidationLayerInfo | None = None
    error: Any = None


# ------------------------------------------------------------------
# Error formatting
# ------------------------------------------------------------------


def format_pydantic_error(error: PydanticValidationError) -> str:
    """Render a pydantic ``ValidationError`` as a compact markdown list."""
    issues = error.errors(include_url=False)
    if not issues:
        return ""
    lines = [f"## Errors ({len(issues)})"]
    for issue in issues:
        lines.append(f"✖ {issue['msg']}")
        loc = ".".join(str(part) for part in issue.get("loc", ()))
        if loc:
            lines.append(f"  → at {loc}")
    return "\n".join(lines)


def format_error_detail(error: Any) -> str:
    """Format an error raised by a validation layer for the model."""
    if isinstance(error, PydanticValidationError):
        return format_pydantic_error(error)
    if isinstance(error, ModelRetry):
        return error.message
    if isinstance(error, AgentError):
        return error.message
    if isinstance(error, (list, tuple)) and error and all(isinstance(e, AgentError) for e in error):
        return format_agent_errors(error)
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str):
        return error
    try:
        return json.dumps(error, indent=2, default=str)
    except (TypeError, ValueError):
        return repr(error)


def format_validation_error_for_prompt(
    error: Any,
    layer_name: str | None,
    layer_description: str | None,
    formatter: Callable[[Any], str] | None = None,
) -> str:
    """Prefix the formatted *error* with the layer that produced it.

    Args:
        error: The raw error from the failing layer.
        layer_name: Name of the failing layer.
        layer_description: What the layer checks.
        formatter: Replacement for :func:`format_error_detail`.
    """
    detail = (formatter or format_error_detail)(error)
    name = layer_name or "validation"
    description = layer_description or _GENERIC_LAYER_DESCRIPTION
    return f"The following errors occurred during {name}:\n{description}\n\n{detail}"


# ------------------------------------------------------------------
# Pipeline
# ------------------------------------------------------------------


def schema_layer_info() -> ValidationLayerInfo:
    return ValidationLayerInfo(SCHEMA_LAYER_NAME, SCHEMA_LAYER_DESCRIPTION, LayerKind.schema)


async def validate_output(
    candidate: Any,
    output_schema: type[BaseModel],
    custom_validators: Sequence[ValidationLayer] = (),
    *,
    on_layer_start: Callable[[ValidationLayerInfo], None] | None = None,
    on_layer_complete: Callable[[ValidationLayerOutcome], None] | None = None,
) -> ValidationResult:
    """Run the schema layer and then each custom layer, stopping at the first failure.

    Custom validators receive a deep copy of the parsed output, so a
    validator that mutates its argument cannot affect later layers or the
    returned output.
    """

    def _start(info: ValidationLayerInfo) -> None:
        if on_layer_start is not None:
            on_layer_start(info)

    def _complete(info: ValidationLayerInfo, success: bool, error: Any = None) -> None:
        if on_layer_complete is not None:
            on_layer_complete(ValidationLayerOutcome(info.name, info.description, info.kind, success, error))

    info = schema_layer_info()
    _start(info)
    try:
        output = output_schema.model_validate(candidate)
    except PydanticValidationError as exc:
        logger.debug("Schema validation failed with %d issue(s)", exc.error_count())
        _complete(info, False, exc)
        return ValidationResult(ok=False, layer=info, error=exc)
    _complete(info, True)

    for layer in custom_validators:
        info = ValidationLayerInfo(layer.name, layer.description, LayerKind.custom)
        _start(info)
        try:
            result = layer.validate(output.model_copy(deep=True))
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.debug("Validation layer %r failed: %s", layer.name, exc)
            _complete(info, False, exc)
            return ValidationResult(ok=False, output=output, layer=info, error=exc)
        _complete(info, True)

    return ValidationResult(ok=True, output=output)
