"""Agent definitions: configuration objects and the :func:`define_agent` validator.

An :class:`AgentDefinition` bundles everything needed to run an agent:
model parameters, prompt builders, the output tool, helper tools, the
validation pipeline, and observability flags.  Definitions are built with
:func:`define_agent`, which checks every rule, reports all violations at
once, and freezes the result.

Example::

    from pydantic import BaseModel
    from agentry import define_agent, ModelConfig, OutputTool, PromptsConfig, ValidationConfig

    class Summary(BaseModel):
        title: str
        bullets: list[str]

    result = define_agent(
        name="summariser",
        description="Summarises a document",
        model=ModelConfig(name="claude-sonnet-4-5"),
        prompts=PromptsConfig(
            system=lambda doc, ctx: "You summarise documents.",
            user=lambda doc: f"Summarise:\\n{doc}",
            error=lambda err, ctx: f"Fix these problems:\\n{err}",
        ),
        output_tool=OutputTool(name="emit_summary", description="Return the summary"),
        validation=ValidationConfig(output_schema=Summary),
    )
    agent = result.unwrap()
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Union

from pydantic import BaseModel

from ..exceptions import AgentDefinitionError
from .errors import AgentError, AgentErrorCode, make_error
from .tools_schema import SUBMIT_TOOL_NAME

logger = logging.getLogger("agentry.definition")

PromptResult = Union[str, Awaitable[str]]

_MIN_MAX_ATTEMPTS = 1
_MIN_MAX_TOKENS = 1
_MIN_TEMPERATURE = 0.0
_MAX_TEMPERATURE = 1.0


# ------------------------------------------------------------------
# Configuration objects
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ModelConfig:
    """Model parameters passed to the backend on every call.

    Attributes:
        name: Provider model identifier, e.g. ``"claude-sonnet-4-5"``.
        provider: Backend family.  Only ``"anthropic"`` ships an adapter.
        temperature: Sampling temperature in ``[0, 1]``.
        max_tokens: Upper bound on output tokens per call.
        options: Extra request parameters forwarded verbatim to the backend.
    """

    name: str
    provider: str = "anthropic"
    temperature: float = 0.0
    max_tokens: int = 4096
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PromptsConfig:
    """Prompt builders.  Each may be a plain or an ``async`` function.

    Attributes:
        system: ``(input, context) -> str``, rebuilt at the start of every attempt.
        user: ``(input) -> str``, built once per execution.
        error: ``(formatted_error, context) -> str``, built after each
            retryable failure.
        error_formatter: Optional ``(error) -> str`` replacing the default
            formatting of a failed validation layer's error.  May be ``async``;
            an exception ends the execution with ``PROMPT_GENERATION_FAILED``.
    """

    system: Callable[[Any, Any], PromptResult]
    user: Callable[[Any], PromptResult]
    error: Callable[[str, Any], PromptResult]
    error_formatter: Callable[[Any], PromptResult] | None = None


@dataclass(frozen=True)
class OutputTool:
    """The tool through which the model delivers its final answer.

    With a ``reflection_handler`` the agent runs in reflection mode: each
    output call is answered with the handler's preview text and the model
    finalises by calling the ``submit`` tool.  The handler may be ``async``
    and raises :class:`~agentry.agents.types.ModelRetry` to reject a candidate.
    """

    name: str
    description: str
    reflection_handler: Callable[[Any], Any] | None = None


@dataclass(frozen=True)
class HelperTool:
    """A reducer-style tool the model may call while working.

    Attributes:
        name: Tool name exposed to the model.
        description: Description exposed to the model.
        input_schema: Pydantic model validating the tool's input payload.
        handler: ``(state, parsed_input) -> ToolReducerResult``.  May be
            ``async``.  Raise :class:`~agentry.agents.types.ModelRetry` to
            report an error to the model without changing state.
    """

    name: str
    description: str
    input_schema: type[BaseModel]
    handler: Callable[[Any, Any], Any]


@dataclass(frozen=True)
class ValidationLayer:
    """A custom validator run after the output schema check.

    ``validate(output)`` returns ``None`` (or an awaitable resolving to
    ``None``) on success and raises on failure.
    """

    name: str
    description: str
    validate: Callable[[Any], Any]


@dataclass(frozen=True)
class ValidationConfig:
    """Output validation and retry budget.

    Attributes:
        output_schema: Pydantic model the output tool's input must satisfy.
        custom_validators: Layers run in order after the schema check.
        max_attempts: Attempts before the execution is exhausted.
        max_iterations_per_attempt: Tool-calling rounds allowed per attempt.
            ``None`` uses ``settings.default_max_iterations``.
    """

    output_schema: type[BaseModel] | None
    custom_validators: tuple[ValidationLayer, ...] = ()
    max_attempts: int = 3
    max_iterations_per_attempt: int | None = None


@dataclass(frozen=True)
class ObservabilityConfig:
    """Which metrics are reported in :class:`~agentry.agents.types.ExecuteMetadata`."""

    track_cost: bool = True
    track_latency: bool = True
    track_attempts: bool = True
    track_tokens: bool = True


@dataclass(frozen=True)
class AgentDefinition:
    """A validated, immutable agent.  Build with :func:`define_agent`."""

    name: str
    description: str
    model: ModelConfig
    prompts: PromptsConfig
    output_tool: OutputTool
    validation: ValidationConfig
    helpers: Mapping[str, HelperTool] = field(default_factory=lambda: MappingProxyType({}))
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    initial_run_state: Callable[[Any], Any] | None = None
    initial_attempt_state: Callable[[Any, Any, Any], Any] | None = None
    project_final_state: Callable[[Any], Any] | None = None

    @property
    def reflection_enabled(self) -> bool:
        return self.output_tool.reflection_handler is not None

    @property
    def output_schema(self) -> type[BaseModel]:
        return self.validation.output_schema  # type: ignore[return-value]


@dataclass(frozen=True)
class DefineResult:
    """Outcome of :func:`define_agent`.

    Exactly one of :attr:`definition` and :attr:`errors` is populated.
    """

    definition: AgentDefinition | None = None
    errors: tuple[AgentError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.definition is not None

    def unwrap(self) -> AgentDefinition:
        """Return the definition or raise :class:`AgentDefinitionError`."""
        if self.definition is None:
            raise AgentDefinitionError(list(self.errors))
        return self.definition


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() == ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _collect_errors(
    name: Any,
    description: Any,
    model: Any,
    output_tool: Any,
    validation: Any,
) -> list[AgentError]:
    errors: list[AgentError] = []

    if _is_blank(name):
        errors.append(make_error(AgentErrorCode.EMPTY_NAME, "$.name", provided_value=name))
    if _is_blank(description):
        errors.append(make_error(AgentErrorCode.EMPTY_DESCRIPTION, "$.description", provided_value=description))

    model_name = getattr(model, "name", None)
    if _is_blank(model_name):
        errors.append(make_error(AgentErrorCode.EMPTY_MODEL_NAME, "$.model.name", provided_value=model_name))

    tool_name = getattr(output_tool, "name", None)
    if _is_blank(tool_name):
        errors.append(make_error(AgentErrorCode.EMPTY_OUTPUT_TOOL_NAME, "$.output_tool.name", provided_value=tool_name))
    tool_description = getattr(output_tool, "description", None)
    if _is_blank(tool_description):
        errors.append(
            make_error(
                AgentErrorCode.EMPTY_OUTPUT_TOOL_DESCRIPTION,
                "$.output_tool.description",
                provided_value=tool_description,
            )
        )

    schema = getattr(validation, "output_schema", None)
    if not (isinstance(schema, type) and issubclass(schema, BaseModel)):
        errors.append(make_error(AgentErrorCode.MISSING_OUTPUT_SCHEMA, "$.validation.output_schema"))

    max_attempts = getattr(validation, "max_attempts", _MIN_MAX_ATTEMPTS)
    if not _is_number(max_attempts) or max_attempts < _MIN_MAX_ATTEMPTS:
        errors.append(
            make_error(
                AgentErrorCode.INVALID_MAX_ATTEMPTS,
                "$.validation.max_attempts",
                provided_value=max_attempts,
                minimum_value=_MIN_MAX_ATTEMPTS,
            )
        )

    temperature = getattr(model, "temperature", _MIN_TEMPERATURE)
    if not _is_number(temperature) or not _MIN_TEMPERATURE <= temperature <= _MAX_TEMPERATURE:
        errors.append(
            make_error(
                AgentErrorCode.INVALID_TEMPERATURE,
                "$.model.temperature",
                provided_value=temperature,
                minimum_value=_MIN_TEMPERATURE,
                maximum_value=_MAX_TEMPERATURE,
            )
        )

    max_tokens = getattr(model, "max_tokens", _MIN_MAX_TOKENS)
    if not _is_number(max_tokens) or max_tokens < _MIN_MAX_TOKENS:
        errors.append(
            make_error(
                AgentErrorCode.INVALID_MAX_TOKENS,
                "$.model.max_tokens",
                provided_value=max_tokens,
                minimum_value=_MIN_MAX_TOKENS,
            )
        )

    return errors


def _freeze(value: Any) -> Any:
    """Deep-copy *value* into read-only containers (mappings, tuples, frozensets)."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    return copy.deepcopy(value)


def _is_collection(value: Any) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes, Mapping))


def _helper_entries(helpers: Any) -> list[tuple[str, Any]]:
    if isinstance(helpers, Mapping):
        return [(f"$.helpers[{key!r}]", helper) for key, helper in helpers.items()]
    return [(f"$.helpers[{i}]", helper) for i, helper in enumerate(helpers)]


def _collect_collection_errors(model: Any, output_tool: Any, validation: Any, helpers: Any) -> list[AgentError]:
    errors: list[AgentError] = []

    options = getattr(model, "options", None)
    if not isinstance(options, Mapping):
        errors.append(
            make_error(
                AgentErrorCode.INVALID_MODEL_OPTIONS,
                "$.model.options",
                provided_type=type(options).__name__,
            )
        )

    validators = getattr(validation, "custom_validators", ())
    if not _is_collection(validators):
        errors.append(
            make_error(
                AgentErrorCode.INVALID_CUSTOM_VALIDATOR,
                "$.validation.custom_validators",
                provided_type=type(validators).__name__,
            )
        )
    else:
        for i, layer in enumerate(validators):
            if not isinstance(layer, ValidationLayer) or not callable(layer.validate):
                errors.append(
                    make_error(
                        AgentErrorCode.INVALID_CUSTOM_VALIDATOR,
                        f"$.validation.custom_validators[{i}]",
                        provided_type=type(layer).__name__,
                    )
                )

    if helpers is None:
        return errors
    if not isinstance(helpers, Mapping) and not _is_collection(helpers):
        errors.append(make_error(AgentErrorCode.INVALID_HELPER_TOOL, "$.helpers", provided_type=type(helpers).__name__))
        return errors

    reserved = {getattr(output_tool, "name", None): "output tool"}
    if getattr(output_tool, "reflection_handler", None) is not None:
        reserved[SUBMIT_TOOL_NAME] = "submit tool"
    for path, helper in _helper_entries(helpers):
        if not isinstance(helper, HelperTool):
            errors.append(make_error(AgentErrorCode.INVALID_HELPER_TOOL, path, provided_type=type(helper).__name__))
            continue
        if _is_blank(helper.name):
            errors.append(make_error(AgentErrorCode.INVALID_HELPER_TOOL, f"{path}.name", reason="name must be a non-empty string"))
            continue
        if not (isinstance(helper.input_schema, type) and issubclass(helper.input_schema, BaseModel)):
            errors.append(
                make_error(
                    AgentErrorCode.INVALID_HELPER_TOOL,
                    f"{path}.input_schema",
                    reason="input_schema must be a pydantic BaseModel subclass",
                )
            )
        if helper.name in reserved:
            errors.append(
                make_error(
                    AgentErrorCode.TOOL_NAME_CONFLICT,
                    f"{path}.name",
                    tool_name=helper.name,
                    conflicts_with=reserved[helper.name],
                )
            )
    return errors


def _freeze_helpers(helpers: Iterable[HelperTool] | Mapping[str, HelperTool] | None) -> Mapping[str, HelperTool]:
    if helpers is None:
        return MappingProxyType({})
    items = helpers.values() if isinstance(helpers, Mapping) else helpers
    frozen: dict[str, HelperTool] = {}
    for helper in items:
        if helper.name in frozen:
            logger.warning("Duplicate helper tool %r; the last definition wins", helper.name)
        frozen[helper.name] = helper
    return MappingProxyType(frozen)


def define_agent(
    *,
    name: str,
    description: str,
    model: ModelConfig,
    prompts: PromptsConfig,
    output_tool: OutputTool,
    validation: ValidationConfig,
    helpers: Iterable[HelperTool] | Mapping[str, HelperTool] | None = None,
    observability: ObservabilityConfig | None = None,
    initial_run_state: Callable[[Any], Any] | None = None,
    initial_attempt_state: Callable[[Any, Any, Any], Any] | None = None,
    project_final_state: Callable[[Any], Any] | None = None,
) -> DefineResult:
    """Validate an agent configuration and freeze it.

    Every rule is checked; a configuration violating *k* rules yields a
    :class:`DefineResult` carrying exactly *k* errors.  Nothing is raised.

    Returns:
        A :class:`DefineResult` holding either the frozen
        :class:`AgentDefinition` or the collected :class:`AgentError` list.
    """
    if _is_collection(helpers):
        helpers = list(helpers)  # type: ignore[arg-type]
    errors = _collect_errors(name, description, model, output_tool, validation)
    errors += _collect_collection_errors(model, output_tool, validation, helpers)
    if errors:
        logger.debug("Agent definition %r rejected with %d error(s)", name, len(errors))
        return DefineResult(errors=tuple(errors))

    definition = AgentDefinition(
        name=name,
        description=description,
        model=replace(model, options=_freeze(model.options)),
        prompts=prompts,
        output_tool=output_tool,
        validation=replace(validation, custom_validators=tuple(validation.custom_validators)),
        helpers=_freeze_helpers(helpers),
        observability=observability or ObservabilityConfig(),
        initial_run_state=initial_run_state,
        initial_attempt_state=initial_attempt_state,
        project_final_state=project_final_state,
    )
    logger.debug(
        "Defined agent %r (model=%s, helpers=%d, validators=%d, reflection=%s)",
        definition.name,
        definition.model.name,
        len(definition.helpers),
        len(definition.validation.custom_validators),
        definition.reflection_enabled,
    )
    return DefineResult(definition=definition)
