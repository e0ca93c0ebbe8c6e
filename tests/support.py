"""Shared builders for the agentry test-suite."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from agentry import (
    AgentDefinition,
    ExecuteCallbacks,
    HelperTool,
    ModelConfig,
    ObservabilityConfig,
    OutputTool,
    PromptsConfig,
    StateUpdate,
    ToolReducerResult,
    ValidationConfig,
    ValidationLayer,
    define_agent,
)
from agentry.drivers import ModelResponse, tool_response

OUTPUT_TOOL = "emit_answer"


class Answer(BaseModel):
    value: int
    label: str = ""


class Increment(BaseModel):
    by: int = 1


class PromptRecorder:
    """Prompt builders that record every call."""

    def __init__(self) -> None:
        self.system_calls: list[tuple[Any, Any]] = []
        self.user_calls: list[Any] = []
        self.error_calls: list[tuple[str, Any]] = []

    def system(self, input: Any, context: Any) -> str:
        self.system_calls.append((input, context))
        return f"system prompt for attempt {context.attempt}"

    def user(self, input: Any) -> str:
        self.user_calls.append(input)
        return f"task: {input}"

    def error(self, formatted: str, context: Any) -> str:
        self.error_calls.append((formatted, context))
        return f"Please fix the following and try again.\n{formatted}"

    def config(self, **overrides: Any) -> PromptsConfig:
        fields: dict[str, Any] = {"system": self.system, "user": self.user, "error": self.error}
        fields.update(overrides)
        return PromptsConfig(**fields)


class EventLog:
    """ExecuteCallbacks that append a compact trace of every event."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.contexts: list[Any] = []
        self.failures: list[Any] = []
        self.successes: list[Any] = []
        self.validation_failures: list[Any] = []
        self.layer_outcomes: list[Any] = []
        self.tool_results: list[tuple[str, str]] = []

    def callbacks(self, **overrides: Any) -> ExecuteCallbacks:
        fields: dict[str, Any] = {
            "on_attempt_start": self._attempt_start,
            "on_attempt_complete": self._attempt_complete,
            "on_validation_failure": self._validation_failure,
            "on_validation_layer_start": self._layer_start,
            "on_validation_layer_complete": self._layer_complete,
            "on_tool_call": self._tool_call,
            "on_tool_result": self._tool_result,
            "on_success": self._success,
            "on_failure": self._failure,
        }
        fields.update(overrides)
        return ExecuteCallbacks(**fields)

    def _attempt_start(self, context: Any) -> None:
        self.contexts.append(context)
        self.events.append(f"attempt_start:{context.attempt}")

    def _attempt_complete(self, context: Any, success: bool) -> None:
        self.events.append(f"attempt_complete:{context.attempt}:{success}")

    def _validation_failure(self, context: Any, error: Any) -> None:
        self.validation_failures.append(error)
        self.events.append(f"validation_failure:{context.attempt}")

    def _layer_start(self, context: Any, layer: Any) -> None:
        self.events.append(f"layer_start:{layer.name}")

    def _layer_complete(self, context: Any, outcome: Any) -> None:
        self.layer_outcomes.append(outcome)
        self.events.append(f"layer_complete:{outcome.name}:{outcome.success}")

    def _tool_call(self, context: Any, name: str, tool_input: Any) -> None:
        self.events.append(f"tool_call:{name}")

    def _tool_result(self, context: Any, name: str, result: str) -> None:
        self.tool_results.append((name, result))
        self.events.append(f"tool_result:{name}")

    def _success(self, output: Any, metadata: Any) -> None:
        self.successes.append(output)
        self.events.append("success")

    def _failure(self, errors: Any, metadata: Any) -> None:
        self.failures.append(errors)
        self.events.append("failure")


def increment_handler(state: Any, args: Increment) -> ToolReducerResult:
    run = dict(state.run)
    run["count"] = run.get("count", 0) + args.by
    attempt = dict(state.attempt)
    attempt["calls"] = attempt.get("calls", 0) + 1
    return ToolReducerResult(new_state=StateUpdate(run=run, attempt=attempt), tool_result={"count": run["count"]})


def increment_tool(handler: Any = increment_handler) -> HelperTool:
    return HelperTool(
        name="increment",
        description="Increase the counter",
        input_schema=Increment,
        handler=handler,
    )


def build_agent(
    prompts: PromptsConfig | None = None,
    *,
    helpers: Any = (),
    validators: Any = (),
    max_attempts: int = 3,
    max_iterations: int | None = None,
    reflection_handler: Any = None,
    observability: ObservabilityConfig | None = None,
    output_schema: type[BaseModel] = Answer,
    **kwargs: Any,
) -> AgentDefinition:
    result = define_agent(
        name="test-agent",
        description="Agent used by the test-suite",
        model=ModelConfig(name="claude-test"),
        prompts=prompts or PromptRecorder().config(),
        output_tool=OutputTool(
            name=OUTPUT_TOOL,
            description="Return the final answer",
            reflection_handler=reflection_handler,
        ),
        helpers=helpers,
        validation=ValidationConfig(
            output_schema=output_schema,
            custom_validators=tuple(validators),
            max_attempts=max_attempts,
            max_iterations_per_attempt=max_iterations,
        ),
        observability=observability,
        **kwargs,
    )
    return result.unwrap()


def answer(value: Any = 42, label: str = "", **extra: Any) -> ModelResponse:
    """A response calling the output tool."""
    payload = {"value": value, "label": label, **extra}
    return tool_response(OUTPUT_TOOL, payload)


def min_label_length(minimum: int) -> ValidationLayer:
    def validate(output: Answer) -> None:
        if len(output.label) < minimum:
            raise ValueError(f"label must be at least {minimum} characters, got {len(output.label)}")

    return ValidationLayer(
        name="label-length",
        description=f"Labels must have at least {minimum} characters",
        validate=validate,
    )
