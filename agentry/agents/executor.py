"""Retry/validation orchestration for agent executions.

:func:`execute_agent` drives one execution of an
:class:`~agentry.agents.definition.AgentDefinition`::

    idle -> prompt_generation -> tool_call_iteration -> validating
         -> success | retrying | exhausted | cancelled | projection_failed | failed

Each attempt rebuilds the system prompt, runs the tool-calling sub-loop
until the model delivers a candidate output, and validates it.  Retryable
failures (validation errors and tool-protocol violations) are fed back to
the model and consume one attempt; everything else ends the execution.
Failures are returned as :class:`~agentry.agents.types.ExecuteFailure`,
never raised.

Example::

    result = await execute_agent(agent, {"text": doc}, backend=AnthropicBackend())
    if result.ok:
        print(result.output, result.metadata.tokens)
    else:
        print(format_agent_errors(result.errors))
"""

from __future__ import annotations

import copy
import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..drivers.base import ModelResponse
from ..infra.settings import settings
from .cancellation import CancellationToken
from .definition import AgentDefinition
from .dispatcher import DispatchOutcome, ToolDispatcher, ToolResult
from .errors import AgentError, AgentErrorCode, make_error
from .observability import CallbackDispatcher, ExecutionMetrics
from .state import StateManager
from .tools_schema import build_tool_definitions
from .types import (
    ExecuteCallbacks,
    ExecuteFailure,
    ExecuteSuccess,
    ExecutionContext,
    ExecutionPhase,
    ExecutionStatus,
)
from .validation import format_error_detail, format_validation_error_for_prompt, validate_output

logger = logging.getLogger("agentry.executor")

ExecuteResult = ExecuteSuccess | ExecuteFailure


class _Aborted(Exception):
    """Internal: ends the execution with a terminal failure."""

    def __init__(self, errors: list[AgentError], status: ExecutionStatus = ExecutionStatus.failed) -> None:
        self.errors = errors
        self.status = status
        super().__init__(errors[0].message if errors else status.value)


@dataclass
class _LoopResult:
    """What the tool-calling sub-loop of one attempt produced."""

    response: ModelResponse | None
    outcome: DispatchOutcome | None
    candidate: Any = None
    failure: AgentError | None = None


@dataclass
class _AttemptFailure:
    """A retryable failure and the texts derived from it."""

    error: AgentError
    raw: Any
    prompt_text: str
    tool_feedback: str
    layer: Any = None


class AgentExecutor:
    """Runs one execution.  Use :func:`execute_agent` rather than this class."""

    def __init__(
        self,
        definition: AgentDefinition,
        input: Any,
        *,
        backend: Any,
        signal: CancellationToken | None = None,
        max_attempts: int | None = None,
        callbacks: ExecuteCallbacks | None = None,
    ) -> None:
        self.definition = definition
        self.input = input
        self.signal = signal
        self.max_attempts_override = max_attempts
        self.events = CallbackDispatcher(callbacks)
        self.metrics = ExecutionMetrics(definition.observability)
        self.state = StateManager(
            input,
            initial_run_state=definition.initial_run_state,
            initial_attempt_state=definition.initial_attempt_state,
        )
        self.dispatcher = ToolDispatcher(definition, self.events)
        self.history: list[dict[str, Any]] = []
        self.status = ExecutionStatus.idle
        self._complete: Callable[..., Any] = backend.complete if hasattr(backend, "complete") else backend

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> ExecuteResult:
        override = self.max_attempts_override
        if override is not None and (isinstance(override, bool) or not isinstance(override, int) or override < 1):
            error = make_error(
                AgentErrorCode.INVALID_MAX_ATTEMPTS,
                "$.max_attempts",
                provided_value=override,
                minimum_value=1,
            )
            return self._fail([error], ExecutionStatus.failed)

        max_attempts = override if override is not None else self.definition.validation.max_attempts
        try:
            return await self._run(max_attempts)
        except _Aborted as exc:
            return self._fail(exc.errors, exc.status)

    async def _run(self, max_attempts: int) -> ExecuteResult:
        definition = self.definition
        max_iterations = definition.validation.max_iterations_per_attempt
        if max_iterations is None:
            max_iterations = settings.default_max_iterations
        max_iterations = max(1, max_iterations)

        self._check_cancelled(0, ExecutionPhase.prompt_generation)
        self._transition(ExecutionStatus.prompt_generation)

        run = self._call_initialiser("initial_run_state", self.state.initial_run, 0)
        user_prompt = await self._build_prompt("user", definition.prompts.user, (self.input,), 0)
        self.history.append({"role": "user", "content": user_prompt})

        tools = [t.to_anthropic_format() for t in build_tool_definitions(definition)]
        last_failure: _AttemptFailure | None = None

        for attempt in range(1, max_attempts + 1):
            self._check_cancelled(attempt, ExecutionPhase.prompt_generation)
            self._transition(ExecutionStatus.prompt_generation)

            context = ExecutionContext(
                attempt=attempt,
                max_attempts=max_attempts,
                iteration=0,
                max_iterations=max_iterations,
            )
            self.metrics.attempts = attempt
            if attempt > 1:
                run = self.state.run
            self._call_initialiser("initial_attempt_state", lambda: self.state.begin_attempt(context, run), attempt)
            self.events.emit("on_attempt_start", context)

            self._check_cancelled(attempt, ExecutionPhase.prompt_generation)
            system_prompt = await self._build_prompt("system", definition.prompts.system, (self.input, context), attempt)

            loop = await self._iterate(system_prompt, tools, max_iterations)

            if loop.failure is None:
                self._check_cancelled(attempt, ExecutionPhase.validation)
                self._transition(ExecutionStatus.validating)
                result = await validate_output(
                    loop.candidate,
                    definition.output_schema,
                    definition.validation.custom_validators,
                    on_layer_start=lambda info: self.events.emit(
                        "on_validation_layer_start", self.state.context, info
                    ),
                    on_layer_complete=lambda outcome: self.events.emit(
                        "on_validation_layer_complete", self.state.context, outcome
                    ),
                )
                if result.ok:
                    self.events.emit("on_attempt_complete", self.state.context, True)
                    if loop.response is not None:
                        self.history.append(loop.response.to_message())
                    return await self._succeed(result.output, attempt)

                failure = self._validation_failure(result, attempt)
            else:
                failure = _AttemptFailure(
                    error=loop.failure,
                    raw=loop.failure,
                    prompt_text=loop.failure.message,
                    tool_feedback=loop.failure.message,
                )

            last_failure = failure
            current = self.state.context
            logger.debug(
                "Attempt %d/%d failed with %s",
                attempt,
                max_attempts,
                failure.error.code.value,
                extra={"agentry_data": {"attempt": attempt, "code": failure.error.code.value}},
            )
            self.events.emit("on_attempt_complete", current, False)
            self.events.emit("on_validation_failure", current, failure.raw)
            self._transition(ExecutionStatus.retrying)

            self._check_cancelled(attempt, ExecutionPhase.error_prompt)
            feedback = await self._feedback_text(failure, attempt)
            error_prompt = await self._build_prompt("error", definition.prompts.error, (feedback, current), attempt)
            self._append_feedback(loop, failure, error_prompt)

        assert last_failure is not None
        error = make_error(
            AgentErrorCode.MAX_ATTEMPTS_EXCEEDED,
            attempts=max_attempts,
            max_attempts=max_attempts,
            last_error=format_error_detail(last_failure.raw),
            last_error_code=last_failure.error.code.value,
        )
        raise _Aborted([error], ExecutionStatus.exhausted)

    # ------------------------------------------------------------------
    # Tool-calling sub-loop
    # ------------------------------------------------------------------

    async def _iterate(self, system_prompt: str, tools: list[dict[str, Any]], max_iterations: int) -> _LoopResult:
        reflection = self.definition.reflection_enabled
        candidate: Any = None
        response: ModelResponse | None = None

        for iteration in range(1, max_iterations + 1):
            context = self.state.set_iteration(iteration)
            self._check_cancelled(context.attempt, ExecutionPhase.iteration)
            self._transition(ExecutionStatus.tool_call_iteration)

            response = await self._call_model(system_prompt, tools, context)
            self._check_cancelled(context.attempt, ExecutionPhase.iteration)

            if response.stop_reason != "tool_use" or not response.tool_uses:
                failure = make_error(
                    AgentErrorCode.OUTPUT_TOOL_NOT_USED,
                    attempt=context.attempt,
                    iteration_count=iteration,
                    expected_tool=self.definition.output_tool.name,
                )
                return _LoopResult(response, None, candidate, failure)

            outcome = await self.dispatcher.dispatch(response.tool_uses, self.state.current, context, candidate=candidate)
            self.state.replace_state(outcome.state)
            candidate = outcome.candidate

            if outcome.submit_found:
                if candidate is None:
                    failure = make_error(
                        AgentErrorCode.SUBMIT_BEFORE_OUTPUT,
                        attempt=context.attempt,
                        iteration_count=iteration,
                    )
                    return _LoopResult(response, outcome, None, failure)
                return _LoopResult(response, outcome, candidate)

            if outcome.output_found and not reflection:
                return _LoopResult(response, outcome, candidate)

            if iteration == max_iterations:
                failure = make_error(
                    AgentErrorCode.MAX_ITERATIONS_EXCEEDED,
                    attempt=context.attempt,
                    iteration_count=iteration,
                    max_iterations=max_iterations,
                )
                return _LoopResult(response, outcome, candidate, failure)

            self.history.append(response.to_message())
            self.history.append({"role": "user", "content": [r.to_dict() for r in outcome.results]})

        # Unreachable: max_iterations >= 1 and every path above returns on the last iteration.
        return _LoopResult(response, None, candidate, None)

    async def _call_model(
        self, system_prompt: str, tools: list[dict[str, Any]], context: ExecutionContext
    ) -> ModelResponse:
        model = self.definition.model
        start = time.perf_counter()
        try:
            response = await self._complete(
                copy.deepcopy(self.history),
                copy.deepcopy(tools),
                model,
                system=system_prompt,
                signal=self.signal,
            )
        except Exception as exc:
            # A backend honouring the token fails the call it abandoned.
            self._check_cancelled(context.attempt, ExecutionPhase.iteration)
            self.metrics.session.record_error(exc)
            logger.debug("Backend call failed on attempt %d: %s", context.attempt, exc)
            cause = getattr(exc, "cause", None) or exc
            raise _Aborted(
                [
                    make_error(
                        AgentErrorCode.API_ERROR,
                        attempt=context.attempt,
                        provider=model.provider,
                        status_code=getattr(cause, "status_code", None),
                        message=str(exc) or type(exc).__name__,
                    )
                ]
            ) from exc

        if not isinstance(response, ModelResponse):
            raise _Aborted(
                [
                    make_error(
                        AgentErrorCode.API_ERROR,
                        attempt=context.attempt,
                        provider=model.provider,
                        message=f"backend returned {type(response).__name__}, expected ModelResponse",
                    )
                ]
            )

        elapsed_ms = (time.perf_counter() - start) * 1000
        self.metrics.session.record(response, model=model.name, elapsed_ms=elapsed_ms)
        logger.debug(
            "Model call attempt=%d iteration=%d stop_reason=%s tool_calls=%d",
            context.attempt,
            context.iteration,
            response.stop_reason,
            len(response.tool_uses),
        )
        return response

    # ------------------------------------------------------------------
    # Retry feedback
    # ------------------------------------------------------------------

    def _validation_failure(self, result: Any, attempt: int) -> _AttemptFailure:
        layer = result.layer
        detail = format_error_detail(result.error)
        prompt_text = format_validation_error_for_prompt(
            result.error,
            layer.name if layer else None,
            layer.description if layer else None,
        )
        error = make_error(
            AgentErrorCode.VALIDATION_FAILED,
            attempt=attempt,
            layer=layer.name if layer else None,
            reason=detail,
        )
        return _AttemptFailure(
            error=error,
            raw=result.error,
            prompt_text=prompt_text,
            tool_feedback=f"Validation failed: {detail}",
            layer=layer,
        )

    async def _feedback_text(self, failure: _AttemptFailure, attempt: int) -> str:
        """Text handed to the error prompt; applies ``prompts.error_formatter`` to validation failures."""
        formatter = self.definition.prompts.error_formatter
        if formatter is None or failure.error.code is not AgentErrorCode.VALIDATION_FAILED:
            return failure.prompt_text
        detail = await self._build_prompt("error_formatter", formatter, (failure.raw,), attempt)
        layer = failure.layer
        return format_validation_error_for_prompt(
            failure.raw,
            layer.name if layer else None,
            layer.description if layer else None,
            lambda _: detail,
        )

    def _append_feedback(self, loop: _LoopResult, failure: _AttemptFailure, error_prompt: str) -> None:
        """Append the failed response and one user turn answering it.

        The user turn holds a ``tool_result`` for every tool call of the
        response (unanswered calls receive the failure as an error) followed
        by the error prompt.
        """
        response = loop.response
        if response is None or not response.content:
            self._append_user_text(error_prompt)
            return

        self.history.append(response.to_message())
        answered = {r.tool_use_id: r for r in loop.outcome.results} if loop.outcome else {}
        context = self.state.context
        results: list[ToolResult] = []
        for tool_use in response.tool_uses:
            result = answered.get(tool_use.id)
            if result is None:
                result = ToolResult(tool_use_id=tool_use.id, content=failure.tool_feedback, is_error=True)
                self.events.emit("on_tool_result", context, tool_use.name, result.content)
            results.append(result)

        if results:
            content = [r.to_dict() for r in results]
            content.append({"type": "text", "text": error_prompt})
            self.history.append({"role": "user", "content": content})
        else:
            self.history.append({"role": "user", "content": error_prompt})

    def _append_user_text(self, text: str) -> None:
        last = self.history[-1] if self.history else None
        if last is None or last["role"] != "user":
            self.history.append({"role": "user", "content": text})
            return
        content = last["content"]
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        last["content"] = [*content, {"type": "text", "text": text}]

    # ------------------------------------------------------------------
    # User code
    # ------------------------------------------------------------------

    async def _build_prompt(self, prompt_type: str, fn: Callable[..., Any], args: tuple[Any, ...], attempt: int) -> str:
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            logger.debug("%s prompt failed on attempt %d: %s", prompt_type, attempt, exc)
            raise _Aborted(
                [
                    make_error(
                        AgentErrorCode.PROMPT_GENERATION_FAILED,
                        prompt_type=prompt_type,
                        reason=str(exc) or type(exc).__name__,
                        attempt=attempt,
                    )
                ]
            ) from exc
        if not isinstance(result, str):
            raise _Aborted(
                [
                    make_error(
                        AgentErrorCode.PROMPT_GENERATION_FAILED,
                        prompt_type=prompt_type,
                        reason=f"expected str, got {type(result).__name__}",
                        attempt=attempt,
                    )
                ]
            )
        return result

    def _call_initialiser(self, name: str, fn: Callable[[], Any], attempt: int) -> Any:
        try:
            return fn()
        except Exception as exc:
            raise _Aborted(
                [
                    make_error(
                        AgentErrorCode.PROMPT_GENERATION_FAILED,
                        prompt_type=name,
                        reason=str(exc) or type(exc).__name__,
                        attempt=attempt,
                    )
                ]
            ) from exc

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _check_cancelled(self, attempt: int, phase: ExecutionPhase) -> None:
        if self.signal is None or not self.signal.cancelled:
            return
        logger.debug("Cancellation observed at attempt %d during %s", attempt, phase.value)
        error = make_error(
            AgentErrorCode.EXECUTION_CANCELLED,
            attempt=attempt,
            phase=phase.value,
            reason=self.signal.reason,
        )
        raise _Aborted([error], ExecutionStatus.cancelled)

    def _transition(self, status: ExecutionStatus) -> None:
        if status is not self.status:
            logger.debug("Execution %s -> %s", self.status.value, status.value)
            self.status = status

    async def _succeed(self, output: Any, attempt: int) -> ExecuteResult:
        projection = None
        project = self.definition.project_final_state
        if project is not None:
            try:
                projection = project(self.state.snapshot())
                if inspect.isawaitable(projection):
                    projection = await projection
            except Exception as exc:
                error = make_error(AgentErrorCode.STATE_PROJECTION_FAILED, attempt=attempt, error=str(exc) or type(exc).__name__)
                return self._fail([error], ExecutionStatus.projection_failed)

        self._transition(ExecutionStatus.success)
        metadata = self.metrics.build(self.events.errors)
        self.events.emit("on_success", output, metadata)
        metadata.callback_errors = list(self.events.errors)
        logger.debug("Agent %r succeeded on attempt %d", self.definition.name, attempt)
        return ExecuteSuccess(
            output=output,
            attempts=attempt,
            metadata=metadata,
            state_projection=projection,
            history=copy.deepcopy(self.history),
        )

    def _fail(self, errors: list[AgentError], status: ExecutionStatus) -> ExecuteFailure:
        self._transition(status)
        metadata = self.metrics.build(self.events.errors)
        if status is not ExecutionStatus.cancelled:
            self.events.emit("on_failure", list(errors), metadata)
            metadata.callback_errors = list(self.events.errors)
        logger.debug(
            "Agent %r finished with %s: %s",
            self.definition.name,
            status.value,
            ", ".join(e.code.value for e in errors),
        )
        return ExecuteFailure(errors=list(errors), metadata=metadata, history=copy.deepcopy(self.history), status=status)


async def execute_agent(
    definition: AgentDefinition,
    input: Any,
    *,
    backend: Any,
    signal: CancellationToken | None = None,
    max_attempts: int | None = None,
    callbacks: ExecuteCallbacks | None = None,
) -> ExecuteResult:
    """Run *definition* on *input* until a valid output is produced or attempts run out.

    Args:
        definition: A definition returned by :func:`define_agent`.
        input: Passed to the prompt builders and state initialisers.
        backend: An :class:`~agentry.drivers.base.AsyncChatBackend` or any
            async callable with the same signature.
        signal: Cancellation token sampled at every suspension point.
        max_attempts: Overrides ``definition.validation.max_attempts``.
        callbacks: Observability callbacks.

    Returns:
        :class:`ExecuteSuccess` or :class:`ExecuteFailure`.  Nothing is
        raised except ``asyncio.CancelledError`` from the event loop.
    """
    executor = AgentExecutor(
        definition,
        input,
        backend=backend,
        signal=signal,
        max_attempts=max_attempts,
        callbacks=callbacks,
    )
    return await executor.run()
