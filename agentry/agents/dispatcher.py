"""Reducer-style tool dispatch.

:class:`ToolDispatcher` handles the tool calls of one model response in the
order the model emitted them, threading state from one helper call to the
next.  Helper handlers are pure reducers: they receive a private snapshot of
``(context, run, attempt)`` and return a :class:`ToolReducerResult` with the
new state and the result to report to the model.  A handler that fails
(raising :class:`ModelRetry` or any other exception) leaves state exactly as
it was before the call.
"""

from __future__ import annotations

import copy
import inspect
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..drivers.base import ToolUseBlock
from .definition import AgentDefinition
from .observability import CallbackDispatcher
from .tools_schema import SUBMIT_TOOL_NAME
from .types import ExecutionContext, ExecutionState, ModelRetry, ToolReducerResult
from .validation import format_pydantic_error

logger = logging.getLogger("agentry.dispatcher")


@dataclass(frozen=True)
class ToolResult:
    """Result reported back to the model for one tool call."""

    tool_use_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


@dataclass
class DispatchOutcome:
    """Everything the executor needs after one round of tool calls.

    Attributes:
        state: State after every successful helper call, in order.
        results: One result per answered tool call.  Terminal calls
            (``submit``, and the output tool outside reflection mode) are
            left unanswered.
        output_found: The output tool was called in this round.
        submit_found: The ``submit`` tool was called in this round.
        candidate: The most recent output tool input seen in this attempt.
    """

    state: ExecutionState[Any, Any]
    results: list[ToolResult] = field(default_factory=list)
    output_found: bool = False
    submit_found: bool = False
    candidate: Any = None


def encode_tool_result(value: Any) -> str:
    """Strings are sent verbatim; everything else is JSON-encoded."""
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, default=str)


def _snapshot(state: ExecutionState[Any, Any]) -> ExecutionState[Any, Any]:
    return ExecutionState(context=state.context, run=copy.deepcopy(state.run), attempt=copy.deepcopy(state.attempt))


class ToolDispatcher:
    """Routes tool calls to the output tool, ``submit``, or helper handlers.

    Args:
        definition: The agent whose tools are dispatched.
        callbacks: Receives ``on_tool_call`` / ``on_tool_result`` events.
    """

    def __init__(self, definition: AgentDefinition, callbacks: CallbackDispatcher | None = None) -> None:
        self.definition = definition
        self.callbacks = callbacks or CallbackDispatcher()

    @property
    def reflection_enabled(self) -> bool:
        return self.definition.reflection_enabled

    async def dispatch(
        self,
        tool_uses: Sequence[ToolUseBlock],
        state: ExecutionState[Any, Any],
        context: ExecutionContext,
        *,
        candidate: Any = None,
    ) -> DispatchOutcome:
        """Handle *tool_uses* in order.

        Args:
            tool_uses: Tool calls from one model response.
            state: State before the first call.  Not modified.
            context: Context passed to handlers and callbacks.
            candidate: Output tool input carried over from earlier rounds of
                the same attempt (reflection mode).
        """
        outcome = DispatchOutcome(
            state=_snapshot(ExecutionState(context=context, run=state.run, attempt=state.attempt)),
            candidate=candidate,
        )

        for tool_use in tool_uses:
            self.callbacks.emit("on_tool_call", context, tool_use.name, copy.deepcopy(tool_use.input))

            if self.reflection_enabled and tool_use.name == SUBMIT_TOOL_NAME:
                outcome.submit_found = True
                self.callbacks.emit("on_tool_result", context, tool_use.name, "")
                continue

            if tool_use.name == self.definition.output_tool.name:
                outcome.output_found = True
                outcome.candidate = copy.deepcopy(tool_use.input)
                if self.reflection_enabled:
                    self._record(outcome, tool_use, context, *await self._reflect(outcome.candidate))
                continue

            helper = self.definition.helpers.get(tool_use.name)
            if helper is None:
                logger.debug("Model called unknown tool %r", tool_use.name)
                self._record(outcome, tool_use, context, f"Unknown tool: {tool_use.name}", True)
                continue

            content, is_error = await self._run_helper(helper, tool_use, outcome)
            self._record(outcome, tool_use, context, content, is_error)

        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(
        self,
        outcome: DispatchOutcome,
        tool_use: ToolUseBlock,
        context: ExecutionContext,
        content: str,
        is_error: bool,
    ) -> None:
        outcome.results.append(ToolResult(tool_use_id=tool_use.id, content=content, is_error=is_error))
        self.callbacks.emit("on_tool_result", context, tool_use.name, content)

    async def _reflect(self, candidate: Any) -> tuple[str, bool]:
        handler = self.definition.output_tool.reflection_handler
        try:
            preview = handler(copy.deepcopy(candidate))  # type: ignore[misc]
            if inspect.isawaitable(preview):
                preview = await preview
            return encode_tool_result(preview), False
        except ModelRetry as exc:
            return exc.message, True
        except Exception as exc:
            logger.debug("Reflection handler raised %s: %s", type(exc).__name__, exc)
            return f"Error: {exc}", True

    async def _run_helper(self, helper: Any, tool_use: ToolUseBlock, outcome: DispatchOutcome) -> tuple[str, bool]:
        try:
            parsed = helper.input_schema.model_validate(tool_use.input)
        except PydanticValidationError as exc:
            return f"Invalid input for tool '{tool_use.name}': {format_pydantic_error(exc)}", True

        try:
            result = helper.handler(_snapshot(outcome.state), parsed)
            if inspect.isawaitable(result):
                result = await result
        except ModelRetry as exc:
            return exc.message, True
        except Exception as exc:
            logger.debug("Helper %r raised %s: %s", tool_use.name, type(exc).__name__, exc)
            return f"Error: {exc}", True

        if not isinstance(result, ToolReducerResult):
            return (
                f"Error: tool '{tool_use.name}' returned {type(result).__name__}, expected ToolReducerResult",
                True,
            )

        try:
            content = encode_tool_result(result.tool_result)
            new_state = ExecutionState(
                context=outcome.state.context,
                run=copy.deepcopy(result.new_state.run),
                attempt=copy.deepcopy(result.new_state.attempt),
            )
        except Exception as exc:
            return f"Error: {exc}", True

        outcome.state = new_state
        return content, False
