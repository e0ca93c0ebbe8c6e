"""Scripted backend that replays canned responses.

Used by the test-suite and for offline development.  Each call to
:meth:`ScriptedBackend.complete` pops the next scripted entry:

* a :class:`~agentry.drivers.base.ModelResponse` is returned as-is;
* an exception instance is raised;
* a callable is invoked with ``(messages, tools, model, system)`` and its
  return value handled by the same rules.

Example::

    backend = ScriptedBackend([
        tool_response("parse_tool", {"raw": "a,b"}),
        tool_response("emit_output", {"value": 3}),
    ])
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Union

from ..exceptions import BackendError
from .base import AsyncChatBackend, ModelResponse, TextBlock, TokenUsage, ToolUseBlock

logger = logging.getLogger("agentry.drivers.scripted")

_ids = itertools.count(1)


def _next_id() -> str:
    return f"toolu_{next(_ids):06d}"


def text_response(text: str, *, input_tokens: int = 10, output_tokens: int = 5, cost: float = 0.0) -> ModelResponse:
    """A plain text turn with ``stop_reason="end_turn"``."""
    return ModelResponse(
        content=(TextBlock(text),),
        usage=TokenUsage(input_tokens, output_tokens),
        stop_reason="end_turn",
        cost=cost,
    )


def tool_response(
    name: str,
    tool_input: dict[str, Any] | None = None,
    *,
    id: str | None = None,
    text: str | None = None,
    input_tokens: int = 10,
    output_tokens: int = 5,
    cost: float = 0.0,
) -> ModelResponse:
    """A turn calling a single tool."""
    return tool_calls([(name, tool_input or {}, id)], text=text, input_tokens=input_tokens,
                      output_tokens=output_tokens, cost=cost)


def tool_calls(
    calls: Iterable[tuple[str, dict[str, Any]] | tuple[str, dict[str, Any], str | None]],
    *,
    text: str | None = None,
    input_tokens: int = 10,
    output_tokens: int = 5,
    cost: float = 0.0,
) -> ModelResponse:
    """A turn calling several tools in order.

    Each entry is ``(name, input)`` or ``(name, input, id)``.
    """
    blocks: list[Any] = []
    if text:
        blocks.append(TextBlock(text))
    for call in calls:
        name, payload = call[0], call[1]
        call_id = call[2] if len(call) > 2 and call[2] else _next_id()
        blocks.append(ToolUseBlock(id=call_id, name=name, input=dict(payload)))
    return ModelResponse(
        content=tuple(blocks),
        usage=TokenUsage(input_tokens, output_tokens),
        stop_reason="tool_use",
        cost=cost,
    )


@dataclass(frozen=True)
class ScriptedCall:
    """One recorded backend invocation."""

    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]]
    model: Any
    system: str | None

    @property
    def tool_names(self) -> list[str]:
        return [t["name"] for t in self.tools]


ScriptEntry = Union[ModelResponse, BaseException, Callable[..., Any]]


class ScriptedBackend(AsyncChatBackend):
    """Backend that replays a fixed script and records every call.

    Args:
        script: Responses, exceptions, or callables, consumed in order.
        repeat_last: When ``True`` the final entry is replayed forever
            instead of raising once the script is exhausted.
    """

    def __init__(self, script: Iterable[ScriptEntry] = (), *, repeat_last: bool = False) -> None:
        self._script: list[ScriptEntry] = list(script)
        self._position = 0
        self.repeat_last = repeat_last
        self.calls: list[ScriptedCall] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def remaining(self) -> int:
        return len(self._script) - self._position

    def extend(self, entries: Iterable[ScriptEntry]) -> None:
        self._script.extend(entries)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        model: Any,
        *,
        system: str | None = None,
        signal: Any = None,
    ) -> ModelResponse:
        self.calls.append(
            ScriptedCall(
                messages=copy.deepcopy(messages),
                tools=copy.deepcopy(tools),
                model=model,
                system=system,
            )
        )

        if self._position >= len(self._script):
            if not (self.repeat_last and self._script):
                raise BackendError(f"ScriptedBackend exhausted after {len(self._script)} response(s)")
            entry = self._script[-1]
        else:
            entry = self._script[self._position]
            self._position += 1

        logger.debug("[scripted] call=%d entry=%s", len(self.calls), type(entry).__name__)

        if callable(entry) and not isinstance(entry, (ModelResponse, BaseException)):
            entry = entry(messages, tools, model, system)
        if isinstance(entry, BaseException):
            raise entry
        if not isinstance(entry, ModelResponse):
            raise BackendError(f"Scripted entry produced {type(entry).__name__}, expected ModelResponse")
        return entry
