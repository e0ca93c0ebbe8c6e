"""Backend interface for the agent execution engine.

The engine talks to a language model through a single async call::

    response = await backend.complete(messages, tools, model, system=..., signal=...)

``messages`` is the conversation history in Anthropic message format
(``{"role": ..., "content": ...}``), ``tools`` a list of tool definitions in
Anthropic ``tools`` array format, and ``model`` the agent's
:class:`~agentry.agents.definition.ModelConfig`.  Any object with a matching
async ``complete`` method, or any async callable with the same signature, is
accepted as a backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from ..agents.cancellation import CancellationToken
    from ..agents.definition import ModelConfig


# ------------------------------------------------------------------
# Content blocks
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TextBlock:
    """Free-form text emitted by the model."""

    text: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool call requested by the model.

    Attributes:
        id: Backend-assigned call identifier, echoed back in the tool result.
        name: Name of the tool being called.
        input: Raw JSON payload supplied by the model.
    """

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="tool_use", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


ContentBlock = Union[TextBlock, ToolUseBlock]


# ------------------------------------------------------------------
# Usage and responses
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TokenUsage:
    """Input/output token counts for one or more model calls."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ModelResponse:
    """One model turn.

    Attributes:
        content: Text and tool-use blocks in the order the model emitted them.
        usage: Tokens consumed by this call.
        stop_reason: Why the model stopped (``"tool_use"``, ``"end_turn"``,
            ``"max_tokens"``, ...).
        cost: USD cost of this call, ``0.0`` when the backend cannot price it.
    """

    content: tuple[ContentBlock, ...] = ()
    usage: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: str = "end_turn"
    cost: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def to_message(self) -> dict[str, Any]:
        """Render this response as an assistant history message."""
        return {"role": "assistant", "content": [b.to_dict() for b in self.content]}


class AsyncChatBackend:
    """Async backend base.  Implement ``async complete(...)`` returning a
    :class:`ModelResponse`.

    Backends should honour *signal* where the transport allows it, but the
    engine checks the token itself before and after every call.  Errors are
    reported by raising; the engine turns any exception into an
    ``API_ERROR`` failure.
    """

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        model: ModelConfig,
        *,
        system: str | None = None,
        signal: CancellationToken | None = None,
    ) -> ModelResponse:
        raise NotImplementedError

    async def __call__(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        model: ModelConfig,
        *,
        system: str | None = None,
        signal: CancellationToken | None = None,
    ) -> ModelResponse:
        return await self.complete(messages, tools, model, system=system, signal=signal)
