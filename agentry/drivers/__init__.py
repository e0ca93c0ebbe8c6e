"""Model backends for the agent execution engine."""

from .base import AsyncChatBackend, ContentBlock, ModelResponse, TextBlock, TokenUsage, ToolUseBlock
from .anthropic_backend import AnthropicBackend
from .scripted import ScriptedBackend, ScriptedCall, text_response, tool_calls, tool_response

__all__ = [
    "AnthropicBackend",
    "AsyncChatBackend",
    "ContentBlock",
    "ModelResponse",
    "ScriptedBackend",
    "ScriptedCall",
    "TextBlock",
    "TokenUsage",
    "ToolUseBlock",
    "text_response",
    "tool_calls",
    "tool_response",
]
