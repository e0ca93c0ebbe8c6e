"""Tests for the scripted backend and response builders."""

from __future__ import annotations

import pytest

from agentry import BackendError, ModelConfig
from agentry.drivers import (
    ModelResponse,
    ScriptedBackend,
    TextBlock,
    TokenUsage,
    ToolUseBlock,
    text_response,
    tool_calls,
    tool_response,
)

MODEL = ModelConfig(name="claude-test")


class TestResponseBuilders:
    def test_text_response(self):
        response = text_response("hello", input_tokens=3, output_tokens=4, cost=0.5)
        assert response.content == (TextBlock("hello"),)
        assert response.stop_reason == "end_turn"
        assert response.usage == TokenUsage(3, 4)
        assert response.cost == 0.5
        assert response.text == "hello"
        assert response.tool_uses == []

    def test_tool_response(self):
        response = tool_response("lookup", {"key": "a"}, id="call_1", text="Checking")
        assert response.stop_reason == "tool_use"
        assert response.text == "Checking"
        assert response.tool_uses == [ToolUseBlock("call_1", "lookup", {"key": "a"})]

    def test_generated_ids_are_unique(self):
        response = tool_calls([("a", {}), ("b", {}), ("c", {}, "fixed")])
        ids = [block.id for block in response.tool_uses]
        assert ids[2] == "fixed"
        assert ids[0].startswith("toolu_")
        assert len(set(ids)) == 3

    def test_to_message(self):
        response = tool_response("lookup", {"key": "a"}, id="call_1", text="Checking")
        assert response.to_message() == {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Checking"},
                {"type": "tool_use", "id": "call_1", "name": "lookup", "input": {"key": "a"}},
            ],
        }

    def test_content_is_normalised_to_tuple(self):
        response = ModelResponse(content=[TextBlock("a")])
        assert response.content == (TextBlock("a"),)

    def test_token_usage_addition(self):
        total = TokenUsage(1, 2) + TokenUsage(10, 20)
        assert total == TokenUsage(11, 22)
        assert total.total_tokens == 33


class TestScriptedBackend:
    @pytest.mark.asyncio
    async def test_replays_in_order(self):
        first, second = text_response("one"), text_response("two")
        backend = ScriptedBackend([first, second])

        assert await backend.complete([], [], MODEL) is first
        assert await backend.complete([], [], MODEL) is second
        assert backend.call_count == 2
        assert backend.remaining == 0

    @pytest.mark.asyncio
    async def test_exhaustion_raises(self):
        backend = ScriptedBackend([text_response("one")])
        await backend.complete([], [], MODEL)
        with pytest.raises(BackendError, match="exhausted after 1 response"):
            await backend.complete([], [], MODEL)

    @pytest.mark.asyncio
    async def test_repeat_last(self):
        backend = ScriptedBackend([text_response("one"), text_response("again")], repeat_last=True)
        texts = [(await backend.complete([], [], MODEL)).text for _ in range(4)]
        assert texts == ["one", "again", "again", "again"]

    @pytest.mark.asyncio
    async def test_exception_entries_are_raised(self):
        backend = ScriptedBackend([ConnectionError("reset")])
        with pytest.raises(ConnectionError):
            await backend.complete([], [], MODEL)

    @pytest.mark.asyncio
    async def test_callable_entries(self):
        def echo(messages, tools, model, system):
            return text_response(f"{model.name}:{system}:{len(messages)}")

        backend = ScriptedBackend([echo])
        response = await backend.complete([{"role": "user", "content": "x"}], [], MODEL, system="sys")
        assert response.text == "claude-test:sys:1"

    @pytest.mark.asyncio
    async def test_invalid_entry(self):
        backend = ScriptedBackend([lambda *args: {"not": "a response"}])
        with pytest.raises(BackendError, match="expected ModelResponse"):
            await backend.complete([], [], MODEL)

    @pytest.mark.asyncio
    async def test_calls_are_recorded_as_copies(self):
        backend = ScriptedBackend([text_response("ok")])
        messages = [{"role": "user", "content": "hi"}]
        tools = [{"name": "lookup", "description": "d", "input_schema": {}}]
        await backend.complete(messages, tools, MODEL, system="sys")
        messages[0]["content"] = "changed"

        call = backend.calls[0]
        assert call.messages == [{"role": "user", "content": "hi"}]
        assert call.tool_names == ["lookup"]
        assert call.system == "sys"
        assert call.model is MODEL

    @pytest.mark.asyncio
    async def test_extend(self):
        backend = ScriptedBackend()
        backend.extend([text_response("late")])
        assert backend.remaining == 1
        assert (await backend.complete([], [], MODEL)).text == "late"

    @pytest.mark.asyncio
    async def test_backend_is_callable(self):
        backend = ScriptedBackend([text_response("via call")])
        response = await backend([], [], MODEL)
        assert response.text == "via call"
