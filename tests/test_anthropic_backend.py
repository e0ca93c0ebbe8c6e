"""Tests for the Anthropic backend (no network: the SDK client is faked)."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import anthropic
import pytest
from support import OUTPUT_TOOL, build_agent

from agentry import (
    AgentErrorCode,
    BackendError,
    CancellationToken,
    ConfigurationError,
    ExecutionStatus,
    ModelConfig,
    define_agent,
    execute_agent,
)
from agentry.drivers import AnthropicBackend, TextBlock, TokenUsage, ToolUseBlock


def _message(*blocks, stop_reason="tool_use", input_tokens=1000, output_tokens=200):
    return SimpleNamespace(
        content=list(blocks),
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
        stop_reason=stop_reason,
    )


def _text(text):
    return SimpleNamespace(type="text", text=text)


def _tool_use(id, name, input):
    return SimpleNamespace(type="tool_use", id=id, name=name, input=input)


class FakeClient:
    def __init__(self, *responses):
        self.requests = []
        self._responses = list(responses)
        self.messages = SimpleNamespace(create=self._create)

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class _FakeAPIError(anthropic.APIError):
    def __init__(self, message):
        Exception.__init__(self, message)
        self.message = message
        self.status_code = 529


class TestBuildRequest:
    def test_required_fields(self):
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient())
        model = ModelConfig(name="claude-sonnet-4-5", temperature=0.2, max_tokens=512)
        request = backend.build_request([{"role": "user", "content": "hi"}], [], model)

        assert request == {
            "model": "claude-sonnet-4-5",
            "max_tokens": 512,
            "temperature": 0.2,
            "messages": [{"role": "user", "content": "hi"}],
        }

    def test_tools_system_and_options(self):
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient())
        model = ModelConfig(name="claude-sonnet-4-5", options={"top_k": 5, "temperature": 0.9})
        tools = [{"name": "t", "description": "d", "input_schema": {"type": "object"}}]
        request = backend.build_request([], tools, model, system="Be brief.")

        assert request["tools"] == tools
        assert request["system"] == "Be brief."
        assert request["top_k"] == 5
        assert request["temperature"] == 0.9

    def test_frozen_options_are_sent_as_plain_containers(self):
        base = build_agent()
        options = {"metadata": {"user_id": "u1"}, "stop_sequences": ["END"]}
        agent = define_agent(
            name=base.name,
            description=base.description,
            model=ModelConfig(name="claude-sonnet-4-5", options=options),
            prompts=base.prompts,
            output_tool=base.output_tool,
            validation=base.validation,
        ).unwrap()
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient())
        request = backend.build_request([], [], agent.model)

        assert request["metadata"] == {"user_id": "u1"}
        assert type(request["metadata"]) is dict
        assert request["stop_sequences"] == ["END"]


class TestParseResponse:
    def test_blocks_and_usage(self):
        message = _message(
            _text("Let me check."),
            _tool_use("toolu_1", "lookup", {"key": "a"}),
            SimpleNamespace(type="thinking"),
            input_tokens=12,
            output_tokens=3,
        )
        content, usage, stop_reason = AnthropicBackend.parse_response(message)

        assert content == (TextBlock("Let me check."), ToolUseBlock("toolu_1", "lookup", {"key": "a"}))
        assert usage == TokenUsage(12, 3)
        assert stop_reason == "tool_use"

    def test_missing_stop_reason(self):
        _, _, stop_reason = AnthropicBackend.parse_response(_message(_text("hi"), stop_reason=None))
        assert stop_reason == "end_turn"


class TestCost:
    def test_known_model(self):
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient())
        assert backend._calculate_cost("claude-sonnet-4-5", 1000, 1000) == pytest.approx(0.018)

    def test_dated_snapshot_uses_alias_pricing(self):
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient())
        assert backend._calculate_cost("claude-haiku-4-5-20251001", 2000, 0) == pytest.approx(0.002)

    def test_unknown_model_is_free(self):
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient())
        assert backend._calculate_cost("my-local-model", 1000, 1000) == 0.0


class TestComplete:
    @pytest.mark.asyncio
    async def test_returns_model_response(self):
        client = FakeClient(_message(_tool_use("toolu_9", OUTPUT_TOOL, {"value": 1})))
        backend = AnthropicBackend(api_key="sk-test", client=client)
        response = await backend.complete(
            [{"role": "user", "content": "go"}], [], ModelConfig(name="claude-sonnet-4-5"), system="sys"
        )

        assert response.stop_reason == "tool_use"
        assert response.tool_uses[0].name == OUTPUT_TOOL
        assert response.usage == TokenUsage(1000, 200)
        assert response.cost == pytest.approx(0.006)
        assert client.requests[0]["system"] == "sys"

    @pytest.mark.asyncio
    async def test_api_errors_are_wrapped(self):
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient(_FakeAPIError("overloaded")))
        with pytest.raises(BackendError) as exc_info:
            await backend.complete([], [], ModelConfig(name="claude-sonnet-4-5"))

        assert str(exc_info.value) == "Anthropic API error: overloaded"
        assert exc_info.value.cause.status_code == 529

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        backend = AnthropicBackend(api_key="sk-test", client=FakeClient(RuntimeError("bug")))
        with pytest.raises(RuntimeError):
            await backend.complete([], [], ModelConfig(name="claude-sonnet-4-5"))

    @pytest.mark.asyncio
    async def test_end_to_end_with_agent(self):
        client = FakeClient(
            _message(_tool_use("toolu_1", OUTPUT_TOOL, {"value": 9, "label": "nine"})),
        )
        agent = build_agent()
        result = await execute_agent(agent, "doc", backend=AnthropicBackend(api_key="sk-test", client=client))

        assert result.ok
        assert result.output.value == 9
        request = client.requests[0]
        assert request["model"] == "claude-test"
        assert request["system"] == "system prompt for attempt 1"
        assert request["tools"][0]["name"] == OUTPUT_TOOL

    @pytest.mark.asyncio
    async def test_api_error_status_reaches_agent_error(self):
        client = FakeClient(_FakeAPIError("overloaded"))
        result = await execute_agent(
            build_agent(), "doc", backend=AnthropicBackend(api_key="sk-test", client=client)
        )

        assert result.error.context["status_code"] == 529
        assert result.error.context["provider"] == "anthropic"


class HangingClient:
    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False
        self.messages = SimpleNamespace(create=self._create)

    async def _create(self, **kwargs):
        self.started.set()
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class TestCancellation:
    @pytest.mark.asyncio
    async def test_in_flight_request_is_abandoned(self):
        client = HangingClient()
        backend = AnthropicBackend(api_key="sk-test", client=client)
        token = CancellationToken()
        task = asyncio.ensure_future(
            backend.complete([], [], ModelConfig(name="claude-sonnet-4-5"), signal=token)
        )
        await client.started.wait()
        token.cancel("user left")

        with pytest.raises(BackendError, match="Request cancelled: user left"):
            await asyncio.wait_for(task, timeout=1)
        await asyncio.sleep(0)
        assert client.cancelled

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_skips_the_request(self):
        client = FakeClient(_message(_text("unused")))
        backend = AnthropicBackend(api_key="sk-test", client=client)
        with pytest.raises(BackendError, match="Request cancelled"):
            await backend.complete(
                [], [], ModelConfig(name="claude-sonnet-4-5"), signal=CancellationToken.cancelled_token()
            )
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_active_token_does_not_interfere(self):
        client = FakeClient(_message(_text("done"), stop_reason="end_turn"))
        backend = AnthropicBackend(api_key="sk-test", client=client)
        response = await backend.complete(
            [], [], ModelConfig(name="claude-sonnet-4-5"), signal=CancellationToken()
        )
        assert response.text == "done"

    @pytest.mark.asyncio
    async def test_agent_reports_cancellation_not_api_error(self):
        client = HangingClient()
        token = CancellationToken()
        task = asyncio.ensure_future(
            execute_agent(build_agent(), "doc", backend=AnthropicBackend(api_key="sk-test", client=client), signal=token)
        )
        await client.started.wait()
        token.cancel("shutdown")
        result = await asyncio.wait_for(task, timeout=1)

        assert result.status is ExecutionStatus.cancelled
        assert result.error.code is AgentErrorCode.EXECUTION_CANCELLED
        assert result.error.context["phase"] == "iteration"
        assert result.error.context["attempt"] == 1


class TestClientConstruction:
    def test_settings_defaults(self, monkeypatch):
        from agentry.infra.settings import settings

        monkeypatch.setattr(settings, "anthropic_api_key", "sk-from-settings")
        monkeypatch.setattr(settings, "request_timeout", 5.0)
        backend = AnthropicBackend()
        assert backend.api_key == "sk-from-settings"
        assert backend.timeout == 5.0
        assert backend.max_retries == 0

    def test_builds_async_client(self):
        backend = AnthropicBackend(api_key="sk-test", base_url="https://example.invalid", timeout=3.0)
        client = backend.client
        assert isinstance(client, anthropic.AsyncAnthropic)
        assert backend.client is client

    def test_missing_api_key_is_a_configuration_error(self, monkeypatch):
        from agentry.infra.settings import settings

        monkeypatch.setattr(settings, "anthropic_api_key", None)
        backend = AnthropicBackend()
        with pytest.raises(ConfigurationError, match="API key is not configured"):
            backend.client

    @pytest.mark.asyncio
    async def test_missing_api_key_reaches_agent_as_api_error(self, monkeypatch):
        from agentry.infra.settings import settings

        monkeypatch.setattr(settings, "anthropic_api_key", None)
        result = await execute_agent(build_agent(), "doc", backend=AnthropicBackend())

        assert result.error.code is AgentErrorCode.API_ERROR
        assert "API key is not configured" in result.error.context["message"]
