"""Anthropic backend. Requires the ``anthropic`` package."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

try:
    import anthropic
except Exception:
    anthropic = None

from ..exceptions import BackendError, ConfigurationError
from ..infra.settings import settings
from .base import AsyncChatBackend, ModelResponse, TextBlock, TokenUsage, ToolUseBlock

if TYPE_CHECKING:
    from ..agents.cancellation import CancellationToken
    from ..agents.definition import ModelConfig

logger = logging.getLogger("agentry.drivers.anthropic")


def _plain(value: Any) -> Any:
    """Convert frozen option containers back to JSON-serialisable dicts and lists."""
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, frozenset, set)):
        return [_plain(item) for item in value]
    return value


class AnthropicBackend(AsyncChatBackend):
    """Maps engine calls onto ``AsyncAnthropic.messages.create``.

    The adapter performs no retries of its own (``max_retries=0`` on the SDK
    client unless overridden); failed calls raise :class:`BackendError`.

    Args:
        api_key: Anthropic API key.  Defaults to ``settings.anthropic_api_key``.
        base_url: Alternative API endpoint.
        timeout: Per-request timeout in seconds.
        max_retries: Passed to the SDK client.
        client: Pre-built ``AsyncAnthropic``-compatible client; skips
            client construction entirely.
    """

    # Per-1K-token USD pricing.
    MODEL_PRICING: dict[str, dict[str, float]] = {
        "claude-opus-4-1": {"prompt": 0.015, "completion": 0.075},
        "claude-opus-4-0": {"prompt": 0.015, "completion": 0.075},
        "claude-sonnet-4-5": {"prompt": 0.003, "completion": 0.015},
        "claude-sonnet-4-0": {"prompt": 0.003, "completion": 0.015},
        "claude-3-7-sonnet-latest": {"prompt": 0.003, "completion": 0.015},
        "claude-haiku-4-5": {"prompt": 0.001, "completion": 0.005},
        "claude-3-5-haiku-latest": {"prompt": 0.0008, "completion": 0.004},
    }

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int = 0,
        client: Any = None,
    ) -> None:
        self.api_key = api_key or settings.anthropic_api_key
        self.base_url = base_url or settings.anthropic_base_url
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.max_retries = max_retries
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if anthropic is None:
                raise BackendError("anthropic package not installed")
            if not self.api_key:
                raise ConfigurationError(
                    "Anthropic API key is not configured; set AGENTRY_ANTHROPIC_API_KEY or ANTHROPIC_API_KEY"
                )
            kwargs: dict[str, Any] = {"api_key": self.api_key, "timeout": self.timeout, "max_retries": self.max_retries}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    def _calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        pricing = self.MODEL_PRICING.get(model)
        if pricing is None:
            # Dated snapshots share their alias's pricing.
            pricing = next((p for name, p in self.MODEL_PRICING.items() if model.startswith(name)), None)
        if pricing is None:
            return 0.0
        cost = (input_tokens / 1000) * pricing["prompt"] + (output_tokens / 1000) * pricing["completion"]
        return round(cost, 6)

    def build_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        model: ModelConfig,
        *,
        system: str | None = None,
    ) -> dict[str, Any]:
        """Return the keyword arguments passed to ``messages.create``."""
        request: dict[str, Any] = {
            "model": model.name,
            "max_tokens": model.max_tokens,
            "temperature": model.temperature,
            "messages": messages,
        }
        if tools:
            request["tools"] = tools
        if system:
            request["system"] = system
        request.update(_plain(model.options))
        return request

    @staticmethod
    def parse_response(resp: Any) -> tuple[tuple[Any, ...], TokenUsage, str]:
        """Convert an SDK ``Message`` into engine content blocks and usage."""
        blocks: list[Any] = []
        for block in resp.content:
            if block.type == "text":
                blocks.append(TextBlock(block.text))
            elif block.type == "tool_use":
                blocks.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))
            else:
                logger.debug("Ignoring content block of type %s", block.type)
        usage = TokenUsage(
            input_tokens=getattr(resp.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(resp.usage, "output_tokens", 0) or 0,
        )
        return tuple(blocks), usage, resp.stop_reason or "end_turn"

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        model: ModelConfig,
        *,
        system: str | None = None,
        signal: CancellationToken | None = None,
    ) -> ModelResponse:
        """Send one request.

        When *signal* is cancelled while the request is in flight the request
        task is cancelled and :class:`BackendError` is raised.
        """
        request = self.build_request(messages, tools, model, system=system)
        start = time.perf_counter()
        try:
            resp = await self._send(request, signal)
        except BackendError:
            raise
        except Exception as exc:
            if anthropic is not None and isinstance(exc, anthropic.APIError):
                raise BackendError(f"Anthropic API error: {exc}", cause=exc) from exc
            raise

        content, usage, stop_reason = self.parse_response(resp)
        cost = self._calculate_cost(model.name, usage.input_tokens, usage.output_tokens)
        logger.debug(
            "[anthropic] model=%s stop_reason=%s tokens=%d cost=%.6f elapsed_ms=%.0f",
            model.name,
            stop_reason,
            usage.total_tokens,
            cost,
            (time.perf_counter() - start) * 1000,
        )
        return ModelResponse(content=content, usage=usage, stop_reason=stop_reason, cost=cost)

    async def _send(self, request: dict[str, Any], signal: CancellationToken | None) -> Any:
        if signal is None:
            return await self.client.messages.create(**request)
        if signal.cancelled:
            raise BackendError(f"Request cancelled: {signal.reason or 'cancelled'}")

        call = asyncio.ensure_future(self.client.messages.create(**request))
        waiter = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            waiter.cancel()
            raise
        waiter.cancel()
        if call not in done:
            call.cancel()
            logger.debug("[anthropic] request to %s cancelled in flight", request.get("model"))
            raise BackendError(f"Request cancelled: {signal.reason or 'cancelled'}")
        return call.result()
