"""Tests for execution callbacks and callback error capture."""

from __future__ import annotations

import logging

import pytest
from support import OUTPUT_TOOL, answer, increment_tool, min_label_length

from agentry import (
    AgentErrorCode,
    CallbackDispatcher,
    ExecuteCallbacks,
    LayerKind,
    execute_agent,
)
from agentry.drivers import ScriptedBackend, text_response, tool_response


class TestEventOrder:
    @pytest.mark.asyncio
    async def test_success_with_helper(self, make_agent, events):
        backend = ScriptedBackend([tool_response("increment"), answer(1)])
        agent = make_agent(helpers=[increment_tool()])
        await execute_agent(agent, "doc", backend=backend, callbacks=events.callbacks())

        assert events.events == [
            "attempt_start:1",
            "tool_call:increment",
            "tool_result:increment",
            "tool_call:emit_answer",
            "layer_start:output_schema",
            "layer_complete:output_schema:True",
            "attempt_complete:1:True",
            "success",
        ]

    @pytest.mark.asyncio
    async def test_retry_after_custom_layer_failure(self, make_agent, events):
        backend = ScriptedBackend([answer(1, "ab"), answer(1, "abc")])
        agent = make_agent(validators=[min_label_length(3)])
        await execute_agent(agent, "doc", backend=backend, callbacks=events.callbacks())

        assert events.events == [
            "attempt_start:1",
            "tool_call:emit_answer",
            "layer_start:output_schema",
            "layer_complete:output_schema:True",
            "layer_start:label-length",
            "layer_complete:label-length:False",
            "attempt_complete:1:False",
            "validation_failure:1",
            "tool_result:emit_answer",
            "attempt_start:2",
            "tool_call:emit_answer",
            "layer_start:output_schema",
            "layer_complete:output_schema:True",
            "layer_start:label-length",
            "layer_complete:label-length:True",
            "attempt_complete:2:True",
            "success",
        ]
        assert events.tool_results == [
            ("emit_answer", "Validation failed: label must be at least 3 characters, got 2"),
        ]

    @pytest.mark.asyncio
    async def test_layer_outcomes(self, make_agent, events):
        backend = ScriptedBackend([answer(1, "ab"), answer(1, "abc")])
        agent = make_agent(validators=[min_label_length(3)])
        await execute_agent(agent, "doc", backend=backend, callbacks=events.callbacks())

        schema, failed = events.layer_outcomes[:2]
        assert schema.kind is LayerKind.schema
        assert schema.success and schema.error is None
        assert failed.kind is LayerKind.custom
        assert failed.description == "Labels must have at least 3 characters"
        assert isinstance(failed.error, ValueError)

    @pytest.mark.asyncio
    async def test_validation_failure_payloads(self, make_agent, events):
        backend = ScriptedBackend([text_response("no tool"), answer(1, "a"), answer(1, "abc")])
        agent = make_agent(validators=[min_label_length(3)])
        await execute_agent(agent, "doc", backend=backend, callbacks=events.callbacks())

        protocol, layer = events.validation_failures
        assert protocol.code is AgentErrorCode.OUTPUT_TOOL_NOT_USED
        assert isinstance(layer, ValueError)

    @pytest.mark.asyncio
    async def test_contexts_carry_attempt_numbers(self, make_agent, events):
        backend = ScriptedBackend([answer("x"), answer(1)])
        await execute_agent(make_agent(max_attempts=4), "doc", backend=backend, callbacks=events.callbacks())

        assert [(c.attempt, c.max_attempts, c.iteration) for c in events.contexts] == [(1, 4, 0), (2, 4, 0)]

    @pytest.mark.asyncio
    async def test_failure_callback_receives_errors_and_metadata(self, make_agent):
        received = []
        callbacks = ExecuteCallbacks(on_failure=lambda errors, metadata: received.append((errors, metadata)))
        backend = ScriptedBackend([answer("x")], repeat_last=True)
        await execute_agent(make_agent(max_attempts=2), "doc", backend=backend, callbacks=callbacks)

        errors, metadata = received[0]
        assert errors[0].code is AgentErrorCode.MAX_ATTEMPTS_EXCEEDED
        assert metadata.attempts == 2


class TestCallbackErrors:
    @pytest.mark.asyncio
    async def test_exceptions_are_recorded(self, make_agent, events, caplog):
        def explode(context):
            raise RuntimeError("observer down")

        backend = ScriptedBackend([answer(1)])
        with caplog.at_level(logging.WARNING, logger="agentry.observability"):
            result = await execute_agent(
                make_agent(), "doc", backend=backend, callbacks=events.callbacks(on_attempt_start=explode)
            )

        assert result.ok
        assert [str(e) for e in result.metadata.callback_errors] == ["observer down"]
        assert "Callback on_attempt_start raised RuntimeError: observer down" in caplog.text

    @pytest.mark.asyncio
    async def test_success_callback_error_is_recorded(self, make_agent):
        def explode(output, metadata):
            raise ValueError("sink closed")

        result = await execute_agent(
            make_agent(), "doc", backend=ScriptedBackend([answer(1)]), callbacks=ExecuteCallbacks(on_success=explode)
        )
        assert result.ok
        assert len(result.metadata.callback_errors) == 1
        assert isinstance(result.metadata.callback_errors[0], ValueError)

    @pytest.mark.asyncio
    async def test_failure_callback_error_is_recorded(self, make_agent):
        def explode(errors, metadata):
            raise ValueError("sink closed")

        result = await execute_agent(
            make_agent(), "doc", backend=ScriptedBackend([]), callbacks=ExecuteCallbacks(on_failure=explode)
        )
        assert result.error.code is AgentErrorCode.API_ERROR
        assert len(result.metadata.callback_errors) == 1

    @pytest.mark.asyncio
    async def test_tool_callbacks_errors_do_not_change_results(self, make_agent):
        def explode(*args):
            raise RuntimeError("nope")

        callbacks = ExecuteCallbacks(on_tool_call=explode, on_tool_result=explode)
        backend = ScriptedBackend([tool_response("increment"), tool_response(OUTPUT_TOOL, {"value": 1})])
        result = await execute_agent(make_agent(helpers=[increment_tool()]), "doc", backend=backend, callbacks=callbacks)

        assert result.ok
        assert len(result.metadata.callback_errors) == 3

    def test_async_callback_is_rejected(self):
        called = []

        async def on_attempt_start(context):
            called.append(context)

        dispatcher = CallbackDispatcher(ExecuteCallbacks(on_attempt_start=on_attempt_start))
        dispatcher.emit("on_attempt_start", object())

        assert called == []
        assert isinstance(dispatcher.errors[0], TypeError)

    def test_missing_callbacks_are_ignored(self):
        dispatcher = CallbackDispatcher()
        dispatcher.emit("on_success", None, None)
        assert dispatcher.errors == []
