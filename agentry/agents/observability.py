"""Callback dispatch and metadata assembly for agent executions."""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any

from ..infra.session import UsageSession
from .definition import ObservabilityConfig
from .types import ExecuteCallbacks, ExecuteMetadata

logger = logging.getLogger("agentry.observability")


class CallbackDispatcher:
    """Invokes :class:`ExecuteCallbacks` without letting them interrupt execution.

    Exceptions raised by a callback are logged at WARNING and collected in
    :attr:`errors`, which the executor reports as
    ``metadata.callback_errors``.
    """

    def __init__(self, callbacks: ExecuteCallbacks | None = None) -> None:
        self.callbacks = callbacks or ExecuteCallbacks()
        self.errors: list[Exception] = []

    def emit(self, name: str, *args: Any) -> None:
        fn = getattr(self.callbacks, name, None)
        if fn is None:
            return
        try:
            result = fn(*args)
            if inspect.iscoroutine(result):
                result.close()
                raise TypeError(f"callback {name} must be synchronous")
        except Exception as exc:
            logger.warning(
                "Callback %s raised %s: %s",
                name,
                type(exc).__name__,
                exc,
                extra={"agentry_data": {"callback": name, "error": repr(exc)}},
            )
            self.errors.append(exc)


class ExecutionMetrics:
    """Tracks latency, usage and attempts for one execution."""

    def __init__(self, observability: ObservabilityConfig) -> None:
        self.observability = observability
        self.session = UsageSession()
        self.attempts = 0
        self._started = time.perf_counter()

    def build(self, callback_errors: list[Exception]) -> ExecuteMetadata:
        """Snapshot the metrics honouring the observability flags."""
        obs = self.observability
        return ExecuteMetadata(
            latency_ms=(time.perf_counter() - self._started) * 1000 if obs.track_latency else None,
            tokens=self.session.tokens if obs.track_tokens else None,
            cost=self.session.cost if obs.track_cost else None,
            attempts=self.attempts if obs.track_attempts else None,
            callback_errors=list(callback_errors),
        )
