"""Usage accounting for agent executions.

Provides :class:`UsageSession` which accumulates token counts, costs, and
call counts across every model call of one execution.  The executor owns
one session per :func:`~agentry.agents.executor.execute_agent` call and
builds :class:`~agentry.agents.types.ExecuteMetadata` from it.

Usage::

    from agentry.infra.session import UsageSession

    session = UsageSession()
    session.record(response, model="claude-sonnet-4-5", elapsed_ms=812.0)
    print(session.summary()["formatted"])
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from ..drivers.base import ModelResponse, TokenUsage

logger = logging.getLogger("agentry.session")


@dataclass
class UsageSession:
    """Accumulates usage statistics across multiple backend calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    call_count: int = 0
    errors: int = 0
    total_elapsed_ms: float = 0.0
    _elapsed_samples: list[float] = field(default_factory=list, repr=False)
    _per_model: dict[str, dict[str, Any]] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def tokens(self) -> TokenUsage:
        return TokenUsage(input_tokens=self.input_tokens, output_tokens=self.output_tokens)

    # ------------------------------------------------------------------ #
    # Recording
    # ------------------------------------------------------------------ #

    def record(self, response: ModelResponse, *, model: str = "unknown", elapsed_ms: float = 0.0) -> None:
        """Record a successful backend response.

        Args:
            response: The response whose usage and cost are added.
            model: Model name used for the per-model breakdown.
            elapsed_ms: Wall-clock duration of the call.
        """
        usage = response.usage
        with self._lock:
            self.input_tokens += usage.input_tokens
            self.output_tokens += usage.output_tokens
            self.cost += response.cost
            self.call_count += 1

            logger.debug(
                "[session] record model=%s delta_tokens=%d delta_cost=%.6f | session total_tokens=%d cost=%.6f calls=%d",
                model,
                usage.total_tokens,
                response.cost,
                self.total_tokens,
                self.cost,
                self.call_count,
            )

            if elapsed_ms > 0:
                self.total_elapsed_ms += elapsed_ms
                self._elapsed_samples.append(elapsed_ms)

            bucket = self._per_model.setdefault(
                model,
                {"input_tokens": 0, "output_tokens": 0, "cost": 0.0, "calls": 0, "elapsed_ms": 0.0},
            )
            bucket["input_tokens"] += usage.input_tokens
            bucket["output_tokens"] += usage.output_tokens
            bucket["cost"] += response.cost
            bucket["calls"] += 1
            bucket["elapsed_ms"] += max(elapsed_ms, 0.0)

    def record_error(self, error: BaseException | None = None) -> None:
        """Record a failed backend call."""
        with self._lock:
            self.errors += 1

    # ------------------------------------------------------------------ #
    # Computed timing properties
    # ------------------------------------------------------------------ #

    @property
    def tokens_per_second(self) -> float:
        """Average output tokens per second across all calls."""
        if self.total_elapsed_ms <= 0:
            return 0.0
        return self.output_tokens / (self.total_elapsed_ms / 1000)

    @property
    def latency_stats(self) -> dict[str, float]:
        """Return min/max/avg/p95 latency in milliseconds."""
        if not self._elapsed_samples:
            return {"min_ms": 0.0, "max_ms": 0.0, "avg_ms": 0.0, "p95_ms": 0.0}

        samples = sorted(self._elapsed_samples)
        p95_idx = int(len(samples) * 0.95)
        return {
            "min_ms": samples[0],
            "max_ms": samples[-1],
            "avg_ms": sum(samples) / len(samples),
            "p95_ms": samples[min(p95_idx, len(samples) - 1)],
        }

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def summary(self) -> dict[str, Any]:
        """Return a machine-readable summary with a ``formatted`` string."""
        stats = self.latency_stats
        tps = self.tokens_per_second

        formatted = f"Session: {self.total_tokens:,} tokens across {self.call_count} call(s) costing ${self.cost:.4f}"
        if self.total_elapsed_ms > 0:
            formatted += f" | {tps:.1f} tok/s avg, {stats['avg_ms']:.0f}ms avg latency"
        if self.errors:
            formatted += f" ({self.errors} error(s))"

        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
            "call_count": self.call_count,
            "errors": self.errors,
            "total_elapsed_ms": self.total_elapsed_ms,
            "tokens_per_second": tps,
            "latency_stats": stats,
            "per_model": {k: dict(v) for k, v in self._per_model.items()},
            "formatted": formatted,
        }
