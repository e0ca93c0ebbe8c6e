"""Three-tier execution state.

* **context**: framework-owned counters (:class:`ExecutionContext`).
* **run**: user state that persists across attempts.
* **attempt**: user state recomputed at the start of every attempt.

:class:`StateManager` owns the authoritative copies.  Every state handed to
user code is a deep-copied snapshot and every state returned by user code is
deep-copied before it is adopted, so in-place mutation by a handler can never
leak into the framework's copy or into another execution.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import replace
from typing import Any

from .types import ExecutionContext, ExecutionState

logger = logging.getLogger("agentry.state")


class StateManager:
    """Holds the authoritative state of one execution.

    Args:
        input: The execution input, passed to the initialisers.
        initial_run_state: ``(input) -> run``; ``{}`` when omitted.
        initial_attempt_state: ``(input, run, context) -> attempt``; ``{}``
            when omitted.
    """

    def __init__(
        self,
        input: Any,
        *,
        initial_run_state: Any = None,
        initial_attempt_state: Any = None,
    ) -> None:
        self._input = input
        self._initial_run_state = initial_run_state
        self._initial_attempt_state = initial_attempt_state
        self._state: ExecutionState[Any, Any] | None = None

    @property
    def current(self) -> ExecutionState[Any, Any]:
        if self._state is None:
            raise RuntimeError("no attempt has been started")
        return self._state

    @property
    def context(self) -> ExecutionContext:
        return self.current.context

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initial_run(self) -> Any:
        """Compute the run state for a new execution."""
        if self._initial_run_state is None:
            return {}
        return copy.deepcopy(self._initial_run_state(self._input))

    def begin_attempt(self, context: ExecutionContext, run: Any) -> ExecutionState[Any, Any]:
        """Start an attempt: keep *run*, recompute the attempt state.

        Args:
            context: Context for the new attempt (iteration 0).
            run: Run state carried over from the previous attempt.
        """
        if self._initial_attempt_state is None:
            attempt: Any = {}
        else:
            attempt = copy.deepcopy(
                self._initial_attempt_state(self._input, copy.deepcopy(run), context)
            )
        self._state = ExecutionState(context=context, run=copy.deepcopy(run), attempt=attempt)
        logger.debug("Attempt %d/%d state initialised", context.attempt, context.max_attempts)
        return self.snapshot()

    def set_iteration(self, iteration: int) -> ExecutionContext:
        """Advance the iteration counter of the current attempt."""
        state = self.current
        context = replace(state.context, iteration=iteration)
        self._state = replace(state, context=context)
        return context

    # ------------------------------------------------------------------
    # Snapshots and updates
    # ------------------------------------------------------------------

    def snapshot(self, state: ExecutionState[Any, Any] | None = None) -> ExecutionState[Any, Any]:
        """Return a deep copy of *state* (default: the current state)."""
        state = state if state is not None else self.current
        return ExecutionState(
            context=state.context,
            run=copy.deepcopy(state.run),
            attempt=copy.deepcopy(state.attempt),
        )

    def replace_state(self, state: ExecutionState[Any, Any]) -> None:
        """Adopt a state threaded through the dispatcher."""
        self._state = self.snapshot(replace(state, context=self.current.context))

    @property
    def run(self) -> Any:
        """A snapshot of the current run state."""
        return copy.deepcopy(self.current.run)
