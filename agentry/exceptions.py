"""agentry exception hierarchy.

The engine itself reports failures as values (see
:mod:`agentry.agents.errors`); these exceptions are raised only at opt-in
bridges such as :meth:`~agentry.agents.definition.DefineResult.unwrap` and
inside backend adapters.  All of them inherit from :class:`AgentryError`.
Where appropriate they also inherit from the stdlib exception they
replace (e.g. ``ConfigurationError`` extends ``ValueError``).
"""

from __future__ import annotations

from typing import Any


class AgentryError(Exception):
    """Base exception for all agentry errors."""


class AgentDefinitionError(AgentryError, ValueError):
    """Raised by ``DefineResult.unwrap()`` when a definition is invalid.

    Attributes:
        errors: Every :class:`~agentry.agents.errors.AgentError` the
            definition produced.
    """

    def __init__(self, errors: list[Any]) -> None:
        self.errors = list(errors)
        codes = ", ".join(str(getattr(e, "code", e)) for e in self.errors)
        super().__init__(f"Invalid agent definition ({len(self.errors)} error(s)): {codes}")


class ConfigurationError(AgentryError, ValueError):
    """Raised for invalid configuration (missing keys, bad settings)."""


class BackendError(AgentryError, RuntimeError):
    """Raised when a model backend call fails."""

    def __init__(self, message: str = "", *, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)
