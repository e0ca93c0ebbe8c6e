"""Infrastructure: settings, logging, usage accounting."""

from .logging import JSONFormatter, configure_from_settings, configure_logging
from .session import UsageSession
from .settings import AgentrySettings, get_settings, settings

__all__ = [
    "AgentrySettings",
    "JSONFormatter",
    "UsageSession",
    "configure_from_settings",
    "configure_logging",
    "get_settings",
    "settings",
]
