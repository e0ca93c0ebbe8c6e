from __future__ import annotations

import logging

import pytest
from support import EventLog, PromptRecorder, build_agent


@pytest.fixture
def prompts() -> PromptRecorder:
    """Prompt builders that record their calls."""
    return PromptRecorder()


@pytest.fixture
def events() -> EventLog:
    """Callback recorder."""
    return EventLog()


@pytest.fixture
def make_agent(prompts):
    """Factory building a valid agent wired to the ``prompts`` recorder."""

    def _make(**kwargs):
        kwargs.setdefault("prompts", prompts.config())
        return build_agent(**kwargs)

    return _make


@pytest.fixture(autouse=True)
def _reset_agentry_logger():
    yield
    logger = logging.getLogger("agentry")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "integration: marks tests that use real LLM APIs")
