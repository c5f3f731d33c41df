"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging

import pytest

from meetings.core.logging import (
    _NOISE_LOGGERS,
    _actor_context,
    add_actor_context,
    add_otel_context,
    configure_logging,
    get_actor_context,
    set_actor_context,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and actor context between tests."""
    token = _actor_context.set(None)
    yield
    _actor_context.reset(token)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


class TestActorContext:
    def test_set_and_get(self):
        set_actor_context("@alice:example.org")
        assert get_actor_context() == "@alice:example.org"

    def test_default_is_none(self):
        assert get_actor_context() is None

    def test_processor_injects_actor(self):
        set_actor_context("@alice:example.org")
        result = add_actor_context(None, "info", {"event": "test"})
        assert result["actor"] == "@alice:example.org"


def test_otel_context_without_span():
    result = add_otel_context(None, "info", {"event": "test"})
    assert result["trace_id"] == "0" * 32
    assert result["span_id"] == "0" * 16


class TestConfigureLogging:
    def test_sets_level_and_single_handler(self):
        configure_logging(level="DEBUG")
        configure_logging(level="DEBUG")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_noise_loggers_raised(self):
        configure_logging(level="DEBUG")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_json_lines(self, capsys):
        configure_logging(level="INFO", fmt="json")
        set_actor_context("@alice:example.org")

        logging.getLogger("meetings.test").info("Closed room %s", "!r:x")

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Closed room !r:x"
        assert record["actor"] == "@alice:example.org"
        assert record["level"] == "info"
