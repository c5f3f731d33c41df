"""Log setup for the meetings engine.

Every module logs through the standard ``logging.getLogger(__name__)``; this
module routes those records through structlog so each line carries the user
an operation acts for and the trace it belongs to. ``configure_logging``
picks between a console renderer for interactive use and JSON lines for
collectors.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from opentelemetry import trace

# User id of the operation running in the current task.
_actor_context: ContextVar[str | None] = ContextVar("meetings_actor", default=None)

# Chatty HTTP client loggers, held at WARNING.
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
)


def set_actor_context(user_id: str | None) -> None:
    """Bind *user_id* to the log lines of the running task."""
    _actor_context.set(user_id)


def get_actor_context() -> str | None:
    return _actor_context.get()


def add_actor_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Processor: add ``actor``, the user the current operation acts for."""
    event_dict["actor"] = _actor_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Processor: add ``trace_id``/``span_id`` of the active span, zeros outside one."""
    ctx = trace.get_current_span().get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


def _shared_processors(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_actor_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install a single stderr handler on the root logger.

    Parameters
    ----------
    level:
        Root level name, e.g. ``"DEBUG"``. Unknown names fall back to INFO.
    fmt:
        ``"json"`` for one JSON object per line, anything else for the
        console renderer.

    Calling it again replaces the previous handler.
    """
    if fmt == "json":
        processors = _shared_processors(time_fmt="iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        processors = _shared_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=processors,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
