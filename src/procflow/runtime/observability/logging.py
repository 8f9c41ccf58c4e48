"""Structured logging for pipelines and child processes.

Log records are an event name plus key-value context. Context comes from
three layers, later layers winning:

    scoped (log_context) -> bound (logger.bind) -> call site

Process loggers carry ``command`` and ``pid``; those keys lead console lines
so interleaved output from concurrent children stays readable.

Example:
    >>> configure_logging(format="console", level="DEBUG")
    >>> log = get_logger("procflow.process").bind_process("sort", pid=4242)
    >>> log.debug("stdin closed")
    12:00:01.250 [debug] stdin closed command="sort" pid=4242 logger="procflow.process"
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Protocol, TextIO, runtime_checkable

import orjson

LogValue = str | int | float | bool | None | list[object] | tuple[object, ...] | dict[str, object]
LogDict = dict[str, object]

# Keys rendered first on console lines, in this order
LEADING_KEYS = ("command", "pid", "stage")

_scoped: ContextVar[LogDict] = ContextVar("procflow_log_scope", default={})
_active_renderer: ContextVar[LogRenderer | None] = ContextVar("procflow_log_renderer", default=None)
_threshold: ContextVar[int] = ContextVar("procflow_log_level", default=logging.WARNING)


@dataclass(slots=True, frozen=True)
class LogEntry:
    """One rendered log record."""

    timestamp: float
    level: str
    event: str
    context: LogDict

    @property
    def when(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)


@runtime_checkable
class LogRenderer(Protocol):
    def render(self, entry: LogEntry) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# Logger
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class BoundLogger:
    """Immutable logger carrying bound context.

    ``bind`` and ``unbind`` return new loggers. A logger without its own
    renderer or level follows whatever :func:`configure_logging` set.
    """

    context: LogDict = field(default_factory=dict)
    _renderer: LogRenderer | None = None
    _level: int | None = None

    def bind(self, **kw: LogValue) -> BoundLogger:
        return replace(self, context={**self.context, **kw})

    def bind_process(self, command: str, pid: int | None = None, **kw: LogValue) -> BoundLogger:
        """Logger for one child process."""
        if pid is not None:
            kw["pid"] = pid
        return self.bind(command=command, **kw)

    def unbind(self, *keys: str) -> BoundLogger:
        return replace(self, context={k: v for k, v in self.context.items() if k not in keys})

    def is_enabled(self, level: int) -> bool:
        return level >= (_threshold.get() if self._level is None else self._level)

    def log(self, level: int, event: str, **kw: LogValue) -> None:
        if not self.is_enabled(level):
            return
        entry = LogEntry(
            timestamp=time.time(),
            level=logging.getLevelName(level).lower(),
            event=event,
            context={**_scoped.get(), **self.context, **kw},
        )
        (self._renderer or _current_renderer()).render(entry)

    def debug(self, event: str, **kw: LogValue) -> None:
        self.log(logging.DEBUG, event, **kw)

    def info(self, event: str, **kw: LogValue) -> None:
        self.log(logging.INFO, event, **kw)

    def warning(self, event: str, **kw: LogValue) -> None:
        self.log(logging.WARNING, event, **kw)

    def error(self, event: str, **kw: LogValue) -> None:
        self.log(logging.ERROR, event, **kw)

    def exception(self, event: str, exc: BaseException | None = None, **kw: LogValue) -> None:
        """Log at error level with the exception type and message attached.

        Uses the exception currently being handled when ``exc`` is omitted.
        """
        exc = exc if exc is not None else sys.exception()
        if exc is not None:
            kw["error"] = type(exc).__name__
            kw["error_message"] = str(exc)
        self.log(logging.ERROR, event, **kw)


# ─────────────────────────────────────────────────────────────────────────────
# Renderers
# ─────────────────────────────────────────────────────────────────────────────

_RESET = "\033[0m"
_DIM = "\033[2m"
_KEY = "\033[36m"
_LEVEL_STYLE = {
    "debug": _DIM,
    "info": "\033[32m",
    "warning": "\033[33m",
    "error": "\033[31m",
}


@dataclass(slots=True)
class ConsoleRenderer:
    """``HH:MM:SS.mmm [level] event key=value ...`` on a text stream.

    Colors default to on when the stream is a terminal.
    """

    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None
    show_timestamp: bool = True

    def __post_init__(self) -> None:
        if self.colors is None:
            isatty = getattr(self.output, "isatty", None)
            self.colors = bool(isatty and isatty())

    def _paint(self, style: str, text: str) -> str:
        return f"{style}{text}{_RESET}" if self.colors else text

    def render(self, entry: LogEntry) -> None:
        parts: list[str] = []
        if self.show_timestamp:
            parts.append(self._paint(_DIM, entry.when.strftime("%H:%M:%S.%f")[:-3]))
        parts.append(self._paint(_LEVEL_STYLE.get(entry.level, _DIM), f"[{entry.level}]"))
        parts.append(entry.event)
        for key in _ordered_keys(entry.context):
            parts.append(f"{self._paint(_KEY, key)}={_show(entry.context[key])}")
        print(" ".join(parts), file=self.output)


@dataclass(slots=True)
class JsonRenderer:
    """One JSON object per line; unknown values are stringified."""

    output: TextIO = field(default_factory=lambda: sys.stdout)

    def render(self, entry: LogEntry) -> None:
        record = {"timestamp": entry.when.isoformat(), "level": entry.level, "event": entry.event, **entry.context}
        line = orjson.dumps(record, default=str, option=orjson.OPT_APPEND_NEWLINE | orjson.OPT_NON_STR_KEYS)
        self.output.write(line.decode())


@dataclass(slots=True)
class NoOpRenderer:
    """Discards everything."""

    def render(self, entry: LogEntry) -> None:
        return None


def _ordered_keys(context: LogDict) -> list[str]:
    leading = [k for k in LEADING_KEYS if k in context]
    return leading + sorted(k for k in context if k not in LEADING_KEYS)


def _show(value: object) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(map(str, value)) + "]"
    if isinstance(value, dict):
        return f"{{{len(value)} keys}}"
    return str(value)


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

_RENDERERS = ("console", "json", "none")


def configure_logging(
    format: str | None = None,  # noqa: A002
    level: str | None = None,
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> LogRenderer:
    """Install the renderer and threshold used by unconfigured loggers.

    Arguments left as None come from the PROCFLOW_LOG_* settings.

    Args:
        format: "console", "json" or "none"
        level: Level name such as "DEBUG" or "WARNING"
        output: Target stream (console defaults to stderr, json to stdout)
        colors: Console colors; None detects a terminal
    """
    from procflow.foundation.config import get_settings

    settings = get_settings().logging
    format = format or settings.format
    if format not in _RENDERERS:
        raise ValueError(f"unknown log format {format!r}; expected one of {', '.join(_RENDERERS)}")

    _threshold.set(getattr(logging, (level or settings.level).upper(), logging.WARNING))

    renderer: LogRenderer
    if format == "console":
        renderer = ConsoleRenderer(output=output or sys.stderr, colors=colors)
    elif format == "json":
        renderer = JsonRenderer(output=output or sys.stdout)
    else:
        renderer = NoOpRenderer()
    _active_renderer.set(renderer)
    return renderer


def get_logger(name: str | None = None, **context: LogValue) -> BoundLogger:
    """Logger with ``logger=name`` and any extra context bound."""
    if name:
        context["logger"] = name
    return BoundLogger(context=dict(context))


def _current_renderer() -> LogRenderer:
    renderer = _active_renderer.get()
    if renderer is None:
        renderer = ConsoleRenderer()
        _active_renderer.set(renderer)
    return renderer


@contextmanager
def log_context(**kw: LogValue) -> Iterator[LogDict]:
    """Add context to every record logged inside the block, across awaits.

    Example:
        >>> with log_context(pipeline="ingest"):
        ...     await run("gzip", "-d", input=chunks).collect()
    """
    token = _scoped.set({**_scoped.get(), **kw})
    try:
        yield _scoped.get()
    finally:
        _scoped.reset(token)
