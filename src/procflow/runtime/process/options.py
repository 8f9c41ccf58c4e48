"""Options for spawning a child process."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator

from procflow.foundation.config import get_settings

__all__ = ["StreamMode", "StderrMode", "ProcessOptions", "StderrHandler", "ErrorHandler"]

# Receives the stderr ByteSequence
StderrHandler = Callable[..., Awaitable[Any]]
# Receives (error, stderr_data)
ErrorHandler = Callable[..., Any]


class StreamMode(StrEnum):
    """Where a standard stream is connected."""
    INHERIT = "inherit"
    PIPED = "piped"
    NULL = "null"


class StderrMode(StrEnum):
    """How standard error is treated.

    CAPTURE keeps a bounded tail for error reports, HANDLER gives the raw
    stream to a user coroutine, IGNORE discards it, INHERIT passes it through
    to the parent's stderr.
    """
    CAPTURE = "capture"
    HANDLER = "handler"
    IGNORE = "ignore"
    INHERIT = "inherit"


def _default_chunk_size() -> int:
    return get_settings().process.read_chunk_size


def _default_tail_lines() -> int:
    return get_settings().process.stderr_tail_lines


def _default_tail_bytes() -> int:
    return get_settings().process.stderr_tail_bytes


class ProcessOptions(BaseModel):
    """Validated process options.

    Attributes:
        cwd: Working directory for the child
        env: Variables merged on top of the parent environment
        stdin: Standard input connection (forced to PIPED when input is given)
        stdout: Standard output connection; only PIPED can be read
        stderr: Standard error treatment
        stderr_handler: Coroutine consuming stderr in HANDLER mode; its return
            value is attached to the exit error as ``stderr_data``
        error_handler: Called with the exit error and the stderr handler's
            result; raise to replace the error, return to suppress it
        stderr_tail_lines: Lines of stderr kept in CAPTURE mode
        stderr_tail_bytes: Byte cap on the kept stderr tail
        read_chunk_size: Bytes per stdout read
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    cwd: str | None = None
    env: Mapping[str, str] | None = None
    stdin: StreamMode = StreamMode.INHERIT
    stdout: StreamMode = StreamMode.PIPED
    stderr: StderrMode = StderrMode.CAPTURE
    stderr_handler: StderrHandler | None = Field(default=None, repr=False)
    error_handler: ErrorHandler | None = Field(default=None, repr=False)
    stderr_tail_lines: Annotated[PositiveInt, Field(default_factory=_default_tail_lines)]
    stderr_tail_bytes: Annotated[PositiveInt, Field(default_factory=_default_tail_bytes)]
    read_chunk_size: Annotated[PositiveInt, Field(default_factory=_default_chunk_size)]

    @field_validator("cwd", mode="before")
    @classmethod
    def _coerce_cwd(cls, v: object) -> object:
        return str(v) if isinstance(v, Path) else v

    @field_validator("env", mode="before")
    @classmethod
    def _coerce_env(cls, v: object) -> object:
        if isinstance(v, Mapping):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @model_validator(mode="before")
    @classmethod
    def _handler_implies_mode(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("stderr_handler") is not None and "stderr" not in data:
            return {**data, "stderr": StderrMode.HANDLER}
        return data

    @model_validator(mode="after")
    def _check_handler(self) -> ProcessOptions:
        if self.stderr is StderrMode.HANDLER and self.stderr_handler is None:
            raise ValueError("stderr mode 'handler' requires a stderr_handler")
        return self

    @classmethod
    def from_kwargs(cls, options: ProcessOptions | None = None, **kwargs: Any) -> ProcessOptions:
        """Merge keyword overrides into existing options (or defaults)."""
        if options is None:
            return cls(**kwargs)
        if not kwargs:
            return options
        return cls(**{**options.model_dump(exclude_unset=True), **kwargs})
