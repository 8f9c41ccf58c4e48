"""Structured errors for pipelines and processes.

Provides error codes, a validated failure model for process errors, and the
exception hierarchy raised across the library. Uses Pydantic for the failure
model so errors can be rendered, serialized, and compared.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Self

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ErrorCode(StrEnum):
    """Machine-readable failure classification."""
    SPAWN_FAILED = "SPAWN_FAILED"
    EXIT_CODE = "EXIT_CODE"
    SIGNAL = "SIGNAL"
    INPUT_FAILED = "INPUT_FAILED"
    STAGE_FAILED = "STAGE_FAILED"
    BRIDGE_CLOSED = "BRIDGE_CLOSED"
    EMPTY = "EMPTY"
    UNKNOWN = "UNKNOWN"


class ProcessFailure(BaseModel):
    """Structured description of a failed process.

    Attributes:
        message: Human-readable error message
        code: Failure classification
        command: The program that was run
        arguments: Arguments passed to the program
        exit_code: Exit status, when the process exited normally
        signal: Signal number, when the process was killed by a signal
        stderr: Captured standard error excerpt (if configured)
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
        json_schema_extra={
            "title": "Process Failure",
            "examples": [{
                "message": "process exited with code 2",
                "code": "EXIT_CODE",
                "command": "grep",
                "arguments": ["-q", "needle"],
                "exit_code": 2,
            }],
        },
    )

    message: Annotated[str, Field(min_length=1)]
    code: ErrorCode = ErrorCode.UNKNOWN
    command: str
    arguments: tuple[str, ...] = ()
    exit_code: int | None = None
    signal: int | None = None
    stderr: str | None = Field(default=None, repr=False)

    @field_validator("arguments", mode="before")
    @classmethod
    def _coerce_arguments(cls, v: object) -> object:
        """Accept any sequence of path-like or string arguments."""
        if isinstance(v, (list, tuple)):
            return tuple(str(a) for a in v)
        return v

    @computed_field
    @property
    def argv(self) -> tuple[str, ...]:
        """Full command line."""
        return (self.command, *self.arguments)

    def render(self) -> str:
        """Format the failure with its command line and stderr excerpt."""
        parts = [f"{self.message}: {' '.join(self.argv)}"]
        if self.stderr:
            parts.append("\n" + "\n".join(f"\t{line}" for line in self.stderr.splitlines()))
        return "".join(parts)


class ProcflowError(Exception):
    """Base class for all library errors."""

    code: ErrorCode = ErrorCode.UNKNOWN


class ProcessError(ProcflowError):
    """Exception wrapping a ProcessFailure for raising."""

    __slots__ = ("failure", "stderr_data")

    def __init__(self, failure: ProcessFailure, *, stderr_data: object = None) -> None:
        self.failure = failure
        self.stderr_data = stderr_data
        super().__init__(failure.render())

    @property
    def code(self) -> ErrorCode:  # type: ignore[override]
        return self.failure.code

    @property
    def command(self) -> str:
        return self.failure.command

    @property
    def argv(self) -> tuple[str, ...]:
        return self.failure.argv

    @property
    def stderr(self) -> str | None:
        return self.failure.stderr

    @classmethod
    def create(
        cls,
        message: str,
        command: str,
        arguments: tuple[str, ...] | list[str] = (),
        **fields: object,
    ) -> Self:
        """Build the exception and its failure model in one step."""
        stderr_data = fields.pop("stderr_data", None)
        failure = ProcessFailure(
            message=message,
            code=cls._default_code(),
            command=command,
            arguments=tuple(arguments),
            **fields,  # type: ignore[arg-type]
        )
        return cls(failure, stderr_data=stderr_data)

    @classmethod
    def _default_code(cls) -> ErrorCode:
        return ErrorCode.UNKNOWN


class SpawnError(ProcessError):
    """The command could not be started."""

    @classmethod
    def _default_code(cls) -> ErrorCode:
        return ErrorCode.SPAWN_FAILED


class ExitCodeError(ProcessError):
    """The process ran and exited with a non-zero code."""

    @property
    def exit_code(self) -> int:
        return self.failure.exit_code or 0

    @classmethod
    def _default_code(cls) -> ErrorCode:
        return ErrorCode.EXIT_CODE


class SignalError(ProcessError):
    """The process was terminated by a signal it was not sent by us."""

    @property
    def signal(self) -> int:
        return self.failure.signal or 0

    @classmethod
    def _default_code(cls) -> ErrorCode:
        return ErrorCode.SIGNAL


class InputStreamError(ProcessError):
    """Feeding standard input failed although the process exited cleanly."""

    @classmethod
    def _default_code(cls) -> ErrorCode:
        return ErrorCode.INPUT_FAILED


class BridgeClosedError(ProcflowError):
    """Write attempted on a bridge that no longer accepts items."""

    code = ErrorCode.BRIDGE_CLOSED


class BridgeCancelledError(BridgeClosedError):
    """The reader stopped consuming; pending and future writes are refused."""


class StageError(ProcflowError):
    """A user-supplied stage function failed (raised only when chaining is on)."""

    code = ErrorCode.STAGE_FAILED

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        super().__init__(f"{stage} stage failed: {cause}")


class EmptySequenceError(ProcflowError, LookupError):
    """A head was requested from an empty sequence."""

    code = ErrorCode.EMPTY
