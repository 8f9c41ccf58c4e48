"""Child process lifecycle: spawn, feed, drain, wait, kill.

A ProcessHandle owns one running child and its helper tasks. Standard input
is fed by a dedicated task, independent of output draining, so a child that
writes a lot before reading its input cannot deadlock the pipeline. Standard
error is drained concurrently by its own task for the same reason.

Standard output is exposed as a ByteSequence. When it ends, the process is
waited on and its exit status mapped to an error. If the consumer stops early
the process is killed, its remaining output discarded, and it is reaped; a
kill issued this way is not an error.

States:
    SPAWNED -> RUNNING -> EXITED | KILLED

A process ended by any signal (ours or not) is KILLED. A spawn failure
raises SpawnError and never produces a handle.

Example:
    >>> handle = await ProcessHandle.spawn("sort", input=["b", "a"])
    >>> async with handle:
    ...     print(await handle.stdout.lines().collect())
    ['a', 'b']
"""

from __future__ import annotations

import asyncio
import inspect
import os
import signal
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from procflow.foundation.errors import ExitCodeError, InputStreamError, ProcessError, SignalError, SpawnError
from procflow.io.streaming import to_bytes
from procflow.runtime.concurrency import ByteSequence, aclose, iterate
from procflow.runtime.observability import get_logger

from .options import ProcessOptions, StderrMode, StreamMode
from .stderr import StderrTail, drain

if TYPE_CHECKING:
    from types import TracebackType

__all__ = ["ProcessState", "ProcessHandle", "ProcessSequence", "ProcessInput"]

log = get_logger("procflow.process")

ProcessInput = bytes | bytearray | memoryview | str | AsyncIterable[Any] | Iterable[Any]

_PIPE_CLOSED = (BrokenPipeError, ConnectionResetError)

_STREAM_TARGETS: dict[StreamMode, int | None] = {
    StreamMode.PIPED: asyncio.subprocess.PIPE,
    StreamMode.NULL: asyncio.subprocess.DEVNULL,
    StreamMode.INHERIT: None,
}

_STDERR_TARGETS: dict[StderrMode, int | None] = {
    StderrMode.CAPTURE: asyncio.subprocess.PIPE,
    StderrMode.HANDLER: asyncio.subprocess.PIPE,
    StderrMode.IGNORE: asyncio.subprocess.DEVNULL,
    StderrMode.INHERIT: None,
}


class ProcessState(StrEnum):
    """Lifecycle state of a child process. Terminal states never change."""
    SPAWNED = "spawned"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"

    @property
    def terminal(self) -> bool:
        return self in (ProcessState.EXITED, ProcessState.KILLED)


class ProcessSequence(ByteSequence):
    """Standard output of a process, with access to its handle."""

    __slots__ = ("handle",)

    def __init__(self, source: AsyncIterator[bytes], handle: ProcessHandle) -> None:
        super().__init__(source)
        self.handle = handle

    def __repr__(self) -> str:
        return f"ProcessSequence({self.handle!r})"


class ProcessHandle:
    """A spawned child process and its helper tasks.

    Create with :meth:`spawn`; use as an async context manager or call
    :meth:`dispose` to guarantee the child is reaped.
    """

    __slots__ = (
        "_proc", "_command", "_args", "_options", "_state", "_log",
        "_stdout", "_stdin_task", "_stderr_task", "_tail",
        "_input_error", "_killed", "_disposed",
    )

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        command: str,
        args: tuple[str, ...],
        options: ProcessOptions,
    ) -> None:
        self._proc = proc
        self._command = command
        self._args = args
        self._options = options
        self._state = ProcessState.SPAWNED
        self._log = log.bind_process(command, pid=proc.pid)
        self._stdout: ProcessSequence | None = None
        self._stdin_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[Any] | None = None
        self._tail: StderrTail | None = None
        self._input_error: BaseException | None = None
        self._killed = False
        self._disposed = False

    @classmethod
    async def spawn(
        cls,
        command: str | os.PathLike[str],
        *args: str | os.PathLike[str],
        input: ProcessInput | None = None,  # noqa: A002 - mirrors subprocess.run
        options: ProcessOptions | None = None,
        **kwargs: Any,
    ) -> ProcessHandle:
        """Start a child process.

        Args:
            command: Program to run (looked up on PATH)
            *args: Program arguments
            input: Bytes or text written to stdin as-is, or an (async)
                iterable / Sequence of ``bytes``, ``str`` lines, or lists of
                either. Passing input pipes stdin.
            options: Process options; keyword arguments override fields

        Raises:
            SpawnError: The program could not be started
        """
        opts = ProcessOptions.from_kwargs(options, **kwargs)
        if input is not None and opts.stdin is not StreamMode.PIPED:
            opts = opts.model_copy(update={"stdin": StreamMode.PIPED})
        cmd, argv = os.fspath(command), tuple(os.fspath(a) for a in args)
        env = {**os.environ, **opts.env} if opts.env else None

        try:
            proc = await asyncio.create_subprocess_exec(
                cmd,
                *argv,
                stdin=_STREAM_TARGETS[opts.stdin],
                stdout=_STREAM_TARGETS[opts.stdout],
                stderr=_STDERR_TARGETS[opts.stderr],
                cwd=opts.cwd,
                env=env,
            )
        except OSError as e:
            log.debug("spawn failed", command=cmd, error=str(e))
            if input is not None:
                await aclose(input)
            raise SpawnError.create(f"spawn failed: {e.strerror or e}", cmd, argv) from e

        handle = cls(proc, cmd, argv, opts)
        handle._start(input)
        return handle

    def _start(self, input: ProcessInput | None) -> None:  # noqa: A002
        proc = self._proc
        if proc.stdin is not None:
            self._stdin_task = asyncio.create_task(self._feed(proc.stdin, input))
        if proc.stderr is not None:
            if self._options.stderr is StderrMode.HANDLER:
                self._stderr_task = asyncio.create_task(self._handle_stderr(proc.stderr))
            else:
                self._tail = StderrTail(self._options.stderr_tail_lines, self._options.stderr_tail_bytes)
                self._stderr_task = asyncio.create_task(drain(self._chunks(proc.stderr), self._tail))
        self._state = ProcessState.RUNNING
        self._log.debug("process spawned", args=list(self._args))

    # ─────────────────────────────────────────────────────────────────────────
    # Helper tasks
    # ─────────────────────────────────────────────────────────────────────────

    async def _chunks(self, stream: asyncio.StreamReader) -> AsyncIterator[bytes]:
        size = self._options.read_chunk_size
        while chunk := await stream.read(size):
            yield chunk

    async def _feed(self, stdin: asyncio.StreamWriter, input: ProcessInput | None) -> None:  # noqa: A002
        source: AsyncIterator[bytes] | None = None
        try:
            if isinstance(input, str):
                stdin.write(input.encode("utf-8"))
                await stdin.drain()
            elif isinstance(input, (bytes, bytearray, memoryview)):
                stdin.write(bytes(input))
                await stdin.drain()
            elif input is not None:
                source = to_bytes(iterate(input))
                async for data in source:
                    stdin.write(data)
                    await stdin.drain()
        except _PIPE_CLOSED:
            self._log.debug("stdin closed by process")
        except Exception as e:
            self._input_error = e
            self._log.debug("input failed", error=type(e).__name__)
        finally:
            if source is not None:
                await aclose(source)
            elif input is not None and not isinstance(input, (str, bytes, bytearray, memoryview)):
                await aclose(input)
            await _close_stdin(stdin)

    async def _handle_stderr(self, stderr: asyncio.StreamReader) -> Any:
        handler = self._options.stderr_handler
        chunks = ByteSequence(self._chunks(stderr))
        try:
            result = handler(chunks)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            await chunks.aclose()
            # Whatever the handler left unread must not block the child
            await drain(self._chunks(stderr))

    # ─────────────────────────────────────────────────────────────────────────
    # Standard output
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def stdout(self) -> ProcessSequence:
        """Standard output as a byte sequence (created once).

        Ending it normally waits for the process and raises its exit error.
        Closing it early kills the process. When stdout is not piped the
        sequence is empty but still reports the exit status.
        """
        if self._stdout is None:
            self._stdout = ProcessSequence(self._output(), self)
        return self._stdout

    async def _output(self) -> AsyncIterator[bytes]:
        completed = False
        try:
            if self._proc.stdout is not None:
                size = self._options.read_chunk_size
                while chunk := await self._proc.stdout.read(size):
                    yield chunk
            completed = True
        finally:
            if not completed:
                await self.dispose()
        await self._finish()

    async def _finish(self) -> None:
        """Wait for exit and raise the mapped error, if any."""
        try:
            returncode = await self._proc.wait()
            stderr_data, handler_error = await self._settle_helpers()
        finally:
            self._mark_ended()
        self._log.debug("process exited", code=returncode)

        error = self._exit_error(returncode, stderr_data)
        cause = self._input_error or handler_error
        if error is None and self._input_error is not None:
            error = InputStreamError.create(
                f"input stream failed: {self._input_error}",
                self._command,
                self._args,
                stderr=self.stderr_excerpt,
                stderr_data=stderr_data,
            )
        if error is None:
            if handler_error is not None:
                raise handler_error
            return
        if cause is not None:
            error.__cause__ = cause

        handler = self._options.error_handler
        if handler is None:
            raise error
        result = handler(error, stderr_data)
        if inspect.isawaitable(result):
            await result

    def _exit_error(self, returncode: int, stderr_data: Any) -> ProcessError | None:
        if self._killed or returncode == 0:
            return None
        if returncode < 0:
            signum = -returncode
            return SignalError.create(
                f"signal error: {_signal_name(signum)}",
                self._command,
                self._args,
                signal=signum,
                stderr=self.stderr_excerpt,
                stderr_data=stderr_data,
            )
        return ExitCodeError.create(
            f"exit code: {returncode}",
            self._command,
            self._args,
            exit_code=returncode,
            stderr=self.stderr_excerpt,
            stderr_data=stderr_data,
        )

    async def _settle_helpers(self) -> tuple[Any, BaseException | None]:
        """Let helper tasks finish after exit.

        Returns the stderr handler's result and the exception it raised, if any.
        """
        if self._stdin_task is not None and not self._stdin_task.done():
            # The child is gone; input nobody will read is abandoned
            self._stdin_task.cancel()
        if self._stdin_task is not None:
            await asyncio.gather(self._stdin_task, return_exceptions=True)
        if self._stderr_task is None:
            return None, None
        (outcome,) = await asyncio.gather(self._stderr_task, return_exceptions=True)
        if isinstance(outcome, BaseException):
            self._log.debug("stderr handler failed", error=type(outcome).__name__)
            return None, outcome
        return outcome, None

    def _mark_ended(self) -> None:
        if self._state.terminal:
            return
        returncode = self._proc.returncode
        if self._killed or (returncode is not None and returncode < 0):
            self._state = ProcessState.KILLED
        elif returncode is not None:
            self._state = ProcessState.EXITED

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code without raising.

        A negative code means the process was ended by that signal. When
        stdout is piped it must be consumed (or disposed) for the child to
        finish writing.
        """
        returncode = await self._proc.wait()
        self._mark_ended()
        return returncode

    async def dispose(self) -> None:
        """Release the process. Idempotent.

        Kills the child if still running, discards unread output, waits for
        it to be reaped, and cancels and awaits the helper tasks.
        """
        if self._disposed:
            return
        self._disposed = True
        proc = self._proc

        if proc.returncode is None:
            self._killed = True
            try:
                proc.kill()
            except ProcessLookupError:
                self._log.debug("process already gone")
            else:
                self._log.debug("process killed")

        if self._stderr_task is not None and self._options.stderr is StderrMode.HANDLER:
            self._stderr_task.cancel()
        if proc.stdout is not None:
            await drain(self._chunks(proc.stdout))
        await proc.wait()

        helpers = [t for t in (self._stdin_task, self._stderr_task) if t is not None]
        for task in helpers:
            if not task.done():
                task.cancel()
        if helpers:
            await asyncio.gather(*helpers, return_exceptions=True)
        self._mark_ended()

    async def __aenter__(self) -> ProcessHandle:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.dispose()

    # ─────────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def command(self) -> str:
        return self._command

    @property
    def args(self) -> tuple[str, ...]:
        return self._args

    @property
    def argv(self) -> tuple[str, ...]:
        return (self._command, *self._args)

    @property
    def options(self) -> ProcessOptions:
        return self._options

    @property
    def stderr_excerpt(self) -> str | None:
        """Captured stderr tail (CAPTURE mode only)."""
        return self._tail.excerpt() if self._tail is not None else None

    def __repr__(self) -> str:
        return f"ProcessHandle({' '.join(self.argv)!r}, pid={self.pid}, state={self._state.value})"


async def _close_stdin(stdin: asyncio.StreamWriter) -> None:
    stdin.close()
    try:
        await stdin.wait_closed()
    except _PIPE_CLOSED:
        log.debug("stdin already closed")


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
