"""Run a command as a pipeline stage."""

from __future__ import annotations

import os
from typing import Any

from .handle import ProcessHandle, ProcessInput, ProcessSequence
from .options import ProcessOptions

__all__ = ["run", "ProcessSequence"]


async def run(
    command: str | os.PathLike[str],
    *args: str | os.PathLike[str],
    input: ProcessInput | None = None,  # noqa: A002 - mirrors subprocess.run
    options: ProcessOptions | None = None,
    **kwargs: Any,
) -> ProcessSequence:
    """Spawn a command and return its standard output as a sequence.

    The process is released when the sequence ends or is closed. A non-zero
    exit or a signal is raised from the sequence after its last chunk.

    Example:
        >>> out = await run("ls", "-1", cwd="/tmp")
        >>> names = await out.lines().collect()
        >>>
        >>> # Chain processes
        >>> count = await (await out.pipe("wc", "-l")).lines().first()

    Raises:
        SpawnError: The command could not be started
    """
    handle = await ProcessHandle.spawn(command, *args, input=input, options=options, **kwargs)
    return handle.stdout
