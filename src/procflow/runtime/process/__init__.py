"""Child processes as pipeline stages.

- ProcessHandle: spawn/feed/drain/wait/kill lifecycle of one child
- run: spawn a command and get its stdout as a ProcessSequence
- ProcessOptions: validated spawn options (cwd, env, stream modes, handlers)
"""

from .handle import ProcessHandle, ProcessInput, ProcessSequence, ProcessState
from .options import ErrorHandler, ProcessOptions, StderrHandler, StderrMode, StreamMode
from .run import run
from .stderr import StderrTail

__all__ = [
    "ProcessHandle",
    "ProcessSequence",
    "ProcessState",
    "ProcessInput",
    "ProcessOptions",
    "StreamMode",
    "StderrMode",
    "StderrHandler",
    "ErrorHandler",
    "StderrTail",
    "run",
]
