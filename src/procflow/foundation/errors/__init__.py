"""Unified error handling for procflow.

- ErrorCode: Standard failure classification
- ProcessFailure: Validated description of a failed process
- ProcflowError and subclasses: Exceptions raised by sequences, bridges and processes
"""

from .errors import (
    BridgeCancelledError,
    BridgeClosedError,
    EmptySequenceError,
    ErrorCode,
    ExitCodeError,
    InputStreamError,
    ProcessError,
    ProcessFailure,
    ProcflowError,
    SignalError,
    SpawnError,
    StageError,
)

__all__ = [
    "ErrorCode", "ProcessFailure",
    # Exceptions
    "ProcflowError", "ProcessError", "SpawnError", "ExitCodeError", "SignalError",
    "InputStreamError", "BridgeClosedError", "BridgeCancelledError", "StageError",
    "EmptySequenceError",
]
