from __future__ import annotations


class HarnessError(Exception):
    """Base class for failures raised by the benchmark harness."""

    kind = "harness_error"


class InvalidParams(HarnessError):
    """Raised when scenario parameters are rejected before anything is spawned."""

    kind = "invalid_params"


class SpawnFailed(HarnessError):
    """Raised when the interpreter could not be launched."""

    kind = "spawn_failed"


class ChildCrashed(HarnessError):
    """Raised when a child process was terminated by a signal."""

    kind = "child_crashed"

    def __init__(self, message: str, signal: int | None = None) -> None:
        super().__init__(message)
        self.signal = signal


class NonZeroExit(HarnessError):
    kind = "non_zero_exit"

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class WorkloadTimeout(HarnessError):
    """Raised when a child exceeded its wall-clock budget and was killed."""

    kind = "timeout"


__all__ = [
    "HarnessError",
    "InvalidParams",
    "SpawnFailed",
    "ChildCrashed",
    "NonZeroExit",
    "WorkloadTimeout",
]
