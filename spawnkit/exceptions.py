"""Custom exception hierarchy for spawnkit."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from spawnkit.types import Output


def _describe(step: str, errno: int | None) -> str:
    if errno is None:
        return step
    return f"{step}: {os.strerror(errno)} (errno {errno})"


class SpawnkitError(Exception):
    """Base for all recoverable spawnkit errors."""


class SpawnError(SpawnkitError):
    """The child could not be started.

    Covers executable resolution, pipe allocation, spawn plan construction
    and the spawn call itself. ``step`` names the failing operation.
    """

    def __init__(self, step: str, errno: int | None, executable: str = "") -> None:
        self.step = step
        self.errno = errno
        self.executable = executable
        prefix = f"{executable}: " if executable else ""
        super().__init__(prefix + _describe(step, errno))


class RunError(SpawnkitError):
    """A launched child could not be waited on or its streams serviced."""

    def __init__(self, step: str, errno: int | None, pid: int | None = None) -> None:
        self.step = step
        self.errno = errno
        self.pid = pid
        prefix = f"pid {pid}: " if pid is not None else ""
        super().__init__(prefix + _describe(step, errno))


class ProcessFailedError(SpawnkitError):
    """The child exited with a non-zero status (raised by ``run_checked``)."""

    def __init__(self, output: Output) -> None:
        self.output = output
        super().__init__(
            f"{' '.join(output.argv)} exited with status {output.exit_code}"
        )


class HandleStateError(AssertionError):
    """A process handle was driven through an invalid lifecycle transition.

    This is a caller bug (double launch, double result), not an
    environmental condition, so it is not a ``SpawnkitError``.
    """
