"""spawnkit — run child processes and collect their output without deadlocks."""

from importlib.metadata import version, PackageNotFoundError

from spawnkit.api import launch, result, run, run_checked
from spawnkit.exceptions import (
    HandleStateError,
    ProcessFailedError,
    RunError,
    SpawnError,
    SpawnkitError,
)
from spawnkit.handle import ProcessHandle
from spawnkit.resolve import update_environment, which
from spawnkit.types import (
    BytesInput,
    FdInput,
    NoInput,
    Output,
    PathInput,
    StdinSource,
    StreamInput,
    TextInput,
)

try:
    __version__ = version("spawnkit")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development

__all__ = [
    "BytesInput",
    "FdInput",
    "HandleStateError",
    "NoInput",
    "Output",
    "PathInput",
    "ProcessFailedError",
    "ProcessHandle",
    "RunError",
    "SpawnError",
    "SpawnkitError",
    "StdinSource",
    "StreamInput",
    "TextInput",
    "launch",
    "result",
    "run",
    "run_checked",
    "update_environment",
    "which",
]
