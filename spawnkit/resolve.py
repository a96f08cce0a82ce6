"""Launch-time collaborators: executable lookup, environment merge, argv limits."""

from __future__ import annotations

import errno
import os
import stat
import threading
from typing import Mapping, Sequence

from spawnkit.config import settings
from spawnkit.exceptions import SpawnError

# Launch-time snapshots of os.environ and update_environment() share this
# lock. Writes that bypass update_environment() are not covered by it.
_ENVIRON_LOCK = threading.Lock()


def _is_executable_file(path: str) -> bool:
    try:
        st = os.stat(path)
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode) and os.access(path, os.X_OK)


def which(name: str, path: str | None = None) -> str | None:
    """Find ``name`` on a colon-separated search path.

    Names containing a slash are checked as given. Directories, special
    files and non-executable candidates are skipped. Returns an absolute
    path or None.
    """
    if not name:
        return None
    if os.sep in name:
        return os.path.abspath(name) if _is_executable_file(name) else None

    if path is None:
        path = os.environ.get("PATH", settings.default_path)
    for directory in path.split(os.pathsep):
        # An empty entry means the current directory.
        candidate = os.path.join(directory or os.curdir, name)
        if _is_executable_file(candidate):
            return os.path.abspath(candidate)
    return None


def resolve_executable(name: str, environment: Mapping[str, str]) -> str:
    """Resolve ``name`` to an absolute path, or raise ``SpawnError(step="resolve")``."""
    resolved = which(name, environment.get("PATH", settings.default_path))
    if resolved is not None:
        return resolved

    code = errno.ENOENT
    if os.sep in name and os.path.exists(name):
        code = errno.EACCES
    raise SpawnError("resolve", code, executable=name)


def update_environment(changes: Mapping[str, str | None]) -> None:
    """Set (or, for None values, remove) process environment variables.

    Use this instead of assigning to ``os.environ`` while launches may be in
    flight on other threads, so no launch snapshots a half-applied update.
    """
    with _ENVIRON_LOCK:
        for key, value in changes.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


def merge_environment(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Snapshot the process environment and apply ``overrides`` on top."""
    with _ENVIRON_LOCK:
        environment = dict(os.environ)
    if overrides:
        environment.update(overrides)
    return environment


def argument_size(argv: Sequence[str], environment: Mapping[str, str]) -> int:
    """Bytes the kernel needs for argv and envp, including terminators."""
    total = sum(len(os.fsencode(arg)) + 1 for arg in argv)
    total += sum(
        len(os.fsencode(key)) + len(os.fsencode(value)) + 2
        for key, value in environment.items()
    )
    return total


def check_argument_size(
    argv: Sequence[str], environment: Mapping[str, str], executable: str = ""
) -> None:
    """Raise ``SpawnError(step="arg_max")`` when argv + envp exceed ARG_MAX."""
    try:
        limit = os.sysconf("SC_ARG_MAX")
    except (ValueError, OSError):
        return
    if limit > 0 and argument_size(argv, environment) > limit:
        raise SpawnError("arg_max", errno.E2BIG, executable=executable)
