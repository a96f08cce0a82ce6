"""Spawn primitives — execute a ``SpawnPlan`` and start the program image.

Plans made only of dup2/close actions go through ``os.posix_spawn``. Plans
that change directory go through fork/exec, because ``os.posix_spawn``
offers no chdir file action. In that path the child reports the failing
step and errno over a close-on-exec error pipe, so a bad working directory
is always a ``SpawnError(step="chdir")`` regardless of platform.
"""

from __future__ import annotations

import errno
import logging
import os
import signal
from typing import Mapping, Sequence

from spawnkit.exceptions import SpawnError
from spawnkit.plan import SpawnPlan

_logger = logging.getLogger(__name__)

# Python ignores SIGPIPE; the child should get the default disposition back.
_DEFAULT_SIGNALS = tuple(
    sig
    for sig in (getattr(signal, name, None) for name in ("SIGPIPE", "SIGXFSZ"))
    if sig is not None
)

_CHILD_FAILED = 127


def spawn_process(
    path: str,
    argv: Sequence[str],
    environment: Mapping[str, str],
    plan: SpawnPlan,
) -> int:
    """Start ``path`` with ``argv`` and ``environment`` after applying ``plan``.

    Returns the child's pid. Raises ``SpawnError`` naming the failing step.
    """
    if plan.changes_directory:
        return _fork_exec(path, argv, environment, plan)
    return _posix_spawn(path, argv, environment, plan)


def _posix_spawn(
    path: str,
    argv: Sequence[str],
    environment: Mapping[str, str],
    plan: SpawnPlan,
) -> int:
    file_actions = plan.file_actions()
    try:
        return os.posix_spawn(
            path,
            list(argv),
            dict(environment),
            file_actions=file_actions,
            setsigdef=_DEFAULT_SIGNALS,
        )
    except OSError as exc:
        raise SpawnError("posix_spawn", exc.errno, executable=argv[0]) from exc


def _fork_exec(
    path: str,
    argv: Sequence[str],
    environment: Mapping[str, str],
    plan: SpawnPlan,
) -> int:
    argv = list(argv)
    environment = dict(environment)
    actions = plan.actions

    try:
        error_read, error_write = os.pipe()
    except OSError as exc:
        raise SpawnError("pipe", exc.errno, executable=argv[0]) from exc

    try:
        pid = os.fork()
    except OSError as exc:
        os.close(error_read)
        os.close(error_write)
        raise SpawnError("fork", exc.errno, executable=argv[0]) from exc

    if pid == 0:
        # Child: only raw syscalls from here until execve or _exit.
        step = "fork"
        try:
            os.close(error_read)
            for sig in _DEFAULT_SIGNALS:
                signal.signal(sig, signal.SIG_DFL)
            for action in actions:
                step = action.step
                action.apply()
            step = "execve"
            os.execve(path, argv, environment)
        except OSError as exc:
            os.write(error_write, f"{step}:{exc.errno or errno.EIO}".encode())
        except Exception:
            os.write(error_write, f"{step}:{errno.EIO}".encode())
        finally:
            os._exit(_CHILD_FAILED)

    os.close(error_write)
    try:
        report = _read_report(error_read)
    finally:
        os.close(error_read)

    if not report:
        return pid

    _reap(pid)
    step, _, code = report.decode("ascii", errors="replace").partition(":")
    try:
        child_errno = int(code)
    except ValueError:
        child_errno = errno.EIO
    raise SpawnError(step or "execve", child_errno, executable=argv[0])


def _read_report(fd: int) -> bytes:
    """Read the child's error report; EOF without data means execve succeeded."""
    chunks = []
    while True:
        try:
            chunk = os.read(fd, 256)
        except InterruptedError:
            continue
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def _reap(pid: int) -> None:
    while True:
        try:
            os.waitpid(pid, 0)
        except InterruptedError:
            continue
        except ChildProcessError:
            _logger.warning("Could not reap failed child %d", pid)
        return
