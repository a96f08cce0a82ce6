"""Process launcher — turns a launch request into a running child.

Resolves the executable, allocates pipes, builds the spawn plan, invokes
the spawn primitive, and hands back the parent-facing pipe ends. Anything
allocated before a failure is closed before the ``SpawnError`` propagates.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
from dataclasses import dataclass
from typing import Iterator, Mapping, Sequence

from spawnkit.exceptions import SpawnError
from spawnkit.pipes import Pipe, PipeEnd
from spawnkit.plan import STANDARD_FDS, SpawnPlan
from spawnkit.resolve import check_argument_size, merge_environment, resolve_executable
from spawnkit.spawn import spawn_process
from spawnkit.types import StdinSource

_logger = logging.getLogger(__name__)


@dataclass
class LaunchedProcess:
    """A freshly spawned child and the pipe ends the parent keeps."""

    pid: int
    argv: tuple[str, ...]
    path: str
    stdin: PipeEnd | None = None
    stdout: PipeEnd | None = None
    stderr: PipeEnd | None = None


@contextlib.contextmanager
def _launch_step(step: str, executable: str) -> Iterator[None]:
    try:
        yield
    except OSError as exc:
        raise SpawnError(step, exc.errno, executable=executable) from exc


def _above_standard_fds(end: PipeEnd) -> PipeEnd:
    """Move a child-bound descriptor out of 0-2 so redirects cannot clobber it."""
    fd = end.fileno()
    if fd not in STANDARD_FDS:
        return end
    lifted = fcntl.fcntl(fd, fcntl.F_DUPFD_CLOEXEC, len(STANDARD_FDS))
    end.close()
    return PipeEnd(lifted, end.name)


def start_process(
    executable: str,
    arguments: Sequence[str],
    stdin: StdinSource,
    env: Mapping[str, str] | None = None,
    cwd: str | os.PathLike[str] | None = None,
    capture_output: bool = True,
) -> LaunchedProcess:
    """Spawn ``executable`` and return its pid plus the parent-side pipe ends."""
    argv = (executable, *arguments)
    environment = merge_environment(env)
    path = resolve_executable(executable, environment)
    check_argument_size(argv, environment, executable)

    with contextlib.ExitStack() as cleanup:
        parent: dict[str, PipeEnd] = {}
        child: dict[int, PipeEnd] = {}

        if stdin.live_feed:
            with _launch_step("pipe", executable):
                pipe = cleanup.enter_context(Pipe("stdin"))
                pipe.write_end.set_blocking(False)
            parent["stdin"] = pipe.write_end
            child[0] = pipe.read_end
        else:
            with _launch_step(stdin.open_step, executable):
                fd = stdin.open_child_fd()
            if fd is not None:
                child[0] = cleanup.enter_context(PipeEnd(fd, "stdin"))

        if capture_output:
            for slot, name in ((1, "stdout"), (2, "stderr")):
                with _launch_step("pipe", executable):
                    pipe = cleanup.enter_context(Pipe(name))
                    pipe.read_end.set_blocking(False)
                parent[name] = pipe.read_end
                child[slot] = pipe.write_end

        with _launch_step("dup", executable):
            for slot, end in list(child.items()):
                child[slot] = cleanup.enter_context(_above_standard_fds(end))

        plan = SpawnPlan().redirect({slot: end.fileno() for slot, end in child.items()})
        if cwd is not None:
            plan.chdir(cwd)

        _logger.debug("Launching %s as %s with %r", executable, path, plan)
        pid = spawn_process(path, argv, environment, plan)

        # The child has its copies now; the parent keeps only its own ends.
        for end in child.values():
            end.close()
        cleanup.pop_all()

    _logger.info("Spawned pid %d: %s (%d args)", pid, path, len(argv))
    return LaunchedProcess(
        pid=pid,
        argv=argv,
        path=path,
        stdin=parent.get("stdin"),
        stdout=parent.get("stdout"),
        stderr=parent.get("stderr"),
    )
