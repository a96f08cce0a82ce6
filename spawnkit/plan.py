"""Spawn descriptor plan — ordered fd operations applied in the child.

The plan is pure data built in the parent. It is interpreted either as
``os.posix_spawn`` file actions or, by the fork/exec primitive, as direct
syscalls in the child before ``execve``.
"""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass
from typing import Iterator, TypeAlias

from spawnkit.exceptions import SpawnError

STANDARD_FDS = (0, 1, 2)


@dataclass(frozen=True)
class DupFd:
    source: int
    target: int

    step = "dup2"

    def apply(self) -> None:
        os.dup2(self.source, self.target)

    def file_action(self) -> tuple[int, ...]:
        if self.source < 0 or self.target < 0:
            raise SpawnError("posix_spawn_file_actions_adddup2", errno.EBADF)
        return (os.POSIX_SPAWN_DUP2, self.source, self.target)


@dataclass(frozen=True)
class CloseFd:
    fd: int

    step = "close"

    def apply(self) -> None:
        os.close(self.fd)

    def file_action(self) -> tuple[int, ...]:
        if self.fd < 0:
            raise SpawnError("posix_spawn_file_actions_addclose", errno.EBADF)
        return (os.POSIX_SPAWN_CLOSE, self.fd)


@dataclass(frozen=True)
class ChangeDir:
    path: str

    step = "chdir"

    def apply(self) -> None:
        os.chdir(self.path)

    def file_action(self) -> tuple[int, ...]:
        # os.posix_spawn has no chdir action; plans with one go through fork/exec.
        raise SpawnError("posix_spawn_file_actions_addchdir", errno.ENOTSUP)


SpawnAction: TypeAlias = DupFd | CloseFd | ChangeDir


class SpawnPlan:
    """An ordered list of ``SpawnAction``s."""

    def __init__(self) -> None:
        self._actions: list[SpawnAction] = []

    def __iter__(self) -> Iterator[SpawnAction]:
        return iter(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def __repr__(self) -> str:
        return f"SpawnPlan({self._actions!r})"

    @property
    def actions(self) -> tuple[SpawnAction, ...]:
        return tuple(self._actions)

    @property
    def changes_directory(self) -> bool:
        return any(isinstance(action, ChangeDir) for action in self._actions)

    def dup2(self, source: int, target: int) -> SpawnPlan:
        self._actions.append(DupFd(source, target))
        return self

    def close(self, fd: int) -> SpawnPlan:
        self._actions.append(CloseFd(fd))
        return self

    def chdir(self, path: str | os.PathLike[str]) -> SpawnPlan:
        self._actions.append(ChangeDir(os.fspath(path)))
        return self

    def redirect(self, wiring: dict[int, int]) -> SpawnPlan:
        """Wire ``{target_slot: source_fd}`` into the standard slots.

        All duplications come first, in slot order, then the originals are
        closed, so no source is closed before every dup2 that reads it.
        """
        for target in sorted(wiring):
            self.dup2(wiring[target], target)
        closed: set[int] = set()
        for target in sorted(wiring):
            source = wiring[target]
            if source in STANDARD_FDS or source in closed:
                continue
            self.close(source)
            closed.add(source)
        return self

    def file_actions(self) -> list[tuple[int, ...]]:
        """The plan as ``os.posix_spawn`` file actions."""
        return [action.file_action() for action in self._actions]
