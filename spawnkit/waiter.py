"""Exit waiter — reaps one child and classifies how it ended."""

from __future__ import annotations

import asyncio
import errno
import os
import threading
from typing import NamedTuple

from spawnkit.exceptions import RunError

SIGNAL_EXIT_BASE = 128


class ExitStatus(NamedTuple):
    code: int  # 0-255, or 128 + signal number
    signal: int | None = None


def classify_status(raw: int) -> ExitStatus:
    """Map a raw ``waitpid`` status to an exit code, shell style."""
    if os.WIFEXITED(raw):
        return ExitStatus(os.WEXITSTATUS(raw))
    if os.WIFSIGNALED(raw):
        signum = os.WTERMSIG(raw)
        return ExitStatus(SIGNAL_EXIT_BASE + signum, signum)
    raise RunError("waitpid", errno.EINVAL)


class ChildReaper:
    """Reaps one child and gates signals against pid reuse.

    The wait first blocks with ``WNOWAIT``, leaving the child a zombie so its
    pid stays reserved. The actual reap and every ``send_signal`` then run
    under one lock, so a signal is never delivered after the pid is released.
    """

    def __init__(self, pid: int) -> None:
        self.pid = pid
        self.reaped = False
        self._lock = threading.Lock()

    def send_signal(self, sig: int) -> bool:
        """Deliver ``sig`` unless the child is already reaped. Returns whether it was sent."""
        with self._lock:
            if self.reaped:
                return False
            os.kill(self.pid, sig)
            return True

    def _wait_exited(self) -> None:
        if not hasattr(os, "waitid"):
            return
        while True:
            try:
                os.waitid(os.P_PID, self.pid, os.WEXITED | os.WNOWAIT)
            except InterruptedError:
                continue
            except OSError as exc:
                raise RunError("waitid", exc.errno, pid=self.pid) from exc
            return

    def _blocking_wait(self) -> int:
        self._wait_exited()
        with self._lock:
            while True:
                try:
                    _, raw = os.waitpid(self.pid, 0)
                except InterruptedError:
                    continue
                except OSError as exc:
                    raise RunError("waitpid", exc.errno, pid=self.pid) from exc
                self.reaped = True
                return raw

    async def wait(self) -> ExitStatus:
        """Wait for the child to terminate without blocking the event loop.

        Cancelling the caller does not interrupt the kernel wait; the worker
        thread still reaps the child once it exits.
        """
        raw = await asyncio.to_thread(self._blocking_wait)
        return classify_status(raw)


async def wait_for_exit(pid: int) -> ExitStatus:
    """Reap ``pid`` and classify its status."""
    return await ChildReaper(pid).wait()
