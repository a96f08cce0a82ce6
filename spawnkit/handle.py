"""ProcessHandle — one launched child, its pipes, and its lifecycle.

    not_launched --launch()--> launched --result()--> result_pending --> completed
                 \\-(spawn error)-> spawn_failed

``launch`` and ``result`` may each run once. Driving the handle through
any other transition is a caller bug and raises ``HandleStateError``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Coroutine, Mapping, Sequence

from spawnkit.events import EventBus, ProcessEvent
from spawnkit.exceptions import HandleStateError, SpawnError
from spawnkit.launcher import start_process
from spawnkit.pipes import PipeEnd
from spawnkit.streams import drain_bytes, drain_text, feed_stdin
from spawnkit.types import HandleState, Output, coerce_stdin
from spawnkit.waiter import ChildReaper, ExitStatus

_logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[HandleState, set[HandleState]] = {
    HandleState.NOT_LAUNCHED: {HandleState.LAUNCHED, HandleState.SPAWN_FAILED},
    HandleState.LAUNCHED: {HandleState.RESULT_PENDING},
    HandleState.SPAWN_FAILED: set(),  # terminal
    HandleState.RESULT_PENDING: {HandleState.COMPLETED},
    HandleState.COMPLETED: set(),  # terminal
}


class ProcessHandle:
    """Owns a child's pid and the parent-side ends of its pipes."""

    def __init__(
        self,
        executable: str,
        arguments: Sequence[str] = (),
        *,
        stdin: Any = None,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        capture_output: bool = True,
        events: EventBus | None = None,
    ) -> None:
        self.executable = executable
        self.arguments = tuple(arguments)
        self.stdin_source = coerce_stdin(stdin)
        self.env = dict(env) if env else None
        self.cwd = cwd
        self.capture_output = capture_output
        self.pid: int | None = None
        self.argv: tuple[str, ...] = (executable, *self.arguments)
        self.errors: list[BaseException] = []
        self._events = events
        self._state = HandleState.NOT_LAUNCHED
        self._stdin: PipeEnd | None = None
        self._stdout: PipeEnd | None = None
        self._stderr: PipeEnd | None = None
        self._reaper: ChildReaper | None = None

    def __repr__(self) -> str:
        return f"<ProcessHandle {self.executable!r} pid={self.pid} {self._state.value}>"

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def launched(self) -> bool:
        return self._state not in (HandleState.NOT_LAUNCHED, HandleState.SPAWN_FAILED)

    @property
    def result_taken(self) -> bool:
        return self._state in (HandleState.RESULT_PENDING, HandleState.COMPLETED)

    def _require(self, target: HandleState) -> None:
        if target not in VALID_TRANSITIONS[self._state]:
            raise HandleStateError(
                f"Cannot move process handle for {self.executable!r} "
                f"from {self._state.value} to {target.value}"
            )

    def _transition(self, target: HandleState) -> None:
        self._require(target)
        self._state = target

    async def _emit(self, topic: str, data: dict) -> None:
        if self._events is not None:
            await self._events.emit(ProcessEvent(
                topic=topic, executable=self.executable, pid=self.pid, data=data,
            ))

    # ── Launch ────────────────────────────────────────────────────────────

    async def launch(self) -> ProcessHandle:
        """Start the child. Raises ``SpawnError``; no child exists afterwards."""
        self._require(HandleState.LAUNCHED)
        try:
            launched = start_process(
                self.executable,
                self.arguments,
                self.stdin_source,
                env=self.env,
                cwd=self.cwd,
                capture_output=self.capture_output,
            )
        except SpawnError as exc:
            self._transition(HandleState.SPAWN_FAILED)
            _logger.info("Could not start %s: %s", self.executable, exc)
            await self._emit("process.spawn_failed", {
                "step": exc.step,
                "errno": exc.errno,
            })
            raise

        self._transition(HandleState.LAUNCHED)
        self.pid = launched.pid
        self._reaper = ChildReaper(launched.pid)
        self._stdin = launched.stdin
        self._stdout = launched.stdout
        self._stderr = launched.stderr
        await self._emit("process.spawned", {
            "path": launched.path,
            "argv": list(launched.argv),
        })
        return self

    # ── Result ────────────────────────────────────────────────────────────

    async def result(self) -> Output:
        """Wait for exit while draining output; callable exactly once."""
        self._transition(HandleState.RESULT_PENDING)
        pid = self.pid

        units: dict[str, Coroutine[Any, Any, Any]] = {"wait": self._reaper.wait()}
        if self._stdout is not None:
            units["stdout"] = drain_bytes(self._stdout)
        if self._stderr is not None:
            units["stderr"] = drain_text(self._stderr)
        if self._stdin is not None:
            units["stdin"] = feed_stdin(self._stdin, self.stdin_source)

        tasks = {
            label: asyncio.create_task(unit, name=f"spawnkit-{pid}-{label}")
            for label, unit in units.items()
        }
        try:
            outcomes = dict(zip(
                tasks,
                await asyncio.gather(*tasks.values(), return_exceptions=True),
            ))
        except asyncio.CancelledError:
            # Let each unit unregister its descriptor before the ends are closed.
            for task in tasks.values():
                task.cancel()
            await asyncio.wait(list(tasks.values()))
            raise
        finally:
            self.close()

        status = outcomes.pop("wait")
        for label, outcome in outcomes.items():
            if isinstance(outcome, BaseException):
                self.errors.append(outcome)
                _logger.warning("pid %d: %s failed: %r", pid, label, outcome)
        if isinstance(status, BaseException):
            raise status

        output = self._build_output(pid, status, outcomes)
        self._transition(HandleState.COMPLETED)
        _logger.info("pid %d exited with status %d", pid, output.exit_code)
        await self._emit("process.exited", {
            "exit_code": output.exit_code,
            "signal": output.signal,
        })
        return output

    def _build_output(self, pid: int, status: ExitStatus, outcomes: dict[str, Any]) -> Output:
        stdout = outcomes.get("stdout")
        stderr = outcomes.get("stderr")
        return Output(
            argv=self.argv,
            pid=pid,
            exit_code=status.code,
            signal=status.signal,
            stdout=stdout if isinstance(stdout, bytes) else b"",
            stderr=stderr if isinstance(stderr, str) else "",
        )

    # ── Resources ─────────────────────────────────────────────────────────

    def send_signal(self, sig: int) -> bool:
        """Signal the child. Returns False, sending nothing, once it has been reaped."""
        if self._reaper is None:
            return False
        return self._reaper.send_signal(sig)

    def close(self) -> None:
        """Close every parent-side pipe end; safe to call repeatedly."""
        for end in (self._stdin, self._stdout, self._stderr):
            if end is not None:
                end.close()
