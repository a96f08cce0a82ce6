"""Public entry points: launch, result, run, run_checked."""

from __future__ import annotations

import os
from typing import Any, Mapping, Sequence

from spawnkit.events import EventBus
from spawnkit.exceptions import ProcessFailedError
from spawnkit.handle import ProcessHandle
from spawnkit.types import Output


async def launch(
    executable: str,
    arguments: Sequence[str] = (),
    *,
    stdin: Any = None,
    env: Mapping[str, str] | None = None,
    cwd: str | os.PathLike[str] | None = None,
    capture_output: bool = True,
    events: EventBus | None = None,
) -> ProcessHandle:
    """Start ``executable`` and return its handle.

    ``stdin`` may be a ``StdinSource`` or a plain value: ``bytes``/``str``
    (fed through a pipe), an ``int`` descriptor or ``os.PathLike`` (handed
    to the child directly), an async iterable of ``bytes``, or None to
    inherit. ``env`` entries override the inherited environment.
    """
    handle = ProcessHandle(
        executable,
        arguments,
        stdin=stdin,
        env=env,
        cwd=cwd,
        capture_output=capture_output,
        events=events,
    )
    return await handle.launch()


async def result(handle: ProcessHandle) -> Output:
    """Wait for ``handle`` to finish and collect its output. Once per handle."""
    return await handle.result()


async def run(executable: str, arguments: Sequence[str] = (), **options: Any) -> Output:
    """``launch`` followed by ``result``. A non-zero exit is returned, not raised."""
    handle = await launch(executable, arguments, **options)
    return await handle.result()


async def run_checked(executable: str, arguments: Sequence[str] = (), **options: Any) -> Output:
    """Like ``run`` but raises ``ProcessFailedError`` on a non-zero exit."""
    output = await run(executable, arguments, **options)
    if not output.ok:
        raise ProcessFailedError(output)
    return output
