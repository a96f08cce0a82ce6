"""Pipe pairs and non-blocking async I/O on their ends.

Every descriptor the engine allocates is wrapped in a ``PipeEnd`` so that
closing is idempotent and can sit in ``with`` blocks and ``finally``
clauses without double-close hazards.
"""

from __future__ import annotations

import asyncio
import os
from typing import Callable


class PipeEnd:
    """One end of a pipe (or any descriptor the engine owns)."""

    def __init__(self, fd: int, name: str = "") -> None:
        self._fd: int | None = fd
        self.name = name

    def __repr__(self) -> str:
        state = "closed" if self._fd is None else f"fd={self._fd}"
        return f"<PipeEnd {self.name} {state}>"

    def __enter__(self) -> PipeEnd:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._fd is None

    def fileno(self) -> int:
        if self._fd is None:
            raise ValueError(f"I/O operation on closed pipe end {self.name!r}")
        return self._fd

    def close(self) -> None:
        """Close the descriptor. Calling it again is a no-op."""
        fd, self._fd = self._fd, None
        if fd is not None:
            os.close(fd)

    def set_blocking(self, blocking: bool) -> None:
        os.set_blocking(self.fileno(), blocking)

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means end of file."""
        fd = self.fileno()
        loop = asyncio.get_running_loop()
        while True:
            try:
                return os.read(fd, size)
            except InterruptedError:
                continue
            except BlockingIOError:
                await _until_ready(fd, loop.add_reader, loop.remove_reader)

    async def write(self, data: bytes | memoryview) -> int:
        """Write some of ``data``, waiting for the pipe to accept at least one byte."""
        fd = self.fileno()
        loop = asyncio.get_running_loop()
        while True:
            try:
                return os.write(fd, data)
            except InterruptedError:
                continue
            except BlockingIOError:
                await _until_ready(fd, loop.add_writer, loop.remove_writer)

    async def write_all(self, data: bytes, chunk_size: int = 65536) -> None:
        view = memoryview(data)
        while view:
            written = await self.write(view[:chunk_size])
            view = view[written:]


async def _until_ready(
    fd: int,
    add: Callable[..., None],
    remove: Callable[[int], bool],
) -> None:
    future = asyncio.get_running_loop().create_future()

    def _ready() -> None:
        if not future.done():
            future.set_result(None)

    add(fd, _ready)
    try:
        await future
    finally:
        remove(fd)


class Pipe:
    """An OS pipe: ``read_end`` and ``write_end``, both close-on-exec."""

    def __init__(self, name: str = "") -> None:
        read_fd, write_fd = os.pipe()
        self.name = name
        self.read_end = PipeEnd(read_fd, f"{name}:r")
        self.write_end = PipeEnd(write_fd, f"{name}:w")

    def __enter__(self) -> Pipe:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.read_end.close()
        self.write_end.close()
