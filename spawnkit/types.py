"""Core types shared across spawnkit: stdin sources, results, lifecycle states."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, ClassVar

from pydantic import BaseModel

# ── Handle lifecycle ─────────────────────────────────────────────────────────


class HandleState(str, Enum):
    NOT_LAUNCHED = "not_launched"
    LAUNCHED = "launched"
    SPAWN_FAILED = "spawn_failed"
    RESULT_PENDING = "result_pending"
    COMPLETED = "completed"


# ── Stdin sources ────────────────────────────────────────────────────────────


class StdinSource:
    """Where the child's standard input comes from.

    A source either hands the launcher a descriptor to duplicate into the
    child's fd 0 (``open_child_fd``) or, when ``live_feed`` is set, asks for
    a pipe and supplies the payload through ``chunks``.
    """

    live_feed: ClassVar[bool] = False
    open_step: ClassVar[str] = "dup"

    def open_child_fd(self) -> int | None:
        """Return a new descriptor owned by the engine, or None to inherit."""
        return None

    def chunks(self) -> AsyncIterator[bytes]:
        raise NotImplementedError(f"{type(self).__name__} has no live payload")


@dataclass(frozen=True)
class NoInput(StdinSource):
    """Inherit the parent's standard input."""


@dataclass(frozen=True)
class BytesInput(StdinSource):
    data: bytes

    live_feed: ClassVar[bool] = True

    async def chunks(self) -> AsyncIterator[bytes]:
        yield bytes(self.data)


@dataclass(frozen=True)
class TextInput(StdinSource):
    text: str
    encoding: str = "utf-8"

    live_feed: ClassVar[bool] = True

    async def chunks(self) -> AsyncIterator[bytes]:
        yield self.text.encode(self.encoding)


@dataclass(frozen=True)
class FdInput(StdinSource):
    """An already-open readable descriptor. The caller keeps ownership of it."""

    fd: int

    def open_child_fd(self) -> int:
        return os.dup(self.fd)


@dataclass(frozen=True)
class PathInput(StdinSource):
    path: str | os.PathLike[str]

    open_step: ClassVar[str] = "open"

    def open_child_fd(self) -> int:
        return os.open(self.path, os.O_RDONLY | os.O_CLOEXEC)


@dataclass(frozen=True)
class StreamInput(StdinSource):
    """A push-based byte stream, pulled until exhausted."""

    stream: AsyncIterable[bytes]

    live_feed: ClassVar[bool] = True

    async def chunks(self) -> AsyncIterator[bytes]:
        async for chunk in self.stream:
            # bytes(n) would silently become n zero bytes.
            if not isinstance(chunk, (bytes, bytearray, memoryview)):
                raise TypeError(f"stdin stream yielded {type(chunk).__name__}, expected bytes")
            yield bytes(chunk)


def coerce_stdin(value: Any) -> StdinSource:
    """Map a plain Python value onto exactly one ``StdinSource`` variant."""
    if value is None:
        return NoInput()
    if isinstance(value, StdinSource):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BytesInput(bytes(value))
    if isinstance(value, str):
        return TextInput(value)
    if isinstance(value, bool):
        raise TypeError("stdin must not be a bool")
    if isinstance(value, int):
        return FdInput(value)
    if isinstance(value, os.PathLike):
        return PathInput(value)
    if hasattr(value, "__aiter__"):
        return StreamInput(value)
    raise TypeError(f"Unsupported stdin source: {type(value).__name__}")


# ── Result ───────────────────────────────────────────────────────────────────


class Output(BaseModel):
    """Aggregated outcome of one child process."""

    argv: tuple[str, ...]
    pid: int
    exit_code: int  # 0-255, or 128 + signal number
    signal: int | None = None
    stdout: bytes = b""
    stderr: str = ""

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def text(self, encoding: str = "utf-8", errors: str = "replace") -> str:
        return self.stdout.decode(encoding, errors=errors)

    def lines(self, encoding: str = "utf-8") -> list[str]:
        """Captured stdout split into lines, without line terminators."""
        return self.text(encoding).splitlines()
