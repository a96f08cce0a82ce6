"""Stream drains and the stdin feeder.

Each unit owns exactly one pipe end and closes it when it finishes, fails,
or is cancelled. They run as independent tasks: reading stdout, stderr and
writing stdin one after another can deadlock once a pipe buffer fills.
"""

from __future__ import annotations

import logging

from spawnkit.config import settings
from spawnkit.exceptions import RunError
from spawnkit.pipes import PipeEnd
from spawnkit.types import StdinSource

_logger = logging.getLogger(__name__)


async def drain_bytes(end: PipeEnd, chunk_size: int | None = None) -> bytes:
    """Read ``end`` to EOF and return everything read."""
    size = chunk_size or settings.read_chunk_size
    chunks: list[bytes] = []
    with end:
        while True:
            try:
                chunk = await end.read(size)
            except OSError as exc:
                raise RunError(f"read {end.name}", exc.errno) from exc
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


async def drain_text(
    end: PipeEnd,
    encoding: str | None = None,
    errors: str | None = None,
) -> str:
    """Read ``end`` to EOF and decode it; undecodable bytes are replaced."""
    data = await drain_bytes(end)
    return data.decode(
        encoding or settings.stderr_encoding,
        errors=errors or settings.stderr_errors,
    )


async def feed_stdin(end: PipeEnd, source: StdinSource, chunk_size: int | None = None) -> int:
    """Write ``source``'s payload into ``end``, then close it.

    Returns the number of bytes delivered. A child that exits (or closes its
    stdin) before consuming everything is not an error.
    """
    size = chunk_size or settings.write_chunk_size
    written = 0
    try:
        async for chunk in source.chunks():
            await end.write_all(chunk, size)
            written += len(chunk)
    except BrokenPipeError:
        _logger.debug("Child closed %s after %d bytes", end.name, written)
    except OSError as exc:
        raise RunError(f"write {end.name}", exc.errno) from exc
    finally:
        end.close()
    return written
