"""Tests for ProcessHandle — launch, concurrent draining, and the result join."""

from __future__ import annotations

import asyncio
import errno
import os
import signal
import sys

import pytest

from spawnkit.exceptions import HandleStateError, SpawnError
from spawnkit.handle import ProcessHandle
from spawnkit.types import FdInput, HandleState, StreamInput


async def _run(handle: ProcessHandle):
    await handle.launch()
    return await handle.result()


# ── Exit status ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_normal_exit_code(python):
    output = await _run(ProcessHandle(*python("import sys; sys.exit(3)")))
    assert output.exit_code == 3
    assert output.signal is None
    assert not output.ok


@pytest.mark.asyncio
async def test_signal_exit_is_128_plus_signal():
    output = await _run(ProcessHandle("/bin/sh", ["-c", "kill -9 $$"]))
    assert output.exit_code == 137
    assert output.signal == signal.SIGKILL


# ── Capture ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_interleaved_output_larger_than_pipe_buffer(python):
    code = """
        import sys
        out, err = sys.stdout.buffer, sys.stderr.buffer
        for _ in range(2000):
            out.write(b"o" * 101)
            err.write(b"e" * 101)
            out.flush()
            err.flush()
    """
    output = await _run(ProcessHandle(*python(code)))
    assert output.exit_code == 0
    assert output.stdout == b"o" * 202000
    assert output.stderr == "e" * 202000


@pytest.mark.asyncio
async def test_no_deadlock_when_child_fills_stderr_before_reading_stdin(python):
    code = """
        import sys
        sys.stderr.buffer.write(b"x" * 70000)
        sys.stderr.flush()
        data = sys.stdin.buffer.read(65536)
        sys.stdout.buffer.write(data)
    """
    payload = bytes(range(256)) * 256
    handle = ProcessHandle(*python(code), stdin=payload)
    output = await asyncio.wait_for(_run(handle), timeout=30)
    assert output.exit_code == 0
    assert output.stdout == payload
    assert len(output.stderr) == 70000


@pytest.mark.asyncio
async def test_capture_disabled_gives_empty_output(python):
    output = await _run(ProcessHandle(*python("pass"), capture_output=False))
    assert output.stdout == b""
    assert output.stderr == ""


@pytest.mark.asyncio
async def test_undecodable_stderr_is_replaced(python):
    code = "import sys; sys.stderr.buffer.write(b'bad \\xff byte')"
    output = await _run(ProcessHandle(*python(code)))
    assert output.stderr == "bad \ufffd byte"


# ── Stdin sources ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_text_stdin_is_echoed():
    output = await _run(ProcessHandle("cat", stdin="hello\n"))
    assert output.stdout == b"hello\n"


@pytest.mark.asyncio
async def test_fd_stdin_leaves_caller_descriptor_open(tmp_path):
    source = tmp_path / "in.txt"
    source.write_bytes(b"from a descriptor")
    with open(source, "rb") as fh:
        output = await _run(ProcessHandle("cat", stdin=FdInput(fh.fileno())))
        os.fstat(fh.fileno())  # still ours
    assert output.stdout == b"from a descriptor"


@pytest.mark.asyncio
async def test_path_stdin(tmp_path):
    source = tmp_path / "in.txt"
    source.write_text("from a path\n")
    output = await _run(ProcessHandle("cat", stdin=source))
    assert output.stdout == b"from a path\n"


@pytest.mark.asyncio
async def test_stream_stdin():
    async def chunks():
        for i in range(3):
            yield f"line {i}\n".encode()
            await asyncio.sleep(0)

    output = await _run(ProcessHandle("cat", stdin=chunks()))
    assert output.lines() == ["line 0", "line 1", "line 2"]


@pytest.mark.asyncio
async def test_child_exiting_before_reading_stdin_is_not_an_error():
    handle = ProcessHandle("/bin/sh", ["-c", "exit 0"], stdin=b"x" * (1 << 20))
    output = await _run(handle)
    assert output.exit_code == 0
    assert handle.errors == []


# ── Environment, cwd, argv ─────────────────────────────────────


@pytest.mark.asyncio
async def test_working_directory(python, tmp_path):
    (tmp_path / "marker.txt").write_text("here")
    code = "import os; print(os.getcwd()); print(os.listdir('.'))"
    output = await _run(ProcessHandle(*python(code), cwd=tmp_path))
    lines = output.lines()
    assert lines[0] == os.path.realpath(tmp_path)
    assert "marker.txt" in lines[1]


@pytest.mark.asyncio
async def test_missing_working_directory_is_spawn_error(python, tmp_path):
    handle = ProcessHandle(*python("pass"), cwd=tmp_path / "missing")
    with pytest.raises(SpawnError) as info:
        await handle.launch()
    assert info.value.step == "chdir"
    assert info.value.errno == errno.ENOENT
    assert handle.state is HandleState.SPAWN_FAILED


@pytest.mark.asyncio
async def test_env_overrides_win(python, monkeypatch):
    monkeypatch.setenv("SPAWNKIT_TEST_VAR", "parent")
    monkeypatch.setenv("SPAWNKIT_INHERITED", "kept")
    code = "import os; print(os.environ['SPAWNKIT_TEST_VAR'], os.environ['SPAWNKIT_INHERITED'])"
    output = await _run(ProcessHandle(*python(code), env={"SPAWNKIT_TEST_VAR": "child"}))
    assert output.stdout == b"child kept\n"


@pytest.mark.asyncio
async def test_argv0_is_the_unresolved_name():
    directory, name = os.path.split(sys.executable)
    code = "import sys; print(sys.orig_argv[0])"
    handle = ProcessHandle(name, ["-c", code], env={"PATH": directory})
    output = await _run(handle)
    assert output.stdout == f"{name}\n".encode()
    assert output.argv[0] == name


# ── Lifecycle invariants ───────────────────────────────────────


@pytest.mark.asyncio
async def test_result_twice_fails_loudly(python):
    handle = ProcessHandle(*python("print('once')"))
    output = await _run(handle)
    assert output.stdout == b"once\n"
    assert handle.state is HandleState.COMPLETED
    with pytest.raises(HandleStateError):
        await handle.result()


@pytest.mark.asyncio
async def test_launch_twice_fails_loudly(python):
    handle = ProcessHandle(*python("pass"))
    await handle.launch()
    with pytest.raises(HandleStateError):
        await handle.launch()
    await handle.result()


@pytest.mark.asyncio
async def test_result_before_launch_fails_loudly(python):
    handle = ProcessHandle(*python("pass"))
    with pytest.raises(HandleStateError):
        await handle.result()


def test_handle_state_error_is_not_recoverable_error():
    from spawnkit.exceptions import SpawnkitError

    assert issubclass(HandleStateError, AssertionError)
    assert not issubclass(HandleStateError, SpawnkitError)


@pytest.mark.asyncio
async def test_nonexistent_executable():
    handle = ProcessHandle("/nonexistent/path-xyz")
    with pytest.raises(SpawnError) as info:
        await handle.launch()
    assert info.value.step == "resolve"
    assert info.value.errno == errno.ENOENT
    with pytest.raises(HandleStateError):
        await handle.launch()


@pytest.mark.asyncio
async def test_flags_follow_state(python):
    handle = ProcessHandle(*python("pass"))
    assert not handle.launched and not handle.result_taken
    await handle.launch()
    assert handle.launched and not handle.result_taken
    await handle.result()
    assert handle.result_taken


# ── Cancellation ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancelled_result_closes_pipes(python):
    handle = ProcessHandle(*python("import time; time.sleep(30)"))
    await handle.launch()
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(handle.result(), timeout=0.2)
    assert handle.state is HandleState.RESULT_PENDING
    assert handle._stdout.closed
    assert handle._stderr.closed
    assert handle.send_signal(signal.SIGKILL)


@pytest.mark.asyncio
async def test_cancelled_feeder_still_closes_stdin():
    gate = asyncio.Event()

    async def never_ending():
        yield b"partial\n"
        await gate.wait()

    handle = ProcessHandle("cat", stdin=StreamInput(never_ending()))
    await handle.launch()
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(handle.result(), timeout=0.3)
    # cat sees end of input and exits on its own.
    assert handle._stdin.closed


@pytest.mark.asyncio
async def test_concurrent_launches(python):
    handles = [ProcessHandle(*python(f"print({i})")) for i in range(5)]
    outputs = await asyncio.gather(*(_run(h) for h in handles))
    assert [o.stdout for o in outputs] == [f"{i}\n".encode() for i in range(5)]
    assert len({o.pid for o in outputs}) == 5


# ── Failure paths ──────────────────────────────────────────────


def _open_fds() -> set[str]:
    return set(os.listdir("/dev/fd"))


@pytest.mark.asyncio
@pytest.mark.parametrize("executable", ["/bin/sh", "/nonexistent/path-xyz"])
async def test_failed_launch_closes_every_descriptor(tmp_path, executable):
    before = _open_fds()
    for _ in range(5):
        handle = ProcessHandle(
            executable,
            ["-c", "true"],
            stdin=b"x",
            cwd=tmp_path / "missing",
            capture_output=True,
        )
        with pytest.raises(SpawnError):
            await handle.launch()
    assert _open_fds() == before


@pytest.mark.asyncio
async def test_failed_path_stdin_leaks_nothing(tmp_path):
    before = _open_fds()
    handle = ProcessHandle("cat", stdin=tmp_path / "absent.txt")
    with pytest.raises(SpawnError) as info:
        await handle.launch()
    assert info.value.step == "open"
    assert _open_fds() == before


@pytest.mark.asyncio
async def test_feeder_error_is_collected_and_output_returned():
    async def failing():
        yield b"a"
        raise RuntimeError("source went away")

    handle = ProcessHandle("cat", stdin=StreamInput(failing()))
    output = await _run(handle)
    assert output.exit_code == 0
    assert output.stdout == b"a"
    assert len(handle.errors) == 1
    assert isinstance(handle.errors[0], RuntimeError)


@pytest.mark.asyncio
async def test_non_bytes_stream_chunk_is_rejected():
    async def numbers():
        yield 3

    handle = ProcessHandle("cat", stdin=numbers())
    output = await _run(handle)
    assert output.stdout == b""
    assert len(handle.errors) == 1
    assert isinstance(handle.errors[0], TypeError)


# ── Signals ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_signal_delivers_before_exit(python):
    handle = ProcessHandle(*python("import time; time.sleep(30)"))
    await handle.launch()
    assert handle.send_signal(signal.SIGTERM)
    output = await handle.result()
    assert output.signal == signal.SIGTERM
    assert not handle.send_signal(signal.SIGTERM)


@pytest.mark.asyncio
async def test_no_signal_after_reap_following_cancelled_result(python):
    handle = ProcessHandle(*python("import time; time.sleep(30)"))
    await handle.launch()
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(handle.result(), timeout=0.2)
    assert handle.send_signal(signal.SIGKILL)
    # The abandoned waiter thread still reaps the child.
    for _ in range(200):
        if not handle.send_signal(0):
            break
        await asyncio.sleep(0.025)
    assert not handle.send_signal(signal.SIGKILL)


def test_send_signal_before_launch_is_noop(python):
    assert not ProcessHandle(*python("pass")).send_signal(signal.SIGTERM)
