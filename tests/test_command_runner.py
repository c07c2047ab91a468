import asyncio

import pytest

from dbwarden.errors import BackendTimeout, ErrorKind, OperationCancelled, UnknownBackendError
from dbwarden.services import command_runner
from dbwarden.services.command_runner import KILL_WAIT_SECONDS, run_command


@pytest.mark.asyncio
async def test_captures_output_and_exit_code():
    result = await run_command(["sh", "-c", "echo out; echo err >&2; exit 3"], timeout=5)

    assert result.returncode == 3
    assert not result.success
    assert result.stdout == "out"
    assert result.stderr == "err"


@pytest.mark.asyncio
async def test_env_reaches_child_only():
    result = await run_command(["sh", "-c", 'printf %s "$DBW_TEST_SECRET"'], timeout=5, env={"DBW_TEST_SECRET": "xyz"})

    assert result.stdout == "xyz"


@pytest.mark.asyncio
async def test_stdin_is_fed_from_file(tmp_path):
    dump = tmp_path / "dump.sql"
    dump.write_text("SELECT 1;\n")

    result = await run_command(["cat"], timeout=5, stdin_path=dump)

    assert result.stdout == "SELECT 1;"


@pytest.mark.asyncio
async def test_timeout_kills_process():
    loop = asyncio.get_running_loop()
    start = loop.time()

    with pytest.raises(BackendTimeout) as excinfo:
        await run_command(["sleep", "10"], timeout=0.2)

    assert excinfo.value.kind == ErrorKind.TIMEOUT
    assert excinfo.value.transient
    assert loop.time() - start < 0.2 + KILL_WAIT_SECONDS + 0.5


@pytest.mark.asyncio
async def test_cancel_event_stops_process_with_distinct_error():
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.call_later(0.1, cancel_event.set)
    start = loop.time()

    with pytest.raises(OperationCancelled) as excinfo:
        await run_command(["sleep", "10"], timeout=30, cancel_event=cancel_event)

    assert excinfo.value.kind == ErrorKind.CANCELLED
    assert not excinfo.value.transient
    assert loop.time() - start < 5


@pytest.mark.asyncio
async def test_already_cancelled_never_starts(tmp_path):
    cancel_event = asyncio.Event()
    cancel_event.set()
    marker = tmp_path / "started"

    with pytest.raises(OperationCancelled):
        await run_command(["touch", str(marker)], timeout=5, cancel_event=cancel_event)

    assert not marker.exists()


@pytest.mark.asyncio
async def test_missing_tool():
    with pytest.raises(UnknownBackendError, match="not found"):
        await run_command(["dbwarden-no-such-tool"], timeout=5)


@pytest.mark.asyncio
async def test_task_cancellation_propagates():
    task = asyncio.create_task(run_command(["sleep", "10"], timeout=30))
    await asyncio.sleep(0.1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_stdin_file_is_streamed_through_handle(tmp_path, monkeypatch):
    dump = tmp_path / "dump.sql"
    dump.write_bytes(b"x" * (1 << 20))
    real_exec = asyncio.create_subprocess_exec
    seen = {}

    async def spy(*cmd, **kwargs):
        seen["stdin"] = kwargs["stdin"]
        return await real_exec(*cmd, **kwargs)

    monkeypatch.setattr(command_runner.asyncio, "create_subprocess_exec", spy)

    result = await run_command(["wc", "-c"], timeout=5, stdin_path=dump)

    assert int(result.stdout) == 1 << 20
    assert hasattr(seen["stdin"], "fileno")
    assert seen["stdin"].closed
