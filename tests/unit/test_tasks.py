"""Unit tests for TaskRunner: each task yields exactly one event."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from redis_tui.connection import TransportError
from redis_tui.models import CommandResult, ConnectionResult, RetryTimerFired
from redis_tui.protocol import Array, Bulk, Command, ProtocolDecodeError, ShapeMismatchError, Text
from redis_tui.tasks import CommandTask, ConnectTask, QuitTask, RetryTask, ScanTask, TaskRunner


def _make_runner():
    manager = MagicMock()
    manager.connect = AsyncMock()
    manager.execute = AsyncMock()
    manager.scan_keys = AsyncMock()
    return TaskRunner(manager), manager


@pytest.mark.asyncio
async def test_connect_success():
    runner, manager = _make_runner()

    event = await runner.run(ConnectTask("localhost:6379"))

    assert event == ConnectionResult()
    manager.connect.assert_awaited_once_with("localhost:6379")


@pytest.mark.asyncio
async def test_connect_failure_reports_error():
    runner, manager = _make_runner()
    error = TransportError("refused")
    manager.connect.side_effect = error

    event = await runner.run(ConnectTask("localhost:6379"))

    assert isinstance(event, ConnectionResult)
    assert event.error is error


@pytest.mark.asyncio
async def test_command_reply():
    runner, manager = _make_runner()
    manager.execute.return_value = Text("OK")
    command = Command("SET", ("k", "v"))

    event = await runner.run(CommandTask(command))

    assert event == CommandResult(reply=Text("OK"))
    manager.execute.assert_awaited_once_with(command)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [TransportError("closed"), ProtocolDecodeError("bad prefix"), ShapeMismatchError("bad page")],
)
async def test_command_failure_becomes_result_error(error):
    runner, manager = _make_runner()
    manager.execute.side_effect = error

    event = await runner.run(CommandTask(Command("GET", ("k",))))

    assert event.reply is None
    assert event.error is error


@pytest.mark.asyncio
async def test_scan_uses_match_and_count():
    runner, manager = _make_runner()
    manager.scan_keys.return_value = Array((Bulk("a"),))

    event = await runner.run(ScanTask(match="user:*", count=100))

    assert event == CommandResult(reply=Array((Bulk("a"),)))
    manager.scan_keys.assert_awaited_once_with("user:*", 100)


@pytest.mark.asyncio
async def test_retry_waits_then_fires():
    runner, manager = _make_runner()

    event = await runner.run(RetryTask(delay=0))

    assert event == RetryTimerFired()
    manager.connect.assert_not_awaited()


@pytest.mark.asyncio
async def test_quit_is_not_runnable():
    runner, _ = _make_runner()
    with pytest.raises(TypeError):
        await runner.run(QuitTask())
