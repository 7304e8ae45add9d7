"""Follow-up tasks requested by the controller, and the runner that executes them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .connection import ConnectionManager, TransportError
from .models import CommandResult, ConnectionResult, Event, RetryTimerFired
from .protocol import Command, ProtocolDecodeError, ShapeMismatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectTask:
    address: str


@dataclass(frozen=True)
class CommandTask:
    command: Command


@dataclass(frozen=True)
class ScanTask:
    """Full key scan (cursor loop) for the key browser."""
    match: str = "*"
    count: Optional[int] = None


@dataclass(frozen=True)
class RetryTask:
    delay: float


@dataclass(frozen=True)
class QuitTask:
    exit_code: int = 0


Task = Union[ConnectTask, CommandTask, ScanTask, RetryTask, QuitTask]

# Tasks that talk to the server; at most one of these is ever outstanding
NETWORK_TASKS = (ConnectTask, CommandTask, ScanTask)


class TaskRunner:
    """Runs one task to completion and reports exactly one event."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def run(self, task: Task) -> Event:
        if isinstance(task, ConnectTask):
            try:
                await self.manager.connect(task.address)
            except TransportError as e:
                return ConnectionResult(error=e)
            return ConnectionResult()

        if isinstance(task, RetryTask):
            logger.info(f"Retrying connection in {task.delay}s")
            await asyncio.sleep(task.delay)
            return RetryTimerFired()

        try:
            if isinstance(task, CommandTask):
                reply = await self.manager.execute(task.command)
            elif isinstance(task, ScanTask):
                reply = await self.manager.scan_keys(task.match, task.count)
            else:
                raise TypeError(f"Task has no network action: {task!r}")
        except TransportError as e:
            logger.warning(f"Transport failure: {e}")
            return CommandResult(error=e)
        except (ProtocolDecodeError, ShapeMismatchError) as e:
            logger.warning(f"Bad reply: {e}")
            return CommandResult(error=e)
        return CommandResult(reply=reply)
