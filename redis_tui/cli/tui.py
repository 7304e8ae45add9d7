"""Curses front end: key capture, drawing, and the cooperative event loop."""

from __future__ import annotations

import asyncio
import curses
import logging
from typing import Optional

from ..connection import ConnectionManager
from ..controller import SessionController
from ..models import CommandResult, ConnectionResult, Event, KeyPress, Resize, Session
from ..tasks import NETWORK_TASKS, ConnectTask, QuitTask, Task, TaskRunner

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05  # seconds between key polls when idle

_KEY_NAMES = {
    3: "ctrl+c",
    9: "tab",
    10: "enter",
    13: "enter",
    27: "esc",
    127: "backspace",
    8: "backspace",
    curses.KEY_ENTER: "enter",
    curses.KEY_BACKSPACE: "backspace",
    curses.KEY_DC: "delete",
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    curses.KEY_HOME: "home",
    curses.KEY_END: "end",
    curses.KEY_PPAGE: "pgup",
    curses.KEY_NPAGE: "pgdown",
}


def key_name(key) -> Optional[str]:
    """Map a curses get_wch() result to the controller's key names."""
    if isinstance(key, str):
        if len(key) != 1:
            return None
        code = ord(key)
        if code in _KEY_NAMES:
            return _KEY_NAMES[code]
        return key if key.isprintable() else None
    return _KEY_NAMES.get(key)


def _init_colors() -> dict[str, int]:
    palette = {
        "title": curses.A_BOLD,
        "item": curses.A_NORMAL,
        "selected": curses.A_REVERSE | curses.A_BOLD,
        "muted": curses.A_DIM,
        "status": curses.A_BOLD,
        "output": curses.A_BOLD,
        "prompt": curses.A_BOLD,
        "warning": curses.A_BOLD,
    }

    if not curses.has_colors():
        return palette

    try:
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(1, curses.COLOR_CYAN, -1)
        curses.init_pair(2, curses.COLOR_GREEN, -1)
        curses.init_pair(3, curses.COLOR_YELLOW, -1)
        curses.init_pair(4, curses.COLOR_RED, -1)

        palette["title"] |= curses.color_pair(1)
        palette["prompt"] |= curses.color_pair(1)
        palette["output"] |= curses.color_pair(2)
        palette["status"] |= curses.color_pair(3)
        palette["warning"] |= curses.color_pair(4)
    except curses.error:
        pass

    return palette


class RedisTui:
    """Runs the controller against a curses screen and a live connection."""

    def __init__(self, stdscr, controller: SessionController, manager: ConnectionManager):
        self.stdscr = stdscr
        self.controller = controller
        self.runner = TaskRunner(manager)
        self.palette: dict[str, int] = {}
        self.exit_code = 0

        self._events: asyncio.Queue[Event] = asyncio.Queue()
        self._in_flight: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    async def run(self) -> int:
        curses.raw()
        curses.set_escdelay(25)
        curses.curs_set(0)
        self.stdscr.nodelay(True)
        self.stdscr.keypad(True)
        self.palette = _init_colors()

        height, width = self.stdscr.getmaxyx()
        session = self.controller.new_session(self.runner.manager.address)
        session, _ = self.controller.update(session, Resize(width=width, height=height))
        session, task = self.controller.init(session)
        try:
            while True:
                if task is not None:
                    if isinstance(task, QuitTask):
                        self.exit_code = task.exit_code
                        break
                    self._start(task)
                self._render(session)
                event = await self._next_event()
                session, task = self.controller.update(session, event)
        finally:
            for pending in list(self._background):
                pending.cancel()
            await self.runner.manager.close()
        return self.exit_code

    def _start(self, task: Task) -> None:
        if isinstance(task, NETWORK_TASKS) and self._in_flight is not None and not self._in_flight.done():
            # The controller only issues a command after the previous one resolved
            raise RuntimeError(f"Task {task!r} started while another is in flight")
        handle = asyncio.create_task(self._execute(task))
        self._background.add(handle)
        handle.add_done_callback(self._background.discard)
        if isinstance(task, NETWORK_TASKS):
            self._in_flight = handle

    async def _execute(self, task: Task) -> None:
        try:
            event = await self.runner.run(task)
        except Exception as e:
            # Every task must resolve, or the session would sit in Loading
            logger.exception(f"Task {task!r} failed: {e}")
            if isinstance(task, ConnectTask):
                event = ConnectionResult(error=e)
            else:
                event = CommandResult(error=e)
        await self._events.put(event)

    async def _next_event(self) -> Event:
        while True:
            if not self._events.empty():
                return self._events.get_nowait()
            try:
                key = self.stdscr.get_wch()
            except curses.error:
                key = None
            if key == curses.KEY_RESIZE:
                height, width = self.stdscr.getmaxyx()
                return Resize(width=width, height=height)
            if key is not None:
                name = key_name(key)
                if name is not None:
                    return KeyPress(name)
                continue
            try:
                return await asyncio.wait_for(self._events.get(), timeout=POLL_INTERVAL)
            except asyncio.TimeoutError:
                continue

    def _render(self, session: Session) -> None:
        self.stdscr.erase()
        height, width = self.stdscr.getmaxyx()
        for y, (text, style) in enumerate(self.controller.render_lines(session)):
            if y >= height:
                break
            try:
                self.stdscr.addnstr(y, 0, text, max(0, width - 1), self.palette.get(style, curses.A_NORMAL))
            except curses.error:
                # writing the bottom-right cell raises; the text is drawn anyway
                pass

        cursor = self.controller.cursor_position(session)
        if cursor is not None and cursor[0] < height:
            curses.curs_set(1)
            self.stdscr.move(cursor[0], min(cursor[1], max(0, width - 1)))
        else:
            curses.curs_set(0)
        self.stdscr.refresh()


def run_tui(controller: SessionController, manager: ConnectionManager) -> int:
    """Run the interactive client until the user quits. Returns the exit code."""

    def _loop(stdscr) -> int:
        return asyncio.run(RedisTui(stdscr, controller, manager).run())

    return curses.wrapper(_loop)
