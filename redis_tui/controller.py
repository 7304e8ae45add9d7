"""Interaction state machine: menu, wizard and key browser flows.

The controller is a pure reducer. ``update(session, event)`` returns the next
Session plus at most one follow-up task; the terminal front end executes the
task and feeds its single result event back in.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Optional

from .connection import RETRY_DELAY, TransportError
from .models import (
    INPUT_STATES,
    AppState,
    CommandResult,
    ConnectionResult,
    Event,
    KeyPress,
    ListEntry,
    ListView,
    Operation,
    Resize,
    RetryTimerFired,
    Session,
    TextInput,
)
from .protocol import Command, Error, Integer, ProtocolDecodeError, Reply, scalar_text, string_items
from .tasks import CommandTask, ConnectTask, QuitTask, RetryTask, ScanTask, Task

logger = logging.getLogger(__name__)

MENU_ITEMS = (
    ListEntry("SET", "Set a key-value pair"),
    ListEntry("GET", "Get the value of a key"),
    ListEntry("HSET", "Set a hash field"),
    ListEntry("HGET", "Get the value of a hash field"),
    ListEntry("RPUSH", "Append a value to a list"),
    ListEntry("DELETE", "Delete a key"),
    ListEntry("EXPLORE", "Browse keys and values"),
)

UNEXPECTED_RESPONSE = "Unexpected response"
UNKNOWN_SCORE = "unknown"

# Output "e" pivots a read into the matching write
EDIT_OPS = {
    Operation.GET: Operation.SET,
    Operation.HGET: Operation.HSET,
    Operation.EXPLORE_LIST: Operation.LSET,
}

# States a FieldSelect list cannot have been opened from
_NOT_LIST_PARENTS = INPUT_STATES | {
    AppState.FIELD_SELECT,
    AppState.OUTPUT,
    AppState.CONFIRMATION,
    AppState.LOADING,
}

# (title + blank line) above the list, (status + footer) below it
_RESERVED_LIST_ROWS = 4

Result = tuple[Session, Optional[Task]]


def _type_probe_followup(type_name: str, key: str) -> Optional[tuple[Operation, Command]]:
    if type_name == "string":
        return Operation.GET, Command("GET", (key,))
    if type_name == "hash":
        return Operation.HKEYS, Command("HKEYS", (key,))
    if type_name == "list":
        return Operation.LRANGE, Command("LRANGE", (key, "0", "-1"))
    if type_name == "set":
        return Operation.SMEMBERS, Command("SMEMBERS", (key,))
    if type_name == "zset":
        return Operation.ZRANGE, Command("ZRANGE", (key, "0", "-1", "WITHSCORES"))
    return None


def list_page_size(height: int) -> int:
    return max(1, height - _RESERVED_LIST_ROWS)


def visible_window(view: ListView, page: int) -> tuple[int, int]:
    """Return (start, end) of the items shown so the selection stays visible."""
    if not view.items:
        return 0, 0
    start = max(0, view.selected - page + 1)
    return start, min(len(view.items), start + page)


class SessionController:
    """Drives all view transitions and turns user actions into commands."""

    def __init__(
        self,
        retry_delay: float = RETRY_DELAY,
        scan_match: str = "*",
        scan_count: Optional[int] = None,
        exit_on_connect_failure: bool = False,
    ):
        self.retry_delay = retry_delay
        self.scan_match = scan_match
        self.scan_count = scan_count
        self.exit_on_connect_failure = exit_on_connect_failure

        self._key_handlers: dict[AppState, Callable[[Session, str], Result]] = {
            AppState.MENU: self._on_menu_key,
            AppState.INPUT_KEY: self._on_input_key_key,
            AppState.INPUT_FIELD: self._on_input_field_key,
            AppState.INPUT_VALUE: self._on_input_value_key,
            AppState.FIELD_SELECT: self._on_field_select_key,
            AppState.OUTPUT: self._on_output_key,
            AppState.BROWSER: self._on_browser_key,
            AppState.LOADING: self._on_loading_key,
            AppState.CONFIRMATION: self._on_confirmation_key,
        }
        self._reply_handlers: dict[Operation, Callable[[Session, Reply], Result]] = {
            Operation.GET: self._on_scalar,
            Operation.HGET: self._on_scalar,
            Operation.SET: self._on_scalar,
            Operation.LSET: self._on_scalar,
            Operation.HKEYS: self._on_hash_fields,
            Operation.EXPLORE: self._on_keys,
            Operation.LRANGE: self._on_elements,
            Operation.SMEMBERS: self._on_elements,
            Operation.ZRANGE: self._on_scored_members,
            Operation.CHECK_TYPE: self._on_type,
            Operation.DEL: self._on_key_deleted,
            Operation.HDEL: self._on_field_deleted,
            Operation.LREM: self._on_element_removed,
            Operation.HSET: self._on_integer,
            Operation.RPUSH: self._on_integer,
            Operation.DELETE: self._on_integer,
        }

    # -- lifecycle -------------------------------------------------------

    def new_session(self, address: str) -> Session:
        """Startup session: Loading, not connected, Menu to resume to."""
        return Session(address=address, menu=ListView(title="Redis TUI", items=MENU_ITEMS))

    def init(self, session: Session) -> Result:
        return session, ConnectTask(session.address)

    def update(self, session: Session, event: Event) -> Result:
        if isinstance(event, KeyPress):
            if event.key == "ctrl+c":
                return session, QuitTask()
            return self._key_handlers[session.state](session, event.key)
        if isinstance(event, Resize):
            return replace(session, width=event.width, height=event.height), None
        if isinstance(event, RetryTimerFired):
            return session, ConnectTask(session.address)
        if isinstance(event, ConnectionResult):
            return self._on_connection_result(session, event)
        if isinstance(event, CommandResult):
            return self._on_command_result(session, event)
        raise TypeError(f"Unknown event: {event!r}")

    # -- transitions -----------------------------------------------------

    def _issue(self, session: Session, task: Task, keep_previous: bool = False, **changes) -> Result:
        """Enter Loading and hand back the network task."""
        previous = session.previous_state
        if not keep_previous and session.state is not AppState.LOADING and session.state not in INPUT_STATES:
            previous = session.state
        return replace(session, state=AppState.LOADING, previous_state=previous, **changes), task

    def _command(self, session: Session, op: Operation, name: str, *args: str) -> Result:
        return self._issue(session, CommandTask(Command(name, args)), selected_op=op)

    def _return_to(self, session: Session, state: AppState, **changes) -> Session:
        # List actions depend on the tag the list was shown under
        if state is AppState.FIELD_SELECT:
            changes.setdefault("selected_op", session.list_op)
        elif state is AppState.BROWSER:
            changes.setdefault("selected_op", Operation.EXPLORE)
        return replace(session, state=state, **changes)

    def _cancel_to_menu(self, session: Session) -> Result:
        return replace(
            session,
            state=AppState.MENU,
            input=TextInput(),
            output="",
            status_message="",
        ), None

    def _show_output(self, session: Session, text: str) -> Result:
        return replace(session, state=AppState.OUTPUT, output=text), None

    def _show_fields(self, session: Session, entries: list[ListEntry], list_op: Operation) -> Result:
        parent = session.field_parent
        if session.previous_state not in _NOT_LIST_PARENTS:
            parent = session.previous_state
        return replace(
            session,
            state=AppState.FIELD_SELECT,
            fields=session.fields.with_items(entries),
            field_parent=parent,
            list_op=list_op,
            selected_op=list_op,
        ), None

    def _scan(self, session: Session, **changes) -> Result:
        task = ScanTask(match=self.scan_match, count=self.scan_count)
        return self._issue(session, task, selected_op=Operation.EXPLORE, **changes)

    # -- network results -------------------------------------------------

    def _on_connection_result(self, session: Session, event: ConnectionResult) -> Result:
        if event.error is not None:
            if self.exit_on_connect_failure and not session.ever_connected:
                logger.error(f"Initial connection to {session.address} failed: {event.error}")
                return replace(session, status_message=str(event.error)), QuitTask(exit_code=1)
            message = f"Connection to {session.address} failed, retrying in {self.retry_delay:g}s"
            return replace(session, connected=False, status_message=message), RetryTask(self.retry_delay)

        target = session.resume_state or session.previous_state
        logger.info(f"Connected, resuming {target.value}")
        resumed = self._return_to(
            session,
            target,
            resume_state=None,
            connected=True,
            ever_connected=True,
            status_message="",
        )
        return resumed, None

    def _on_command_result(self, session: Session, event: CommandResult) -> Result:
        if isinstance(event.error, TransportError):
            logger.warning(f"Lost connection to {session.address}: {event.error}")
            session = replace(session, connected=False, status_message="Connection lost, reconnecting...")
            return self._issue(session, ConnectTask(session.address))

        if isinstance(event.error, ProtocolDecodeError):
            # The connection was dropped after the bad reply; show the error once it is back
            logger.warning(f"Bad reply from {session.address}, reconnecting: {event.error}")
            session = replace(
                session,
                output=f"{UNEXPECTED_RESPONSE}: {event.error}",
                connected=False,
                resume_state=AppState.OUTPUT,
                status_message="Connection lost, reconnecting...",
            )
            return self._issue(session, ConnectTask(session.address))

        if event.error is not None:
            return self._show_output(session, UNEXPECTED_RESPONSE)

        reply = event.reply
        if isinstance(reply, Error):
            return self._show_output(session, reply.message)

        handler = self._reply_handlers.get(session.selected_op)
        if handler is None or reply is None:
            logger.warning(f"No reply handler for {session.selected_op}")
            return self._show_output(session, UNEXPECTED_RESPONSE)
        return handler(session, reply)

    def _on_scalar(self, session: Session, reply: Reply) -> Result:
        text = scalar_text(reply)
        return self._show_output(session, UNEXPECTED_RESPONSE if text is None else text)

    def _on_integer(self, session: Session, reply: Reply) -> Result:
        if not isinstance(reply, Integer):
            return self._show_output(session, UNEXPECTED_RESPONSE)
        return self._show_output(session, str(reply.value))

    def _on_hash_fields(self, session: Session, reply: Reply) -> Result:
        names = string_items(reply)
        if names is None:
            return self._show_output(session, UNEXPECTED_RESPONSE)
        entries = [ListEntry(name, "Hash Field") for name in names]
        return self._show_fields(session, entries, Operation.HKEYS)

    def _on_keys(self, session: Session, reply: Reply) -> Result:
        keys = string_items(reply)
        if keys is None:
            return self._show_output(session, UNEXPECTED_RESPONSE)
        entries = [ListEntry(key, "key") for key in keys]
        return replace(session, state=AppState.BROWSER, keys=session.keys.with_items(entries)), None

    def _on_elements(self, session: Session, reply: Reply) -> Result:
        values = string_items(reply)
        if values is None:
            return self._show_output(session, UNEXPECTED_RESPONSE)
        entries = [ListEntry(value, f"Index: {index}", index=index) for index, value in enumerate(values)]
        return self._show_fields(session, entries, Operation.EXPLORE_LIST)

    def _on_scored_members(self, session: Session, reply: Reply) -> Result:
        values = string_items(reply)
        if values is None:
            return self._show_output(session, UNEXPECTED_RESPONSE)
        entries = []
        for i in range(0, len(values), 2):
            score = values[i + 1] if i + 1 < len(values) else UNKNOWN_SCORE
            entries.append(ListEntry(values[i], f"Score: {score}", index=i // 2))
        return self._show_fields(session, entries, Operation.EXPLORE_LIST)

    def _on_type(self, session: Session, reply: Reply) -> Result:
        type_name = scalar_text(reply)
        if type_name is None:
            return self._show_output(session, UNEXPECTED_RESPONSE)
        followup = _type_probe_followup(type_name, session.active_key)
        if followup is None:
            return self._show_output(session, f"Unsupported key type: {type_name}")
        op, command = followup
        return self._issue(session, CommandTask(command), selected_op=op)

    def _on_key_deleted(self, session: Session, reply: Reply) -> Result:
        message = f"Deleted key: {session.active_key}"
        return self._scan(session, output=message, status_message=message)

    def _on_field_deleted(self, session: Session, reply: Reply) -> Result:
        message = f"Deleted hash field: {session.active_field}"
        session = replace(session, output=message, status_message=message)
        return self._command(session, Operation.HKEYS, "HKEYS", session.active_key)

    def _on_element_removed(self, session: Session, reply: Reply) -> Result:
        message = f"Removed element from list: {session.active_field}"
        session = replace(session, output=message, status_message=message)
        return self._command(session, Operation.LRANGE, "LRANGE", session.active_key, "0", "-1")

    # -- key handling ----------------------------------------------------

    def _navigate(self, view: ListView, key: str, height: int) -> ListView:
        page = list_page_size(height)
        if key in ("up", "k"):
            return view.move(-1)
        if key in ("down", "j"):
            return view.move(1)
        if key == "pgup":
            return view.move(-page)
        if key == "pgdown":
            return view.move(page)
        if key in ("home", "g"):
            return view.select(0)
        if key in ("end", "G"):
            return view.select(len(view.items) - 1)
        return view

    def _edit_input(self, session: Session, key: str) -> Result:
        text = session.input
        if key == "backspace":
            text = text.backspace()
        elif key == "delete":
            text = text.delete()
        elif key == "left":
            text = text.move(-1)
        elif key == "right":
            text = text.move(1)
        elif key == "home":
            text = text.move(-len(text.value))
        elif key == "end":
            text = text.cursor_end()
        elif len(key) == 1 and key.isprintable():
            text = text.insert(key)
        return replace(session, input=text), None

    def _on_menu_key(self, session: Session, key: str) -> Result:
        if key == "q":
            return session, QuitTask()
        if key != "enter":
            return replace(session, menu=self._navigate(session.menu, key, session.height)), None

        item = session.menu.selected_item()
        if item is None:
            return session, None
        op = Operation(item.title)
        if op is Operation.EXPLORE:
            return self._scan(replace(session, status_message=""))
        return replace(
            session,
            selected_op=op,
            previous_state=AppState.MENU,
            state=AppState.INPUT_KEY,
            input=TextInput().focus(),
            output="",
            status_message="",
        ), None

    def _on_input_key_key(self, session: Session, key: str) -> Result:
        if key == "esc":
            return self._cancel_to_menu(session)
        if key != "enter":
            return self._edit_input(session, key)

        name = session.input.value
        session = replace(session, active_key=name, input=TextInput().focus())
        op = session.selected_op
        if op is Operation.GET:
            return self._command(session, Operation.GET, "GET", name)
        if op is Operation.HGET:
            # pick the field from the hash's field list
            return self._command(session, Operation.HKEYS, "HKEYS", name)
        if op is Operation.DELETE:
            return self._command(session, Operation.DELETE, "DEL", name)
        if op is Operation.HSET:
            return replace(session, state=AppState.INPUT_FIELD), None
        return replace(session, state=AppState.INPUT_VALUE), None

    def _on_input_field_key(self, session: Session, key: str) -> Result:
        if key == "esc":
            return self._cancel_to_menu(session)
        if key != "enter":
            return self._edit_input(session, key)

        return replace(
            session,
            active_field=session.input.value,
            input=TextInput().focus(),
            state=AppState.INPUT_VALUE,
        ), None

    def _on_input_value_key(self, session: Session, key: str) -> Result:
        if key == "esc":
            return self._cancel_to_menu(session)
        if key != "enter":
            return self._edit_input(session, key)

        value = session.input.value
        session = replace(session, active_value=value, input=TextInput().focus())
        op = session.selected_op
        if op is Operation.SET:
            return self._command(session, op, "SET", session.active_key, value)
        if op is Operation.HSET:
            return self._command(session, op, "HSET", session.active_key, session.active_field, value)
        if op is Operation.RPUSH:
            return self._command(session, op, "RPUSH", session.active_key, value)
        if op is Operation.LSET:
            return self._command(session, op, "LSET", session.active_key, str(session.active_index), value)
        return session, None

    def _on_field_select_key(self, session: Session, key: str) -> Result:
        if key == "esc":
            return self._return_to(
                session,
                session.field_parent,
                input=TextInput(),
                output="",
                status_message="",
            ), None
        if key not in ("enter", "d"):
            return replace(
                session,
                fields=self._navigate(session.fields, key, session.height),
                status_message="",
            ), None

        item = session.fields.selected_item()
        if item is None:
            return session, None
        session = replace(
            session,
            active_field=item.title,
            active_index=item.index if item.index is not None else 0,
        )

        if key == "d":
            op = Operation.LREM if session.selected_op is Operation.EXPLORE_LIST else Operation.HDEL
            return replace(
                session,
                previous_state=AppState.FIELD_SELECT,
                state=AppState.CONFIRMATION,
                selected_op=op,
            ), None

        if session.selected_op in (Operation.HGET, Operation.HKEYS, Operation.EXPLORE):
            return self._command(session, Operation.HGET, "HGET", session.active_key, item.title)
        if session.selected_op is Operation.EXPLORE_LIST:
            return replace(
                session,
                output=item.title,
                state=AppState.OUTPUT,
                previous_state=AppState.FIELD_SELECT,
            ), None
        return session, None

    def _on_output_key(self, session: Session, key: str) -> Result:
        if key == "esc":
            return self._return_to(session, session.previous_state, input=TextInput(), output=""), None
        if key == "e":
            op = EDIT_OPS.get(session.selected_op)
            if op is None:
                return session, None
            return replace(
                session,
                selected_op=op,
                input=TextInput().set_value(session.output).focus().cursor_end(),
                state=AppState.INPUT_VALUE,
            ), None
        return session, None

    def _on_browser_key(self, session: Session, key: str) -> Result:
        if key == "esc":
            return self._cancel_to_menu(session)
        if key not in ("enter", "d"):
            return replace(
                session,
                keys=self._navigate(session.keys, key, session.height),
                status_message="",
            ), None

        item = session.keys.selected_item()
        if item is None:
            return session, None
        session = replace(session, active_key=item.title)
        if key == "d":
            return replace(
                session,
                previous_state=AppState.BROWSER,
                state=AppState.CONFIRMATION,
                selected_op=Operation.DEL,
            ), None
        return self._command(replace(session, status_message=""), Operation.CHECK_TYPE, "TYPE", item.title)

    def _on_loading_key(self, session: Session, key: str) -> Result:
        return session, None

    def _on_confirmation_key(self, session: Session, key: str) -> Result:
        if key in ("esc", "n", "N"):
            return self._return_to(session, session.previous_state), None
        if key not in ("y", "Y"):
            return session, None

        op = session.selected_op
        if op is Operation.DEL:
            command = Command("DEL", (session.active_key,))
        elif op is Operation.HDEL:
            command = Command("HDEL", (session.active_key, session.active_field))
        elif op is Operation.LREM:
            # one occurrence of the element
            command = Command("LREM", (session.active_key, "1", session.active_field))
        else:
            return self._return_to(session, session.previous_state), None
        return self._issue(session, CommandTask(command), keep_previous=True)

    # -- rendering -------------------------------------------------------

    def _list_lines(self, view: ListView, session: Session, subtitle: str = "") -> list[tuple[str, str]]:
        lines = [(view.title, "title"), (subtitle, "muted")]
        if not view.items:
            lines.append(("(empty)", "muted"))
            return lines
        start, end = visible_window(view, list_page_size(session.height))
        for idx in range(start, end):
            item = view.items[idx]
            is_selected = idx == view.selected
            marker = ">" if is_selected else " "
            text = f"{marker} {item.title}"
            if item.description:
                text = f"{text}  ({item.description})"
            lines.append((text, "selected" if is_selected else "item"))
        return lines

    def _input_lines(self, session: Session, prompt: str) -> list[tuple[str, str]]:
        return [
            (prompt, "prompt"),
            (f"> {session.input.value}", "item"),
            ("", "muted"),
            ("Enter: submit  Esc: cancel", "muted"),
        ]

    def render_lines(self, session: Session) -> list[tuple[str, str]]:
        """Rows of (text, style) for the current state."""
        state = session.state
        lines: list[tuple[str, str]]
        footer = ""

        if state is AppState.MENU:
            lines = self._list_lines(session.menu, session)
            footer = "Enter: select  j/k: move  q: quit"
        elif state is AppState.INPUT_KEY:
            return self._input_lines(session, "Input the key:")
        elif state is AppState.INPUT_FIELD:
            return self._input_lines(session, "Input the field:")
        elif state is AppState.INPUT_VALUE:
            return self._input_lines(session, "Input the value:")
        elif state is AppState.FIELD_SELECT:
            lines = self._list_lines(session.fields, session, subtitle=session.active_key)
            footer = "Enter: open  d: delete  Esc: back"
        elif state is AppState.BROWSER:
            lines = self._list_lines(session.keys, session, subtitle=f"match {self.scan_match}")
            footer = "Enter: open  d: delete  Esc: menu"
        elif state is AppState.OUTPUT:
            out_lines = session.output.splitlines() or [""]
            lines = [("", "muted"), (f"Output: {out_lines[0]}", "output")]
            lines.extend((line, "output") for line in out_lines[1:])
            lines.append(("", "muted"))
            footer = "Esc: Return • e: Edit"
        elif state is AppState.LOADING:
            lines = [("Loading..", "muted")]
        elif state is AppState.CONFIRMATION:
            lines = [(self._confirmation_prompt(session), "warning")]
        else:
            lines = []

        if session.status_message:
            lines.append((session.status_message, "status"))
        if footer:
            lines.append((footer, "muted"))
        return lines

    def _confirmation_prompt(self, session: Session) -> str:
        op = session.selected_op
        if op is Operation.DEL:
            return f"Are you sure you want to delete the key: {session.active_key}? (y/n)"
        if op is Operation.HDEL:
            return f"Are you sure you want to delete the field: {session.active_field}? (y/n)"
        if op is Operation.LREM:
            return f"Remove one instance of value: {session.active_field}? (y/n)"
        label = op.value if op else "this action"
        return f"Are you sure you want to perform this action: {label}? (y/n)"

    def view(self, session: Session) -> str:
        return "\n".join(text for text, _ in self.render_lines(session))

    def cursor_position(self, session: Session) -> Optional[tuple[int, int]]:
        """(row, column) of the text-entry cursor, or None outside input states."""
        if session.state not in INPUT_STATES:
            return None
        return 1, 2 + session.input.cursor
