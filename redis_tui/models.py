"""Data models for the Redis TUI session."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from .protocol import Reply


class AppState(Enum):
    """Visible state of the interaction state machine."""
    MENU = "menu"
    INPUT_KEY = "input_key"
    INPUT_FIELD = "input_field"
    FIELD_SELECT = "field_select"
    INPUT_VALUE = "input_value"
    OUTPUT = "output"
    BROWSER = "browser"
    LOADING = "loading"
    CONFIRMATION = "confirmation"


# Wizard states never become PreviousState when a command is issued from them
INPUT_STATES = frozenset({AppState.INPUT_KEY, AppState.INPUT_FIELD, AppState.INPUT_VALUE})


class Operation(Enum):
    """Selected operation tag: decides how the next reply is interpreted."""
    SET = "SET"
    GET = "GET"
    HSET = "HSET"
    HGET = "HGET"
    RPUSH = "RPUSH"
    DELETE = "DELETE"      # menu delete (shows integer reply)
    EXPLORE = "EXPLORE"    # full key scan
    HKEYS = "HKEYS"
    LRANGE = "LRANGE"
    SMEMBERS = "SMEMBERS"
    ZRANGE = "ZRANGE"
    CHECK_TYPE = "CHECK_TYPE"
    EXPLORE_LIST = "EXPLORE_LIST"  # browsing list/set/zset elements
    LSET = "LSET"
    DEL = "DEL"            # browser delete (refreshes key list)
    HDEL = "HDEL"
    LREM = "LREM"


@dataclass(frozen=True)
class ListEntry:
    """A display row in a list view."""
    title: str
    description: str = ""
    index: Optional[int] = None  # list position, for LSET


@dataclass(frozen=True)
class ListView:
    """Items plus selection for one list widget."""
    title: str
    items: tuple[ListEntry, ...] = ()
    selected: int = 0

    def with_items(self, items) -> "ListView":
        return replace(self, items=tuple(items), selected=0)

    def selected_item(self) -> Optional[ListEntry]:
        if not self.items:
            return None
        return self.items[min(self.selected, len(self.items) - 1)]

    def move(self, delta: int) -> "ListView":
        if not self.items:
            return self
        selected = max(0, min(self.selected + delta, len(self.items) - 1))
        return replace(self, selected=selected)

    def select(self, index: int) -> "ListView":
        return self.move(index - self.selected)


@dataclass(frozen=True)
class TextInput:
    """Single-line text entry buffer with a cursor."""
    value: str = ""
    cursor: int = 0
    focused: bool = False

    def set_value(self, value: str) -> "TextInput":
        """Replace the buffer; the cursor moves to the end."""
        return replace(self, value=value, cursor=len(value))

    def focus(self) -> "TextInput":
        return replace(self, focused=True)

    def cursor_end(self) -> "TextInput":
        return replace(self, cursor=len(self.value))

    def insert(self, text: str) -> "TextInput":
        value = self.value[: self.cursor] + text + self.value[self.cursor:]
        return replace(self, value=value, cursor=self.cursor + len(text))

    def backspace(self) -> "TextInput":
        if self.cursor == 0:
            return self
        value = self.value[: self.cursor - 1] + self.value[self.cursor:]
        return replace(self, value=value, cursor=self.cursor - 1)

    def delete(self) -> "TextInput":
        if self.cursor >= len(self.value):
            return self
        return replace(self, value=self.value[: self.cursor] + self.value[self.cursor + 1:])

    def move(self, delta: int) -> "TextInput":
        return replace(self, cursor=max(0, min(self.cursor + delta, len(self.value))))


@dataclass(frozen=True)
class Session:
    """
    The whole interaction state. Handlers return a new Session per event.

    Notes:
    - previous_state is the state to resume after Loading, and the target of
      most cancel actions.
    - resume_state, when set, overrides previous_state as the state to show
      once a reconnect succeeds (used to keep a decode error on screen).
    - field_parent is the state a FieldSelect list was opened from, and
      list_op the tag that list was shown under (HKEYS or EXPLORE_LIST).
    - active_* values persist until overwritten.
    """

    address: str
    menu: ListView
    fields: ListView = field(default_factory=lambda: ListView(title="Select a field"))
    keys: ListView = field(default_factory=lambda: ListView(title="Select a key"))
    state: AppState = AppState.LOADING
    previous_state: AppState = AppState.MENU
    resume_state: Optional[AppState] = None
    field_parent: AppState = AppState.MENU
    list_op: Operation = Operation.HKEYS
    input: TextInput = field(default_factory=TextInput)
    output: str = ""
    status_message: str = ""
    active_key: str = ""
    active_field: str = ""
    active_index: int = 0
    active_value: str = ""
    selected_op: Optional[Operation] = None
    connected: bool = False
    ever_connected: bool = False
    width: int = 80
    height: int = 24


@dataclass(frozen=True)
class KeyPress:
    """A key press, by name ("enter", "esc", "ctrl+c", "up", "a", ...)."""
    key: str


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class ConnectionResult:
    """Outcome of a connect attempt; error is None on success."""
    error: Optional[Exception] = None


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command round trip: a reply or an error."""
    reply: Optional[Reply] = None
    error: Optional[Exception] = None


@dataclass(frozen=True)
class RetryTimerFired:
    """The fixed reconnect delay has elapsed."""


Event = Union[KeyPress, Resize, ConnectionResult, CommandResult, RetryTimerFired]
