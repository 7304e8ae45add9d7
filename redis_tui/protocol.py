"""RESP wire codec: command encoding and reply decoding."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence, Union

CRLF = b"\r\n"
NIL_TEXT = "(nil)"
MAX_NESTING = 512  # array depth accepted by read_reply

# surrogateescape keeps arbitrary bytes intact across encode/decode
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class ProtocolDecodeError(ValueError):
    """Raised when a reply is malformed (bad prefix, length, or framing)."""


class ShapeMismatchError(ValueError):
    """Raised when a well-formed reply does not have the expected shape."""


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode(_ENCODING, _ERRORS)


def _to_str(data: bytes) -> str:
    return data.decode(_ENCODING, _ERRORS)


def encode(name: str, args: Sequence[Union[str, bytes]] = ()) -> bytes:
    """Encode a command as an array of bulk strings.

    Lengths are byte lengths, so multi-byte text is framed correctly.
    """
    parts = [b"*%d\r\n" % (len(args) + 1)]
    for element in (name, *args):
        data = _to_bytes(element)
        parts.append(b"$%d\r\n" % len(data))
        parts.append(data + CRLF)
    return b"".join(parts)


@dataclass(frozen=True)
class Command:
    """A command name plus its ordered arguments."""

    name: str
    args: tuple[str, ...] = ()

    def to_bytes(self) -> bytes:
        return encode(self.name, self.args)

    def __str__(self) -> str:
        return " ".join((self.name, *self.args))


@dataclass(frozen=True)
class Text:
    """Simple string reply (+)."""
    value: str


@dataclass(frozen=True)
class Error:
    """Error reply (-)."""
    message: str


@dataclass(frozen=True)
class Integer:
    """Integer reply (:)."""
    value: int


@dataclass(frozen=True)
class Bulk:
    """Bulk string reply ($). None is the null bulk string."""
    value: Optional[str]


@dataclass(frozen=True)
class Array:
    """Array reply (*). None is the null array, () the empty one."""
    items: Optional[tuple["Reply", ...]]


Reply = Union[Text, Error, Integer, Bulk, Array]


async def _read_line(reader: asyncio.StreamReader) -> bytes:
    try:
        line = await reader.readuntil(b"\n")
    except asyncio.LimitOverrunError as exc:
        raise ProtocolDecodeError(f"Reply line exceeds {exc.consumed} bytes") from exc
    if not line.endswith(CRLF):
        raise ProtocolDecodeError(f"Reply line not terminated by CRLF: {line!r}")
    return line[:-2]


def _parse_int(raw: bytes, what: str) -> int:
    digits = raw[1:] if raw.startswith(b"-") else raw
    if not digits.isdigit():
        raise ProtocolDecodeError(f"Invalid {what}: {raw!r}")
    return int(raw)


async def read_reply(reader: asyncio.StreamReader, _depth: int = 0) -> Reply:
    """Read exactly one reply from the stream.

    Blocks until the whole value is available. Only the bytes belonging to
    this reply are consumed.

    Raises:
        ProtocolDecodeError: malformed reply, or arrays nested deeper than
            MAX_NESTING.
        asyncio.IncompleteReadError: the stream ended mid-reply.
    """
    prefix = await reader.readexactly(1)

    if prefix == b"+":
        return Text(_to_str(await _read_line(reader)))

    if prefix == b"-":
        return Error(_to_str(await _read_line(reader)))

    if prefix == b":":
        return Integer(_parse_int(await _read_line(reader), "integer reply"))

    if prefix == b"$":
        length = _parse_int(await _read_line(reader), "bulk length")
        if length == -1:
            return Bulk(None)
        if length < 0:
            raise ProtocolDecodeError(f"Invalid bulk length: {length}")
        data = await reader.readexactly(length)
        terminator = await reader.readexactly(2)
        if terminator != CRLF:
            raise ProtocolDecodeError(f"Bulk string not terminated by CRLF: {terminator!r}")
        return Bulk(_to_str(data))

    if prefix == b"*":
        count = _parse_int(await _read_line(reader), "array length")
        if count == -1:
            return Array(None)
        if count < 0:
            raise ProtocolDecodeError(f"Invalid array length: {count}")
        if _depth >= MAX_NESTING:
            raise ProtocolDecodeError(f"Arrays nested deeper than {MAX_NESTING}")
        items = []
        for _ in range(count):
            items.append(await read_reply(reader, _depth + 1))
        return Array(tuple(items))

    raise ProtocolDecodeError(f"Unknown reply prefix: {prefix!r}")


def encode_reply(reply: Reply) -> bytes:
    """Frame a reply the way a server would send it."""
    if isinstance(reply, Text):
        return b"+" + _to_bytes(reply.value) + CRLF
    if isinstance(reply, Error):
        return b"-" + _to_bytes(reply.message) + CRLF
    if isinstance(reply, Integer):
        return b":%d\r\n" % reply.value
    if isinstance(reply, Bulk):
        if reply.value is None:
            return b"$-1\r\n"
        data = _to_bytes(reply.value)
        return b"$%d\r\n" % len(data) + data + CRLF
    if isinstance(reply, Array):
        if reply.items is None:
            return b"*-1\r\n"
        return b"*%d\r\n" % len(reply.items) + b"".join(encode_reply(item) for item in reply.items)
    raise TypeError(f"Not a reply: {reply!r}")


def scalar_text(reply: Reply) -> Optional[str]:
    """Display text for a scalar reply, or None if the reply is not scalar."""
    if isinstance(reply, Text):
        return reply.value
    if isinstance(reply, Bulk):
        return NIL_TEXT if reply.value is None else reply.value
    if isinstance(reply, Integer):
        return str(reply.value)
    return None


def string_items(reply: Reply) -> Optional[list[str]]:
    """Strings of a flat array reply, or None if the shape does not match."""
    if not isinstance(reply, Array) or reply.items is None:
        return None
    values = []
    for item in reply.items:
        if isinstance(item, Text):
            values.append(item.value)
        elif isinstance(item, Bulk) and item.value is not None:
            values.append(item.value)
        else:
            return None
    return values
