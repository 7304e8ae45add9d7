"""Shared pytest fixtures for redis-tui tests."""

import asyncio
import fnmatch
from dataclasses import replace
from typing import Optional

import pytest

from redis_tui.controller import SessionController
from redis_tui.models import ConnectionResult, Session
from redis_tui.protocol import Array, Bulk, Error, Integer, Reply, Text, encode_reply, read_reply, string_items

WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


class SortedSet(dict):
    """member -> score, stored in FakeRedisServer.data for zset keys."""


def _format_score(score: float) -> str:
    return str(int(score)) if float(score).is_integer() else str(score)


class FakeRedisServer:
    """
    In-process RESP server backed by a dict.

    Values: str (string), dict (hash), list (list), set (set), SortedSet (zset).
    Raw bytes queued in ``scripted`` are sent instead of the normal reply for
    the next commands; a queued None closes the connection instead.
    """

    SortedSet = SortedSet

    def __init__(self, data: Optional[dict] = None, scan_page_size: int = 2):
        self.data = dict(data or {})
        self.scan_page_size = scan_page_size
        self.commands: list[list[str]] = []
        self.scripted: list[Optional[bytes]] = []
        self.address = ""
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: set[asyncio.StreamWriter] = set()

    async def __aenter__(self) -> "FakeRedisServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        port = self._server.sockets[0].getsockname()[1]
        self.address = f"127.0.0.1:{port}"
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()
        self._server = None

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            while True:
                try:
                    request = await read_reply(reader)
                except (asyncio.IncompleteReadError, ConnectionError):
                    break
                args = string_items(request) or []
                self.commands.append(args)
                if self.scripted:
                    raw = self.scripted.pop(0)
                    if raw is None:
                        break
                    writer.write(raw)
                else:
                    writer.write(encode_reply(self.execute(args)))
                await writer.drain()
        finally:
            self._writers.discard(writer)
            writer.close()

    def _typed(self, key: str, kind: type):
        value = self.data.get(key)
        if value is None:
            return None
        if kind is dict and isinstance(value, SortedSet):
            raise TypeError(key)
        if not isinstance(value, kind):
            raise TypeError(key)
        return value

    def execute(self, args: list[str]) -> Reply:
        if not args:
            return Error("ERR empty command")
        name, params = args[0].upper(), args[1:]
        handler = getattr(self, f"_cmd_{name.lower()}", None)
        if handler is None:
            return Error(f"ERR unknown command '{name}'")
        try:
            return handler(*params)
        except TypeError:
            return Error(WRONGTYPE)
        except (IndexError, ValueError):
            return Error(f"ERR wrong arguments for '{name}' command")

    def _cmd_ping(self) -> Reply:
        return Text("PONG")

    def _cmd_set(self, key: str, value: str) -> Reply:
        self.data[key] = value
        return Text("OK")

    def _cmd_get(self, key: str) -> Reply:
        return Bulk(self._typed(key, str))

    def _cmd_del(self, *keys: str) -> Reply:
        return Integer(sum(1 for key in keys if self.data.pop(key, None) is not None))

    def _cmd_type(self, key: str) -> Reply:
        value = self.data.get(key)
        if value is None:
            return Text("none")
        if isinstance(value, SortedSet):
            return Text("zset")
        kinds = {str: "string", dict: "hash", list: "list", set: "set"}
        return Text(kinds[type(value)])

    def _cmd_hset(self, key: str, *pairs: str) -> Reply:
        if not pairs or len(pairs) % 2:
            raise ValueError(pairs)
        fields = self._typed(key, dict)
        if fields is None:
            fields = self.data[key] = {}
        added = 0
        for i in range(0, len(pairs), 2):
            added += pairs[i] not in fields
            fields[pairs[i]] = pairs[i + 1]
        return Integer(added)

    def _cmd_hget(self, key: str, field: str) -> Reply:
        fields = self._typed(key, dict) or {}
        return Bulk(fields.get(field))

    def _cmd_hkeys(self, key: str) -> Reply:
        fields = self._typed(key, dict) or {}
        return Array(tuple(Bulk(name) for name in fields))

    def _cmd_hdel(self, key: str, *names: str) -> Reply:
        fields = self._typed(key, dict) or {}
        return Integer(sum(1 for name in names if fields.pop(name, None) is not None))

    def _cmd_rpush(self, key: str, *values: str) -> Reply:
        items = self._typed(key, list)
        if items is None:
            items = self.data[key] = []
        items.extend(values)
        return Integer(len(items))

    def _cmd_lrange(self, key: str, start: str, stop: str) -> Reply:
        items = self._typed(key, list) or []
        end = int(stop)
        end = len(items) if end == -1 else end + 1
        return Array(tuple(Bulk(item) for item in items[int(start):end]))

    def _cmd_lset(self, key: str, index: str, value: str) -> Reply:
        items = self._typed(key, list)
        if items is None:
            return Error("ERR no such key")
        if not -len(items) <= int(index) < len(items):
            return Error("ERR index out of range")
        items[int(index)] = value
        return Text("OK")

    def _cmd_lrem(self, key: str, count: str, value: str) -> Reply:
        items = self._typed(key, list) or []
        removed = 0
        limit = int(count) or len(items)
        while value in items and removed < limit:
            items.remove(value)
            removed += 1
        return Integer(removed)

    def _cmd_smembers(self, key: str) -> Reply:
        members = self._typed(key, set) or set()
        return Array(tuple(Bulk(member) for member in sorted(members)))

    def _cmd_zrange(self, key: str, start: str, stop: str, *options: str) -> Reply:
        members = self._typed(key, SortedSet) or SortedSet()
        ordered = sorted(members.items(), key=lambda pair: (pair[1], pair[0]))
        end = int(stop)
        end = len(ordered) if end == -1 else end + 1
        items: list[Reply] = []
        for member, score in ordered[int(start):end]:
            items.append(Bulk(member))
            if "WITHSCORES" in (option.upper() for option in options):
                items.append(Bulk(_format_score(score)))
        return Array(tuple(items))

    def _cmd_scan(self, cursor: str, *options: str) -> Reply:
        pattern = "*"
        upper = [option.upper() for option in options]
        if "MATCH" in upper:
            pattern = options[upper.index("MATCH") + 1]
        keys = sorted(self.data)
        start = int(cursor)
        page = keys[start:start + self.scan_page_size]
        next_cursor = start + self.scan_page_size
        if next_cursor >= len(keys):
            next_cursor = 0
        matched = [key for key in page if fnmatch.fnmatchcase(key, pattern)]
        return Array((Bulk(str(next_cursor)), Array(tuple(Bulk(key) for key in matched))))


@pytest.fixture
def fake_redis():
    """Factory for FakeRedisServer; use as ``async with fake_redis(data) as server``."""
    return FakeRedisServer


@pytest.fixture
def controller() -> SessionController:
    return SessionController(retry_delay=2.0)


@pytest.fixture
def menu_session(controller: SessionController) -> Session:
    """A connected session showing the menu."""
    session = controller.new_session("localhost:6379")
    session, _ = controller.update(session, ConnectionResult())
    return replace(session, height=24, width=80)
