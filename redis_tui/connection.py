"""Connection to the key-value server (asyncio streams)."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .protocol import (
    Array,
    Bulk,
    Command,
    Error,
    ProtocolDecodeError,
    Reply,
    ShapeMismatchError,
    read_reply,
    scalar_text,
    string_items,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6379
DEFAULT_ADDRESS = f"{DEFAULT_HOST}:{DEFAULT_PORT}"
RETRY_DELAY = 2.0  # seconds, fixed (no backoff)
SCAN_START_CURSOR = "0"


class TransportError(ConnectionError):
    """Connect, write or read failure, including end of stream."""


def parse_address(address: str) -> tuple[str, int]:
    """Split ``host:port``. A bare host gets the default port."""
    value = (address or "").strip()
    if not value:
        raise ValueError("Address is empty")
    host, sep, port_text = value.rpartition(":")
    if not sep:
        return value, DEFAULT_PORT
    if not host:
        host = DEFAULT_HOST
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in address: {address!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in address: {address!r}")
    return host.strip("[]"), port


class ConnectionManager:
    """
    Owns the single transport session to the server.

    Notes:
    - execute() holds a lock across send+read so only one command is ever
      in flight on the connection.
    - Any transport failure closes the connection; the caller decides when
      to reconnect.
    """

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        connect_timeout: Optional[float] = None,
    ):
        self.address = address
        self.host, self.port = parse_address(address)
        self.connect_timeout = connect_timeout

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def connect(self, address: Optional[str] = None) -> None:
        """Open a fresh connection, replacing any existing one."""
        await self.close()
        if address and address != self.address:
            self.host, self.port = parse_address(address)
            self.address = address
        logger.info(f"Connecting to {self.address}")
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Connection to {self.address} failed: {e}")
            raise TransportError(f"Could not connect to {self.address}: {e}") from e
        logger.info(f"Connected to {self.address}")

    async def close(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ConnectionError) as e:
            logger.debug(f"Error while closing connection: {e}")

    async def send(self, command: Command) -> None:
        if self._writer is None:
            raise TransportError("not connected")
        logger.debug(f"-> {command}")
        try:
            self._writer.write(command.to_bytes())
            await self._writer.drain()
        except (OSError, ConnectionError) as e:
            await self.close()
            raise TransportError(f"Write failed: {e}") from e

    async def read_reply(self) -> Reply:
        if self._reader is None:
            raise TransportError("not connected")
        try:
            reply = await read_reply(self._reader)
        except asyncio.IncompleteReadError as e:
            await self.close()
            raise TransportError("Connection closed by server") from e
        except (OSError, ConnectionError) as e:
            await self.close()
            raise TransportError(f"Read failed: {e}") from e
        except ProtocolDecodeError as e:
            # Stream position is unknown after a malformed reply
            logger.error(f"Protocol error from {self.address}: {e}")
            await self.close()
            raise
        logger.debug(f"<- {reply}")
        return reply

    async def execute(self, command: Command) -> Reply:
        """Send one command and wait for its reply."""
        async with self._lock:
            await self.send(command)
            return await self.read_reply()

    async def scan_keys(self, match: str = "*", count: Optional[int] = None) -> Reply:
        """Collect every key matching ``match`` by following the SCAN cursor.

        Returns an Array of Bulk keys, or the server's Error reply.

        Raises:
            ShapeMismatchError: a SCAN page was not ``[cursor, [keys...]]``.
        """
        cursor = SCAN_START_CURSOR
        keys: list[str] = []
        while True:
            args = [cursor, "MATCH", match]
            if count:
                args += ["COUNT", str(count)]
            reply = await self.execute(Command("SCAN", tuple(args)))
            if isinstance(reply, Error):
                return reply

            if not isinstance(reply, Array) or not reply.items or len(reply.items) != 2:
                raise ShapeMismatchError(f"Unexpected SCAN reply: {reply!r}")
            next_cursor = scalar_text(reply.items[0])
            page = string_items(reply.items[1])
            if next_cursor is None or page is None:
                raise ShapeMismatchError(f"Unexpected SCAN reply: {reply!r}")

            keys.extend(page)
            cursor = next_cursor
            if cursor == SCAN_START_CURSOR:
                break

        logger.debug(f"SCAN {match} returned {len(keys)} keys")
        return Array(tuple(Bulk(key) for key in keys))
