"""Minimal FreeSWITCH event-socket (ESL) client for connectivity supervision.

Only what supervision needs: the auth handshake, an event subscription, and a
reader that turns disconnect notices or end-of-stream into a ``disconnect`` event.
"""

from __future__ import annotations

import asyncio

import structlog

from media_monitor.clients.base import ClientEvents
from media_monitor.errors import AuthError, ConnectError


logger = structlog.get_logger(__name__)

# Server-pushed frames that mean the socket is going away.
DISCONNECT_NOTICE_CATEGORIES = frozenset({"text/disconnect-notice", "text/rude-rejection"})

EslFrame = tuple[dict[str, str], str]


async def read_frame(reader: asyncio.StreamReader) -> EslFrame:
    """Read one ``Key: Value`` header block plus its ``Content-Length`` body.

    Raises:
        asyncio.IncompleteReadError: the stream ended mid-frame or before one started
    """
    headers: dict[str, str] = {}
    while True:
        line = (await reader.readuntil(b"\n")).decode("utf-8", "replace").rstrip("\r\n")
        if not line:
            if headers:
                break
            continue
        key, _, value = line.partition(":")
        headers[key.strip()] = value.strip()

    body = ""
    length = int(headers.get("Content-Length") or 0)
    if length > 0:
        body = (await reader.readexactly(length)).decode("utf-8", "replace")
    return headers, body


class EslClient(ClientEvents):
    def __init__(self, host: str, port: int, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        super().__init__()
        self.host = host
        self.port = port
        self._reader = reader
        self._writer = writer
        self._reader_task: asyncio.Task | None = None
        self._closing = False

    @classmethod
    async def open(cls, host: str, port: int, credential: str) -> "EslClient":
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise ConnectError(f"{type(e).__name__}: {e}") from e

        client = cls(host, port, reader, writer)
        try:
            await client._handshake(credential)
        except BaseException:
            await client._close_transport()
            raise
        client._reader_task = asyncio.get_running_loop().create_task(client._read_events())
        logger.info("Connected to FreeSWITCH ESL", host=host, port=port)
        return client

    async def _command(self, command: str) -> EslFrame:
        self._writer.write(f"{command}\n\n".encode("utf-8"))
        await self._writer.drain()
        while True:
            headers, body = await read_frame(self._reader)
            if headers.get("Content-Type") == "command/reply":
                return headers, body

    async def _handshake(self, credential: str) -> None:
        try:
            headers, _ = await read_frame(self._reader)
            if headers.get("Content-Type") != "auth/request":
                raise ConnectError(f"unexpected ESL banner {headers.get('Content-Type')!r}")

            headers, _ = await self._command(f"auth {credential}")
            if not headers.get("Reply-Text", "").startswith("+OK"):
                logger.error("FreeSWITCH ESL connection authentication error", host=self.host, port=self.port)
                raise AuthError(headers.get("Reply-Text") or "authentication rejected")

            headers, _ = await self._command("event plain all")
            if not headers.get("Reply-Text", "").startswith("+OK"):
                raise ConnectError(f"event subscription rejected: {headers.get('Reply-Text')!r}")
        except (asyncio.IncompleteReadError, OSError) as e:
            raise ConnectError(f"{type(e).__name__}: {e}") from e

    async def _read_events(self) -> None:
        try:
            while True:
                headers, _ = await read_frame(self._reader)
                content_type = headers.get("Content-Type", "")
                if content_type in DISCONNECT_NOTICE_CATEGORIES:
                    logger.error("FreeSWITCH ESL disconnect notice", content_type=content_type)
                    break
        except (asyncio.IncompleteReadError, OSError) as e:
            if not self._closing:
                logger.error("FreeSWITCH ESL connection received error", error=f"{type(e).__name__}: {e}")
        if not self._closing:
            self._emit_disconnect()

    async def _close_transport(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug("Error closing ESL socket", error=str(e))

    async def close(self) -> None:
        self._closing = True
        self._drop_listeners()
        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._close_transport()
