"""
Websocket transport for the controller channel, built on aiohttp.
"""

import asyncio
import codecs
import logging
from contextlib import suppress
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)


class AiohttpConnection:
    """One aiohttp websocket, reduced to send/receive/close."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws

    async def send(self, text: str) -> None:
        await self._ws.send_str(text)

    async def receive(self) -> Optional[str]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                try:
                    return codecs.decode(msg.data, "utf-8")
                except UnicodeDecodeError:
                    logger.debug("Ignoring non UTF-8 binary frame")
                    continue
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"websocket error: {self._ws.exception()}")
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None

    async def close(self) -> None:
        with suppress(aiohttp.ClientError, RuntimeError):
            await self._ws.close()


class AiohttpTransport:
    """Opens websocket connections to the controller."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        connect_timeout: float = 10.0,
        heartbeat: Optional[float] = 30.0,
    ):
        """Initialize transport.

        Args:
            session: Shared client session (created lazily when omitted)
            connect_timeout: Seconds allowed for the websocket handshake
            heartbeat: Websocket ping interval in seconds (None disables)
        """
        self._session = session
        self._owns_session = session is None
        self.connect_timeout = connect_timeout
        self.heartbeat = heartbeat

    async def open(self, url: str) -> AiohttpConnection:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        ws = await asyncio.wait_for(
            self._session.ws_connect(url, heartbeat=self.heartbeat, autoclose=True),
            timeout=self.connect_timeout,
        )
        logger.debug(f"Websocket handshake with {url} complete")
        return AiohttpConnection(ws)

    async def close(self) -> None:
        """Close the session if this transport created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None
