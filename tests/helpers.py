"""In-memory transport standing in for the controller websocket."""

import asyncio
import json

from core.espgrow.channel import ChannelManager

URL = "ws://192.168.1.50/ws"


class FakeConnection:
    def __init__(self):
        self.sent = []
        self.closed = False
        self.fail_sends = False
        self.close_error = None
        self._inbox = asyncio.Queue()

    async def send(self, text):
        if self.closed or self.fail_sends:
            raise ConnectionError("connection closed")
        self.sent.append(text)

    async def receive(self):
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)
        if self.close_error:
            raise self.close_error

    def push(self, message):
        """Deliver a frame from the controller."""
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        """Controller side close."""
        self._inbox.put_nowait(None)

    def fail(self, error):
        """Transport error on the next receive."""
        self._inbox.put_nowait(error)

    def frames(self):
        return [json.loads(text) for text in self.sent]

    def types(self):
        return [frame["type"] for frame in self.frames()]


class FakeTransport:
    def __init__(self):
        self.connections = []
        self.urls = []
        self.fail = False
        self.drop_on_open = False

    async def open(self, url):
        self.urls.append(url)
        if self.fail:
            raise ConnectionError("connection refused")
        connection = FakeConnection()
        if self.drop_on_open:
            connection.drop()
        self.connections.append(connection)
        return connection

    async def close(self):
        pass

    @property
    def latest(self):
        return self.connections[-1]


async def settle(rounds=10):
    """Let pending tasks (reader, writer) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def connected_channel(**kwargs):
    transport = FakeTransport()
    channel = ChannelManager(transport, url=URL, **kwargs)
    channel.connect()
    await settle()
    return channel, transport.latest
