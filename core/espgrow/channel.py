"""
Controller Channel

Owns the single websocket to the controller. Connects, reconnects after a
fixed delay when the connection drops, queues commands while disconnected
and dispatches controller pushes to subscribers by message type.

All methods must be called from the event loop thread.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from pydantic import BaseModel, ValidationError

from .exceptions import ConfigurationError, ParseError
from .models import ConnectionStatus
from .protocol import decode_frame, encode_frame

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]
StatusListener = Callable[[ConnectionStatus], None]


class Connection(Protocol):
    """One open transport connection."""

    async def send(self, text: str) -> None: ...

    async def receive(self) -> Optional[str]:
        """Next text frame, or None once the connection is closed."""
        ...

    async def close(self) -> None: ...


class Transport(Protocol):
    async def open(self, url: str) -> Connection: ...


class ChannelState(str, Enum):
    IDLE = "idle"  # Disconnected, reconnect may be pending
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"  # Torn down on purpose, no reconnect


_STATUS = {
    ChannelState.IDLE: ConnectionStatus.DISCONNECTED,
    ChannelState.CONNECTING: ConnectionStatus.CONNECTING,
    ChannelState.OPEN: ConnectionStatus.CONNECTED,
    ChannelState.CLOSED: ConnectionStatus.DISCONNECTED,
}


@dataclass
class QueuedCommand:
    type: str
    text: str
    queued_at: float


class Subscription:
    """Handle for one registered handler. Call it to unsubscribe."""

    def __init__(
        self,
        channel: "ChannelManager",
        key: int,
        message_type: str,
        handler: Handler,
        schema: Optional[type[BaseModel]] = None,
    ):
        self._channel = channel
        self.key = key
        self.message_type = message_type
        self.handler = handler
        self.schema = schema

    def __call__(self) -> None:
        self._channel._remove(self)

    def deliver(self, payload: Any) -> None:
        if self.schema is not None:
            try:
                payload = self.schema.model_validate(payload)
            except ValidationError as e:
                logger.debug(f"Dropping '{self.message_type}' frame: {e.error_count()} schema error(s)")
                return
        self.handler(payload)


class ChannelManager:
    """Single reconnecting connection to the controller."""

    def __init__(
        self,
        transport: Transport,
        url: Optional[str] = None,
        reconnect_delay: float = 3.0,
        max_queued: Optional[int] = 256,
        queued_ttl: Optional[float] = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize channel.

        Args:
            transport: Opens connections (aiohttp websocket in production)
            url: Controller websocket URL, e.g. "ws://192.168.1.10/ws"
            reconnect_delay: Seconds between a close and the next attempt
            max_queued: Cap on commands held while disconnected (None = unbounded)
            queued_ttl: Queued commands older than this many seconds are
                discarded instead of sent on reconnect (None = keep all)
            clock: Monotonic time source for queue ages
        """
        self._transport = transport
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.max_queued = max_queued
        self.queued_ttl = queued_ttl
        self._clock = clock

        self.state = ChannelState.IDLE
        self.last_error: Optional[str] = None

        self._queue: deque[QueuedCommand] = deque()
        self._subscriptions: dict[str, dict[int, Subscription]] = {}
        self._status_listeners: dict[int, StatusListener] = {}
        self._keys = itertools.count(1)

        self._task: Optional[asyncio.Task] = None
        self._outgoing: Optional[asyncio.Queue] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self._teardown = False
        self.connect_attempts = 0

    @property
    def status(self) -> ConnectionStatus:
        return _STATUS[self.state]

    @property
    def connected(self) -> bool:
        return self.state is ChannelState.OPEN

    @property
    def queued(self) -> list[QueuedCommand]:
        """Commands waiting for the next successful connect."""
        return list(self._queue)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self, url: Optional[str] = None) -> None:
        """Open the connection. No-op while connecting or already open."""
        if self.state in (ChannelState.CONNECTING, ChannelState.OPEN):
            return

        target = url or self.url
        if not target:
            raise ConfigurationError("No controller URL configured")

        self.url = target
        self._teardown = False
        self._cancel_reconnect()
        self._generation += 1
        self.connect_attempts += 1
        self._set_state(ChannelState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run(target, self._generation))

    def disconnect(self) -> None:
        """Tear down on purpose. Cancels any pending reconnect."""
        self._teardown = True
        self._cancel_reconnect()
        if self._task and not self._task.done():
            self._task.cancel()
        self._set_state(ChannelState.CLOSED)
        logger.info("🔌 Controller channel closed")

    async def aclose(self) -> None:
        """Disconnect and wait for the connection task to finish."""
        task = self._task
        self.disconnect()
        if task:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self, url: str, generation: int) -> None:
        """Connect, pump inbound frames until the connection closes."""
        logger.info(f"🔌 Connecting to controller at {url}")
        try:
            connection = await self._transport.open(url)
        except asyncio.CancelledError:
            self._handle_close(generation)
            raise
        except Exception as e:
            self.last_error = f"Connection failed: {e}"
            logger.warning(f"Connection to {url} failed: {e}")
            self._handle_close(generation)
            return

        outgoing: asyncio.Queue = asyncio.Queue()
        self._outgoing = outgoing
        self.last_error = None
        self._set_state(ChannelState.OPEN, notify=False)
        self._flush_queue()
        failed: list[str] = []
        writer = asyncio.get_running_loop().create_task(
            self._write_loop(connection, outgoing, failed)
        )
        logger.info("🔌 Controller channel open")
        self._notify_status()

        try:
            while True:
                text = await connection.receive()
                if text is None:
                    break
                self._dispatch(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            logger.warning(f"Controller connection error: {self.last_error}")
        finally:
            # Every exit path closes; the close drives reconnection
            writer.cancel()
            try:
                await connection.close()
            except Exception as e:
                logger.warning(f"Error closing controller connection: {e}")
            finally:
                self._requeue_unsent(outgoing, failed)
                self._handle_close(generation)

    async def _write_loop(
        self,
        connection: Connection,
        outgoing: asyncio.Queue,
        failed: list[str],
    ) -> None:
        """Send outbound frames one at a time, in order.

        A frame whose send fails is left in ``failed`` so it can be queued
        again for the next connection.
        """
        while True:
            text = await outgoing.get()
            try:
                await connection.send(text)
            except Exception as e:
                failed.append(text)
                self.last_error = f"Send failed: {e}"
                logger.warning(f"Failed to send frame, closing connection: {e}")
                try:
                    await connection.close()
                except Exception as close_error:
                    logger.debug(f"Error closing connection after failed send: {close_error}")
                return

    def _handle_close(self, generation: int) -> None:
        if generation != self._generation:
            return

        if self._teardown:
            return

        self._set_state(ChannelState.IDLE)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._reconnect)
        logger.info(f"Controller channel lost, reconnecting in {self.reconnect_delay:.1f}s")

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._teardown or self.state is not ChannelState.IDLE:
            return
        self.connect(self.url)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Send a command now, or queue it until the next connect."""
        text = encode_frame(type, data)

        if self.state is ChannelState.OPEN and self._outgoing is not None:
            self._outgoing.put_nowait(text)
            return

        if self.max_queued is not None and len(self._queue) >= self.max_queued:
            dropped = self._queue.popleft()
            logger.warning(f"Outbound queue full ({self.max_queued}), dropping oldest '{dropped.type}' command")
        self._queue.append(QueuedCommand(type=type, text=text, queued_at=self._clock()))
        logger.debug(f"Queued '{type}' command ({len(self._queue)} waiting)")

    def _flush_queue(self) -> None:
        if not self._queue:
            return

        now = self._clock()
        pending, self._queue = self._queue, deque()
        sent = 0
        for command in pending:
            age = now - command.queued_at
            if self.queued_ttl is not None and age > self.queued_ttl:
                logger.warning(f"Discarding stale '{command.type}' command queued {age:.0f}s ago")
                continue
            self._outgoing.put_nowait(command.text)
            sent += 1
        logger.info(f"Flushed {sent} queued command(s)")

    def _requeue_unsent(self, outgoing: asyncio.Queue, failed: list[str]) -> None:
        """Move frames a closed connection never sent back in front of the queue."""
        if self._outgoing is outgoing:
            self._outgoing = None

        unsent = list(failed)
        while not outgoing.empty():
            unsent.append(outgoing.get_nowait())
        if not unsent:
            return

        if self.state is ChannelState.OPEN and self._outgoing is not None:
            # A newer connection is already open
            for text in unsent:
                self._outgoing.put_nowait(text)
            logger.debug(f"Handed {len(unsent)} unsent command(s) to the new connection")
            return

        now = self._clock()
        self._queue.extendleft(reversed([
            QueuedCommand(type=decode_frame(text).type, text=text, queued_at=now)
            for text in unsent
        ]))
        logger.debug(f"Re-queued {len(unsent)} unsent command(s)")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def subscribe(
        self,
        message_type: str,
        handler: Handler,
        schema: Optional[type[BaseModel]] = None,
    ) -> Subscription:
        """Register a handler for one push type.

        The handler receives the frame's ``data`` member, or the whole frame
        when there is none. With a schema the payload is validated first and
        frames that do not match are dropped.

        Returns:
            Subscription handle; calling it removes exactly this handler
        """
        subscription = Subscription(self, next(self._keys), message_type, handler, schema)
        self._subscriptions.setdefault(message_type, {})[subscription.key] = subscription
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        handlers = self._subscriptions.get(subscription.message_type)
        if handlers:
            handlers.pop(subscription.key, None)

    def subscriber_count(self, message_type: str) -> int:
        return len(self._subscriptions.get(message_type, {}))

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Be told about every connection status change."""
        key = next(self._keys)
        self._status_listeners[key] = listener
        return lambda: self._status_listeners.pop(key, None)

    def _dispatch(self, raw: str) -> None:
        try:
            frame = decode_frame(raw)
        except ParseError as e:
            logger.debug(f"Dropping inbound frame: {e}")
            return

        handlers = self._subscriptions.get(frame.type)
        if not handlers:
            logger.debug(f"Ignoring '{frame.type}' frame (no subscribers)")
            return

        payload = frame.payload
        for subscription in list(handlers.values()):
            try:
                subscription.deliver(payload)
            except ParseError as e:
                logger.debug(f"Dropping '{frame.type}' frame: {e}")
            except Exception as e:
                logger.error(f"Error in '{frame.type}' handler: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _set_state(self, state: ChannelState, notify: bool = True) -> None:
        if state is self.state:
            return
        previous = self.status
        self.state = state
        if notify and self.status is not previous:
            self._notify_status()

    def _notify_status(self) -> None:
        status = self.status
        for listener in list(self._status_listeners.values()):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Error in connection status listener: {e}", exc_info=True)
