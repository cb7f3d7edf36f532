import json
import asyncio
import logging
from typing import Callable, Optional, Protocol, Set

from fastapi import WebSocket
from pydantic import BaseModel, ConfigDict
from starlette.websockets import WebSocketState

from .errors import DeliveryError
from utilities import ANONYMOUS_IDENTITY, CONNECTION_QUEUE_SIZE

logger = logging.getLogger(__name__)


class Message(BaseModel):
    ''' A persisted chat message. Never changes once the store hands it out.'''
    model_config = ConfigDict(frozen=True)

    id: int
    content: str
    sender: str
    timestamp: int  # epoch milliseconds, assigned by the store


# ------------ Transport ------------
class Channel(Protocol):
    ''' Duplex channel to one client. send() raises DeliveryError when the peer is gone.'''

    async def send(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class WebSocketChannel:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, data: str) -> None:
        try:
            await self.websocket.send_text(data)
        except Exception as exc:
            # (broken pipe / closed / disconnect) all look the same to the hub
            raise DeliveryError(f"websocket send failed: {exc!r}") from exc

    async def close(self, code: int = 1000) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=code)
        except RuntimeError:
            # peer already went away
            pass


# ------------ In-memory structures ------------
class Connection:
    ''' Represents one live client connection.'''

    def __init__(
        self,
        connection_id: str,
        channel: Channel,
        identity: str = ANONYMOUS_IDENTITY,
        queue_size: int = CONNECTION_QUEUE_SIZE,
        on_broken: Optional[Callable[["Connection"], None]] = None,
    ):
        self.connection_id = connection_id
        self.channel = channel
        self.identity = identity or ANONYMOUS_IDENTITY
        # maintained by the ConnectionRegistry
        self.topics: Set[str] = set()

        # per connection outbound buffer
        # publishers never wait for a slow client: a full queue is a delivery failure
        # and the connection gets evicted instead of silently losing messages
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        # background task that pops from queue and writes to the channel in order
        self.sender_task: Optional[asyncio.Task] = None
        self.connected = True
        self._on_broken = on_broken

    def start(self):
        if self.sender_task is None:
            self.sender_task = asyncio.create_task(self._sender_loop())

    def deliver(self, frame: dict):
        """Enqueue a broadcast frame without waiting."""
        if not self.connected:
            raise DeliveryError(f"connection {self.connection_id} is closed")
        try:
            self.queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise DeliveryError(f"connection {self.connection_id} outbound queue is full")

    async def reply(self, frame: dict):
        """Enqueue a direct response, waiting for room in the queue."""
        if not self.connected:
            raise DeliveryError(f"connection {self.connection_id} is closed")
        await self.queue.put(frame)

    async def flush(self):
        """Wait until every queued frame has been written (or discarded)."""
        await self.queue.join()

    async def _sender_loop(self):
        broken = False
        try:
            while self.connected:
                frame = await self.queue.get()
                try:
                    await self.channel.send(json.dumps(frame))
                except DeliveryError as exc:
                    logger.warning("connection %s: %s", self.connection_id, exc)
                    broken = True
                    break
                except Exception:
                    # channels are pluggable; any failure only takes down this connection
                    logger.exception("connection %s: channel send failed", self.connection_id)
                    broken = True
                    break
                finally:
                    self.queue.task_done()
        except asyncio.CancelledError:
            # Graceful cancellation
            pass
        finally:
            self.connected = False
            self._discard_pending()
            if broken and self._on_broken is not None:
                self._on_broken(self)

    def _discard_pending(self):
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self.queue.task_done()

    # graceful cleanup
    async def stop(self):
        self.connected = False
        task = self.sender_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("connection %s: sender task failed", self.connection_id)
        self._discard_pending()
