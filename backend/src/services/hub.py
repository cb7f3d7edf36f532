"""Broadcast hub: persist a message, then fan it out to a topic's subscribers.

Durability precedes visibility. A message is only broadcast after the store
has committed it, and persist+fan-out for a topic runs under that topic's
lock so every subscriber sees the topic in store order. Fan-out only enqueues
on each connection's outbound queue; socket writes happen in the connection's
own sender task, so one slow or dead client never holds up the others.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set

from models import Channel, Connection, DeliveryError, InvalidArgumentError, Message
from store import MessageStore
from utilities import ANONYMOUS_IDENTITY, CONNECTION_QUEUE_SIZE, DEFAULT_TOPIC, make_event

from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class BroadcastHub:
    def __init__(
        self,
        store: MessageStore,
        registry: ConnectionRegistry,
        default_topic: str = DEFAULT_TOPIC,
        queue_size: int = CONNECTION_QUEUE_SIZE,
    ):
        self.store = store
        self.registry = registry
        self.default_topic = default_topic
        self.queue_size = queue_size
        # topic -> lock, only while some publish holds or waits on it
        self._topic_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._evictions: Set[asyncio.Task] = set()
        # stats, kept only for topics that have subscribers
        self.messages_published: Dict[str, int] = {}

    # -------------- connection lifecycle --------------
    async def connect(
        self,
        channel: Channel,
        connection_id: str,
        identity: str = ANONYMOUS_IDENTITY,
        topics: Optional[Iterable[str]] = None,
    ) -> Connection:
        """Start a connection's sender task and register it."""
        connection = Connection(
            connection_id,
            channel,
            identity=identity,
            queue_size=self.queue_size,
            on_broken=self._schedule_eviction,
        )
        connection.start()
        try:
            await self.registry.register(connection, topics)
        except Exception:
            await connection.stop()
            raise
        return connection

    async def disconnect(self, connection_id: str) -> Optional[Connection]:
        connection = await self.registry.unregister(connection_id)
        if connection is not None:
            await connection.stop()
        return connection

    async def release(self, connection: Connection):
        """Unregister and stop one connection object.

        The id may already belong to a newer connection after a reconnect, in
        which case only this object is stopped.
        """
        await self.registry.discard(connection)
        await connection.stop()

    async def close(self):
        """Stop every registered connection and wait for pending evictions."""
        for connection in await self.registry.connections():
            try:
                await self.disconnect(connection.connection_id)
            except Exception:
                logger.exception("failed to stop connection %s", connection.connection_id)
        if self._evictions:
            await asyncio.gather(*self._evictions, return_exceptions=True)

    # -------------- publishing --------------
    async def publish(self, content: str, sender: str, topic: Optional[str] = None) -> Message:
        topic = topic or self.default_topic
        _require_text(content, "content")
        _require_text(sender, "sender")
        _require_text(topic, "topic")

        lock = self._topic_locks.setdefault(topic, asyncio.Lock())
        self._lock_users[topic] = self._lock_users.get(topic, 0) + 1
        try:
            async with lock:
                # raises PersistenceError; nothing has been broadcast yet
                message = await self.store.create(content, sender)
                subscribers = await self.registry.subscribers_of(topic)
                if subscribers:
                    self.messages_published[topic] = self.messages_published.get(topic, 0) + 1
                else:
                    self.messages_published.pop(topic, None)
                failed = self._fan_out(topic, message, subscribers)
        finally:
            self._lock_users[topic] -= 1
            if not self._lock_users[topic]:
                # nobody holds or waits on it, the next publish starts a fresh lock
                del self._lock_users[topic]
                del self._topic_locks[topic]

        for connection in failed:
            self._schedule_eviction(connection)
        logger.debug("message %s on %s delivered to %d/%d connections",
                     message.id, topic, len(subscribers) - len(failed), len(subscribers))
        return message

    def _fan_out(self, topic: str, message: Message, subscribers: List[Connection]) -> List[Connection]:
        frame = make_event(topic, message.model_dump())
        failed = []
        for connection in subscribers:
            try:
                connection.deliver(frame)
            except DeliveryError as exc:
                logger.warning("dropping connection %s from %s: %s", connection.connection_id, topic, exc)
                failed.append(connection)
        return failed

    async def stats(self) -> Dict[str, Dict[str, int]]:
        """Per-topic message and subscriber counts for topics with subscribers."""
        subscribers = await self.registry.topic_counts()
        for topic in list(self.messages_published):
            if topic not in subscribers:
                del self.messages_published[topic]
        return {
            name: {"messages": self.messages_published.get(name, 0), "subscribers": count}
            for name, count in sorted(subscribers.items())
        }

    # -------------- eviction --------------
    def _schedule_eviction(self, connection: Connection):
        task = asyncio.get_running_loop().create_task(self._evict(connection))
        self._evictions.add(task)
        task.add_done_callback(self._evictions.discard)

    async def _evict(self, connection: Connection):
        await self.release(connection)
        try:
            await connection.channel.close(code=1011)
        except Exception:
            logger.exception("failed to close channel of connection %s", connection.connection_id)


def _require_text(value, name: str):
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{name} must be a non-empty string")
