import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from models import Connection, DuplicateConnectionError, InvalidArgumentError, NotFoundError
from utilities import DEFAULT_TOPIC

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    ''' Live connections and the topics they listen to. Pure bookkeeping, no I/O.'''

    def __init__(self, default_topic: str = DEFAULT_TOPIC):
        self.default_topic = default_topic
        self._connections: Dict[str, Connection] = {}
        # topic -> connection_id -> connection, insertion ordered
        self._topics: Dict[str, Dict[str, Connection]] = {}
        self.lock = asyncio.Lock()

    async def register(self, connection: Connection, topics: Optional[Iterable[str]] = None):
        if isinstance(topics, str):
            raise InvalidArgumentError("topics must be a collection of names, not a single string")
        wanted = set(topics or ()) or {self.default_topic}
        for topic in wanted:
            _check_topic(topic)
        async with self.lock:
            if connection.connection_id in self._connections:
                # never overwrite: the old entry may still own a live socket
                raise DuplicateConnectionError(f"connection {connection.connection_id} is already registered")
            self._connections[connection.connection_id] = connection
            for topic in wanted:
                self._topics.setdefault(topic, {})[connection.connection_id] = connection
            connection.topics = wanted
        logger.info("registered connection %s (%s) on %s", connection.connection_id, connection.identity, sorted(wanted))

    async def unregister(self, connection_id: str) -> Optional[Connection]:
        async with self.lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return None
            for topic in connection.topics:
                self._drop(topic, connection_id)
        logger.info("unregistered connection %s", connection_id)
        return connection

    async def discard(self, connection: Connection) -> bool:
        """Unregister ``connection`` only if its id still maps to this exact object."""
        async with self.lock:
            if self._connections.get(connection.connection_id) is not connection:
                return False
            del self._connections[connection.connection_id]
            for topic in connection.topics:
                self._drop(topic, connection.connection_id)
        logger.info("unregistered connection %s", connection.connection_id)
        return True

    async def subscribe(self, connection_id: str, topic: str):
        _check_topic(topic)
        async with self.lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise NotFoundError(f"connection {connection_id} is not registered")
            self._topics.setdefault(topic, {})[connection_id] = connection
            connection.topics.add(topic)

    async def unsubscribe(self, connection_id: str, topic: str) -> bool:
        async with self.lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise NotFoundError(f"connection {connection_id} is not registered")
            if topic not in connection.topics:
                return False
            connection.topics.discard(topic)
            self._drop(topic, connection_id)
            return True

    async def subscribers_of(self, topic: str) -> List[Connection]:
        async with self.lock:
            return list(self._topics.get(topic, {}).values())

    async def get(self, connection_id: str) -> Optional[Connection]:
        async with self.lock:
            return self._connections.get(connection_id)

    async def connections(self) -> List[Connection]:
        async with self.lock:
            return list(self._connections.values())

    async def topic_counts(self) -> Dict[str, int]:
        async with self.lock:
            return {topic: len(subs) for topic, subs in self._topics.items()}

    def _drop(self, topic: str, connection_id: str):
        subs = self._topics.get(topic)
        if subs is None:
            return
        subs.pop(connection_id, None)
        if not subs:
            del self._topics[topic]


def _check_topic(topic: str):
    if not isinstance(topic, str) or not topic.strip():
        raise InvalidArgumentError("topic name must be a non-empty string")
