from typing import List

from models import InvalidArgumentError, Message, NotFoundError
from store import MessageSequence, MessageStore


class QueryService:
    ''' Read side over the message store. No caching: every call re-reads.'''

    def __init__(self, store: MessageStore):
        self.store = store

    def list_all(self) -> MessageSequence:
        return self.store.find_all()

    async def by_sender(self, sender: str) -> List[Message]:
        messages = await self.store.find_by_sender(sender).to_list()
        if not messages:
            raise NotFoundError(f"no messages from sender {sender!r}")
        return messages

    async def recent(self, limit: int) -> List[Message]:
        if limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
        return await self.store.find_recent(limit)

    async def by_id(self, message_id: int) -> Message:
        message = await self.store.find_by_id(message_id)
        if message is None:
            raise NotFoundError(f"message {message_id} not found")
        return message

    async def count(self) -> int:
        return await self.store.count()
