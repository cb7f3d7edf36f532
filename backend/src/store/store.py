"""Message persistence.

``MessageStore`` is the contract the hub and the query service depend on;
``SqlMessageStore`` implements it on top of SQLAlchemy. Every operation is a
coroutine: the blocking session work runs in the thread pool so the event
loop keeps serving sockets while the database is busy.
"""
import abc
import logging
import threading
from contextlib import nullcontext
from typing import AsyncIterator, Callable, List, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import InvalidArgumentError, Message, StorageUnavailableError
from utilities import DATABASE_URL, STORE_PAGE_SIZE, now_ms

from .tables import Base, MessageRow

logger = logging.getLogger(__name__)

# (after_id, page_size) -> next page in id order
PageFetcher = Callable[[int, int], List[Message]]


class MessageSequence:
    """Lazy, restartable sequence of messages in insertion order.

    Nothing is read until the sequence is iterated. Every ``async for`` starts
    a fresh read from the beginning and pulls ``page_size`` rows at a time, so
    a second pass sees messages created after the first one.
    """

    def __init__(self, fetch_page: PageFetcher, page_size: int = STORE_PAGE_SIZE):
        if page_size <= 0:
            raise InvalidArgumentError("page_size must be positive")
        self._fetch_page = fetch_page
        self._page_size = page_size

    def __aiter__(self) -> AsyncIterator[Message]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Message]:
        after_id = 0
        while True:
            page = await run_in_threadpool(self._fetch_page, after_id, self._page_size)
            for message in page:
                yield message
            if len(page) < self._page_size:
                return
            after_id = page[-1].id

    async def to_list(self) -> List[Message]:
        return [message async for message in self]


class MessageStore(abc.ABC):
    """Append-only message persistence."""

    @abc.abstractmethod
    async def create(self, content: str, sender: str) -> Message:
        """Assign id and timestamp, persist, and return the stored record."""

    @abc.abstractmethod
    def find_all(self) -> MessageSequence:
        ...

    @abc.abstractmethod
    def find_by_sender(self, sender: str) -> MessageSequence:
        ...

    @abc.abstractmethod
    async def find_by_id(self, message_id: int) -> Optional[Message]:
        ...

    @abc.abstractmethod
    async def find_recent(self, limit: int) -> List[Message]:
        """Last ``limit`` messages, oldest first."""

    @abc.abstractmethod
    async def count(self) -> int:
        ...

    def create_schema(self) -> None:
        pass

    def dispose(self) -> None:
        pass


def make_engine(url: str = DATABASE_URL) -> Engine:
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every thread sees its own empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


class SqlMessageStore(MessageStore):
    def __init__(self, url: str = DATABASE_URL, engine: Optional[Engine] = None, page_size: int = STORE_PAGE_SIZE):
        self.engine = engine if engine is not None else make_engine(url)
        self.page_size = page_size
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        # SQLite allows one writer and the in-memory pool shares a single connection
        self._lock = threading.Lock() if self.engine.dialect.name == "sqlite" else nullcontext()

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"could not create schema: {exc}") from exc
        logger.info("message store ready on %s", self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()

    # -------------- writes --------------
    async def create(self, content: str, sender: str) -> Message:
        return await run_in_threadpool(self._create, content, sender)

    def _create(self, content: str, sender: str) -> Message:
        row = MessageRow(content=content, sender=sender, timestamp=now_ms())
        try:
            with self._lock, self._session_factory() as session, session.begin():
                session.add(row)
                session.flush()
                message = row.to_message()
        except SQLAlchemyError as exc:
            logger.error("failed to persist message from %s: %s", sender, exc)
            raise StorageUnavailableError(f"could not persist message: {exc}") from exc
        logger.debug("persisted message %s from %s", message.id, sender)
        return message

    # -------------- reads --------------
    def find_all(self) -> MessageSequence:
        return MessageSequence(self._page_fetcher(None), self.page_size)

    def find_by_sender(self, sender: str) -> MessageSequence:
        return MessageSequence(self._page_fetcher(sender), self.page_size)

    def _page_fetcher(self, sender: Optional[str]) -> PageFetcher:
        def fetch(after_id: int, size: int) -> List[Message]:
            stmt = select(MessageRow).where(MessageRow.id > after_id)
            if sender is not None:
                stmt = stmt.where(MessageRow.sender == sender)
            stmt = stmt.order_by(MessageRow.id).limit(size)
            return [row.to_message() for row in self._scalars(stmt)]
        return fetch

    async def find_by_id(self, message_id: int) -> Optional[Message]:
        return await run_in_threadpool(self._find_by_id, message_id)

    def _find_by_id(self, message_id: int) -> Optional[Message]:
        try:
            with self._lock, self._session_factory() as session:
                row = session.get(MessageRow, message_id)
                return row.to_message() if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"could not read message {message_id}: {exc}") from exc

    async def find_recent(self, limit: int) -> List[Message]:
        if limit <= 0:
            raise InvalidArgumentError("limit must be positive")
        stmt = select(MessageRow).order_by(MessageRow.id.desc()).limit(limit)
        rows = await run_in_threadpool(self._scalars, stmt)
        return [row.to_message() for row in reversed(rows)]

    async def count(self) -> int:
        return await run_in_threadpool(self._count)

    def _count(self) -> int:
        try:
            with self._lock, self._session_factory() as session:
                return session.scalar(select(func.count()).select_from(MessageRow)) or 0
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"could not count messages: {exc}") from exc

    def _scalars(self, stmt) -> List[MessageRow]:
        try:
            with self._lock, self._session_factory() as session:
                return list(session.scalars(stmt))
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"could not read messages: {exc}") from exc
