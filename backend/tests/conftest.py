"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import pytest
import pytest_asyncio

from models import DeliveryError, StorageUnavailableError
from services import BroadcastHub, ConnectionRegistry, QueryService
from store import SqlMessageStore


class FakeChannel:
    """In-memory stand-in for a client socket. Records every frame it is sent."""

    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None,
                 error: Optional[Exception] = None):
        self.fail = fail
        self.error = error
        self.gate = gate
        self.sent: List[dict] = []
        self.send_calls = 0
        self.closed_with: Optional[int] = None

    async def send(self, data: str) -> None:
        self.send_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.fail:
            raise DeliveryError("peer went away")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def events(self, topic: Optional[str] = None) -> List[dict]:
        return [f for f in self.sent if f["type"] == "event" and (topic is None or f["topic"] == topic)]


class BrokenStore(SqlMessageStore):
    """Store whose writes always fail, reads still work."""

    async def create(self, content: str, sender: str):
        raise StorageUnavailableError("database is down")


async def wait_until(predicate, timeout: float = 2.0):
    """Poll an async predicate until it returns truthy."""
    async def poll():
        while not await predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def store():
    # small pages so lazy sequences have to fetch more than once
    s = SqlMessageStore("sqlite://", page_size=2)
    s.create_schema()
    yield s
    s.dispose()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def query(store) -> QueryService:
    return QueryService(store)


@pytest_asyncio.fixture
async def hub(store, registry):
    h = BroadcastHub(store, registry)
    yield h
    await h.close()
