from __future__ import annotations

import pytest
from pydantic import ValidationError

from models import InvalidArgumentError, StorageUnavailableError
from store import Base, SqlMessageStore


@pytest.mark.asyncio
async def test_create_assigns_id_and_timestamp(store: SqlMessageStore):
    m = await store.create("hi", "bob")
    assert m.id >= 1
    assert m.timestamp > 0
    assert (m.content, m.sender) == ("hi", "bob")
    assert await store.find_by_id(m.id) == m


@pytest.mark.asyncio
async def test_messages_are_immutable(store: SqlMessageStore):
    m = await store.create("hi", "bob")
    with pytest.raises(ValidationError):
        m.content = "changed"


@pytest.mark.asyncio
async def test_ids_follow_insertion_order(store: SqlMessageStore):
    created = [await store.create(f"m{i}", "bob") for i in range(5)]
    ids = [m.id for m in created]
    assert ids == sorted(ids)
    assert len(set(ids)) == 5


@pytest.mark.asyncio
async def test_find_all_pages_lazily_in_insertion_order(store: SqlMessageStore):
    for i in range(5):
        await store.create(f"m{i}", "alice" if i % 2 else "bob")
    # page_size is 2, so this takes three fetches
    messages = await store.find_all().to_list()
    assert [m.content for m in messages] == ["m0", "m1", "m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_find_all_is_restartable(store: SqlMessageStore):
    await store.create("first", "bob")
    seq = store.find_all()
    assert [m.content async for m in seq] == ["first"]

    await store.create("second", "bob")
    # same sequence object, fresh read
    assert [m.content async for m in seq] == ["first", "second"]


@pytest.mark.asyncio
async def test_find_by_sender_is_exact_match(store: SqlMessageStore):
    await store.create("a1", "alice")
    await store.create("b1", "bob")
    await store.create("a2", "alice")
    await store.create("x", "alice2")
    found = await store.find_by_sender("alice").to_list()
    assert [m.content for m in found] == ["a1", "a2"]
    assert await store.find_by_sender("carol").to_list() == []


@pytest.mark.asyncio
async def test_find_by_id_missing_returns_none(store: SqlMessageStore):
    assert await store.find_by_id(42) is None


@pytest.mark.asyncio
async def test_find_recent_and_count(store: SqlMessageStore):
    for i in range(1, 6):
        await store.create(f"m{i}", "bob")
    recent = await store.find_recent(3)
    assert [m.content for m in recent] == ["m3", "m4", "m5"]
    assert [m.content for m in await store.find_recent(50)] == ["m1", "m2", "m3", "m4", "m5"]
    assert await store.count() == 5
    with pytest.raises(InvalidArgumentError):
        await store.find_recent(0)


@pytest.mark.asyncio
async def test_backend_failure_is_reported(store: SqlMessageStore):
    Base.metadata.drop_all(store.engine)
    with pytest.raises(StorageUnavailableError):
        await store.create("hi", "bob")
    with pytest.raises(StorageUnavailableError):
        await store.count()
    with pytest.raises(StorageUnavailableError):
        await store.find_all().to_list()


@pytest.mark.asyncio
async def test_file_backed_store_survives_reopen(tmp_path):
    url = f"sqlite:///{tmp_path / 'chat.db'}"
    first = SqlMessageStore(url)
    first.create_schema()
    m = await first.create("persisted", "bob")
    first.dispose()

    second = SqlMessageStore(url)
    second.create_schema()
    assert await second.find_by_id(m.id) == m
    second.dispose()
