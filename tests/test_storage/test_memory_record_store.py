"""Tests for InMemoryRecordStore."""

import pytest

from indexer.storage.memory import InMemoryRecordStore
from indexer.storage.schemas import Record


def make_record(identifier: str = "0033SSE3B1FQ0", kind: str = "post", **kwargs) -> Record:
    return Record(
        owner_id=kwargs.pop("owner_id", "alice"),
        kind=kind,
        identifier=identifier,
        uri=f"pubky://alice/pub/pubky.app/{kind}s/{identifier}",
        payload=kwargs.pop("payload", {"content": "hello"}),
        **kwargs,
    )


class TestInMemoryRecordStore:
    """Tests for the dict-backed store."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self):
        store = InMemoryRecordStore()
        await store.upsert(make_record())

        record = await store.get_by_identifier("alice", "0033SSE3B1FQ0")
        assert record is not None
        assert record.payload == {"content": "hello"}

    @pytest.mark.asyncio
    async def test_returns_copies(self):
        store = InMemoryRecordStore()
        await store.upsert(make_record())

        record = await store.get_by_identifier("alice", "0033SSE3B1FQ0")
        record.payload["content"] = "mutated"

        again = await store.get_by_identifier("alice", "0033SSE3B1FQ0")
        assert again.payload == {"content": "hello"}

    @pytest.mark.asyncio
    async def test_tombstone_existing_keeps_payload(self):
        store = InMemoryRecordStore()
        await store.upsert(make_record(cursor="1"))

        record = await store.tombstone(
            "alice", "post", "0033SSE3B1FQ0", uri="pubky://x", cursor="2"
        )

        assert record.tombstoned is True
        assert record.payload == {"content": "hello"}
        assert record.cursor == "2"

    @pytest.mark.asyncio
    async def test_tombstone_missing_creates_placeholder(self):
        store = InMemoryRecordStore()
        record = await store.tombstone("alice", "tag", "5TF0BBZ3R1SZN42GA0VSETW8H3", uri="pubky://x")

        assert record.tombstoned is True
        assert record.payload is None
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_list_active(self):
        store = InMemoryRecordStore()
        await store.upsert(make_record("0033SSE3B1FQ0"))
        await store.upsert(make_record("0033SSE3B1FQ1"))
        await store.upsert(make_record("profile", kind="profile"))
        await store.upsert(make_record("0033SSE3B1FQ2", owner_id="bob"))
        await store.tombstone("alice", "post", "0033SSE3B1FQ1", uri="pubky://x")

        active = await store.list_active("alice")
        assert [r.identifier for r in active] == ["0033SSE3B1FQ0", "profile"]

        posts = await store.list_active("alice", kind="post")
        assert [r.identifier for r in posts] == ["0033SSE3B1FQ0"]

    @pytest.mark.asyncio
    async def test_get_missing(self):
        assert await InMemoryRecordStore().get_by_identifier("alice", "nope") is None
