"""Tests for PostgresRecordRepository."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from indexer.storage.repository import PostgresRecordRepository
from indexer.storage.schemas import Record


@pytest.fixture
def sample_record() -> Record:
    return Record(
        owner_id="alice",
        kind="post",
        identifier="0033SSE3B1FQ0",
        uri="pubky://alice/pub/pubky.app/posts/0033SSE3B1FQ0",
        payload={"content": "hello"},
        content_hash="9d0e51",
        source="https://homeserver.example",
        cursor="42",
    )


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for a records row."""
    return {
        "owner_id": "alice",
        "kind": "post",
        "identifier": "0033SSE3B1FQ0",
        "uri": "pubky://alice/pub/pubky.app/posts/0033SSE3B1FQ0",
        "payload": '{"content": "hello"}',
        "content_hash": "9d0e51",
        "tombstoned": True,
        "source": "https://homeserver.example",
        "cursor": "43",
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2025, 1, 2, tzinfo=timezone.utc),
    }


class TestCreateTable:
    """Tests for schema creation."""

    @pytest.mark.asyncio
    async def test_primary_key_includes_kind(self, mock_database: AsyncMock):
        await PostgresRecordRepository(mock_database).create_table()

        sql = mock_database.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS records" in sql
        assert "PRIMARY KEY (owner_id, kind, identifier)" in sql


class TestUpsert:
    """Tests for record upsert."""

    @pytest.mark.asyncio
    async def test_passes_correct_params(
        self, mock_database: AsyncMock, sample_record: Record
    ) -> None:
        await PostgresRecordRepository(mock_database).upsert(sample_record)

        args = mock_database.execute.call_args[0]
        sql = args[0]
        assert "INSERT INTO records" in sql
        assert "ON CONFLICT (owner_id, kind, identifier) DO UPDATE" in sql
        assert args[1:4] == ("alice", "post", "0033SSE3B1FQ0")
        assert json.loads(args[5]) == {"content": "hello"}
        assert args[6] == "9d0e51"
        assert args[7] is False  # tombstoned
        assert args[9] == "42"

    @pytest.mark.asyncio
    async def test_null_payload(self, mock_database: AsyncMock, sample_record: Record) -> None:
        record = sample_record.model_copy(update={"payload": None})
        await PostgresRecordRepository(mock_database).upsert(record)
        assert mock_database.execute.call_args[0][5] is None


class TestTombstone:
    """Tests for tombstoning."""

    @pytest.mark.asyncio
    async def test_keeps_payload_on_conflict(
        self, mock_database: AsyncMock, sample_db_row: dict
    ) -> None:
        mock_database.fetchrow.return_value = sample_db_row

        record = await PostgresRecordRepository(mock_database).tombstone(
            "alice",
            "post",
            "0033SSE3B1FQ0",
            uri=sample_db_row["uri"],
            source="https://homeserver.example",
            cursor="43",
        )

        sql = mock_database.fetchrow.call_args[0][0]
        assert "tombstoned = TRUE" in sql
        assert "payload =" not in sql
        assert "RETURNING *" in sql
        assert record.tombstoned is True
        assert record.payload == {"content": "hello"}
        assert record.cursor == "43"


class TestQueries:
    """Tests for record lookups."""

    @pytest.mark.asyncio
    async def test_get_by_identifier_found(
        self, mock_database: AsyncMock, sample_db_row: dict
    ) -> None:
        mock_database.fetchrow.return_value = sample_db_row

        record = await PostgresRecordRepository(mock_database).get_by_identifier(
            "alice", "0033SSE3B1FQ0", kind="post"
        )

        assert record is not None
        assert record.key == ("alice", "post", "0033SSE3B1FQ0")
        assert mock_database.fetchrow.call_args[0][1:] == ("alice", "0033SSE3B1FQ0", "post")

    @pytest.mark.asyncio
    async def test_get_by_identifier_missing(self, mock_database: AsyncMock) -> None:
        result = await PostgresRecordRepository(mock_database).get_by_identifier("alice", "x")
        assert result is None

    @pytest.mark.asyncio
    async def test_list_active_filters_tombstones(
        self, mock_database: AsyncMock, sample_db_row: dict
    ) -> None:
        mock_database.fetch.return_value = [{**sample_db_row, "tombstoned": False}]

        records = await PostgresRecordRepository(mock_database).list_active("alice", kind="post")

        assert len(records) == 1
        args = mock_database.fetch.call_args[0]
        assert "tombstoned = FALSE" in args[0]
        assert "kind = $2" in args[0]
        assert args[1:] == ("alice", "post")

    @pytest.mark.asyncio
    async def test_list_active_all_kinds(self, mock_database: AsyncMock) -> None:
        await PostgresRecordRepository(mock_database).list_active("alice")
        args = mock_database.fetch.call_args[0]
        assert "kind =" not in args[0]
        assert args[1:] == ("alice",)
