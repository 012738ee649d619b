"""
PostgreSQL record repository.

Stores indexed records in a single `records` table keyed by
(owner_id, kind, identifier). Writes are upserts, so replaying an event
range converges on the same rows.
"""

import json
import logging

from indexer.storage.base import RecordStore
from indexer.storage.database import Database
from indexer.storage.schemas import Record

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS records (
    owner_id     TEXT NOT NULL,
    kind         TEXT NOT NULL,
    identifier   TEXT NOT NULL,
    uri          TEXT NOT NULL,
    payload      JSONB,
    content_hash TEXT,
    tombstoned   BOOLEAN NOT NULL DEFAULT FALSE,
    source       TEXT,
    cursor       TEXT,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (owner_id, kind, identifier)
);

CREATE INDEX IF NOT EXISTS idx_records_identifier
    ON records(owner_id, identifier);
CREATE INDEX IF NOT EXISTS idx_records_active
    ON records(owner_id, kind) WHERE tombstoned = FALSE;
"""

_UPSERT_SQL = """
INSERT INTO records (owner_id, kind, identifier, uri, payload, content_hash,
                     tombstoned, source, cursor)
VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9)
ON CONFLICT (owner_id, kind, identifier) DO UPDATE SET
    uri = EXCLUDED.uri,
    payload = EXCLUDED.payload,
    content_hash = EXCLUDED.content_hash,
    tombstoned = EXCLUDED.tombstoned,
    source = EXCLUDED.source,
    cursor = EXCLUDED.cursor,
    updated_at = NOW()
"""

# Payload and content_hash are left untouched on conflict
_TOMBSTONE_SQL = """
INSERT INTO records (owner_id, kind, identifier, uri, tombstoned, source, cursor)
VALUES ($1, $2, $3, $4, TRUE, $5, $6)
ON CONFLICT (owner_id, kind, identifier) DO UPDATE SET
    tombstoned = TRUE,
    source = EXCLUDED.source,
    cursor = EXCLUDED.cursor,
    updated_at = NOW()
RETURNING *
"""


def _record_from_row(row) -> Record:
    """Convert an asyncpg Record row to a Record model."""
    payload = row["payload"]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return Record(
        owner_id=row["owner_id"],
        kind=row["kind"],
        identifier=row["identifier"],
        uri=row["uri"],
        payload=payload,
        content_hash=row["content_hash"],
        tombstoned=row["tombstoned"],
        source=row["source"],
        cursor=row["cursor"],
        updated_at=row["updated_at"],
    )


class PostgresRecordRepository(RecordStore):
    """RecordStore backed by the `records` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the records table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Records table ensured")

    async def upsert(self, record: Record) -> None:
        await self._db.execute(
            _UPSERT_SQL,
            record.owner_id,
            record.kind,
            record.identifier,
            record.uri,
            json.dumps(record.payload) if record.payload is not None else None,
            record.content_hash,
            record.tombstoned,
            record.source,
            record.cursor,
        )

    async def tombstone(
        self,
        owner_id: str,
        kind: str,
        identifier: str,
        *,
        uri: str,
        source: str | None = None,
        cursor: str | None = None,
    ) -> Record:
        row = await self._db.fetchrow(
            _TOMBSTONE_SQL, owner_id, kind, identifier, uri, source, cursor,
        )
        return _record_from_row(row)

    async def get_by_identifier(
        self,
        owner_id: str,
        identifier: str,
        kind: str | None = None,
    ) -> Record | None:
        if kind is None:
            row = await self._db.fetchrow(
                """
                SELECT * FROM records WHERE owner_id = $1 AND identifier = $2
                ORDER BY kind LIMIT 1
                """,
                owner_id, identifier,
            )
        else:
            row = await self._db.fetchrow(
                """
                SELECT * FROM records
                WHERE owner_id = $1 AND identifier = $2 AND kind = $3
                """,
                owner_id, identifier, kind,
            )
        return _record_from_row(row) if row else None

    async def list_active(
        self,
        owner_id: str,
        kind: str | None = None,
    ) -> list[Record]:
        conditions = ["owner_id = $1", "tombstoned = FALSE"]
        params: list = [owner_id]
        if kind is not None:
            conditions.append("kind = $2")
            params.append(kind)

        rows = await self._db.fetch(
            f"SELECT * FROM records WHERE {' AND '.join(conditions)} "
            "ORDER BY kind, identifier",
            *params,
        )
        return [_record_from_row(r) for r in rows]
