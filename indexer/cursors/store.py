"""
Cursor store: last fully-applied position per (source, user).

Cursors are opaque tokens issued by the source. The store only ever holds
values a source returned for that user; `reset` drops a cursor so the next
poll resyncs the user from the beginning.

Backends:
- InMemoryCursorStore: per-key asyncio locks, for tests and single runs
- RedisCursorStore: one hash per source, one HSET per commit
- PostgresCursorStore: `cursors` table, a commit is one transaction

Every backend makes `set` atomic per (source, user); distinct keys proceed
concurrently.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from types import TracebackType

import redis.asyncio as redis

from indexer.storage.database import Database

logger = logging.getLogger(__name__)


class CursorStore(ABC):
    """Abstract cursor store."""

    async def connect(self) -> None:
        """Open backend connections. No-op by default."""

    async def close(self) -> None:
        """Release backend connections. No-op by default."""

    async def __aenter__(self) -> "CursorStore":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @abstractmethod
    async def get(self, source: str, user_id: str) -> str | None:
        """Stored cursor, or None if the user has never been synced."""
        ...

    @abstractmethod
    async def set(self, source: str, user_id: str, cursor: str) -> None:
        """Persist a cursor the source returned for this user."""
        ...

    @abstractmethod
    async def reset(self, source: str, user_id: str) -> None:
        """Forget the cursor, forcing a full resync on next poll."""
        ...

    @abstractmethod
    async def drop_source(self, source: str) -> None:
        """Forget every cursor of a source (deregistration)."""
        ...

    async def get_many(self, source: str, user_ids: list[str]) -> dict[str, str | None]:
        """Stored cursors for several users of one source."""
        return {user_id: await self.get(source, user_id) for user_id in user_ids}

    async def set_many(self, source: str, cursors: dict[str, str]) -> None:
        """Persist a batch's cursors for one source."""
        for user_id, cursor in cursors.items():
            await self.set(source, user_id, cursor)


class InMemoryCursorStore(CursorStore):
    """Process-local cursor store."""

    def __init__(self) -> None:
        self._cursors: dict[tuple[str, str], str] = {}
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    def snapshot(self) -> dict[tuple[str, str], str]:
        return dict(self._cursors)

    async def get(self, source: str, user_id: str) -> str | None:
        return self._cursors.get((source, user_id))

    async def set(self, source: str, user_id: str, cursor: str) -> None:
        async with self._locks[(source, user_id)]:
            self._cursors[(source, user_id)] = cursor

    async def reset(self, source: str, user_id: str) -> None:
        async with self._locks[(source, user_id)]:
            self._cursors.pop((source, user_id), None)

    async def drop_source(self, source: str) -> None:
        for key in [key for key in self._cursors if key[0] == source]:
            async with self._locks[key]:
                self._cursors.pop(key, None)


class RedisCursorStore(CursorStore):
    """
    Redis-backed cursor store.

    Layout: hash `<prefix>:<source>` mapping user id to cursor. HSET and HDEL
    on a single field are atomic, so no extra locking is needed.
    """

    def __init__(self, redis_url: str, key_prefix: str = "indexer:cursors"):
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Connected to Redis cursor store")

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    def _key(self, source: str) -> str:
        return f"{self._key_prefix}:{source}"

    async def get(self, source: str, user_id: str) -> str | None:
        return await self.redis.hget(self._key(source), user_id)

    async def get_many(self, source: str, user_ids: list[str]) -> dict[str, str | None]:
        if not user_ids:
            return {}
        values = await self.redis.hmget(self._key(source), user_ids)
        return dict(zip(user_ids, values))

    async def set(self, source: str, user_id: str, cursor: str) -> None:
        await self.redis.hset(self._key(source), user_id, cursor)

    async def set_many(self, source: str, cursors: dict[str, str]) -> None:
        if cursors:
            await self.redis.hset(self._key(source), mapping=cursors)

    async def reset(self, source: str, user_id: str) -> None:
        await self.redis.hdel(self._key(source), user_id)

    async def drop_source(self, source: str) -> None:
        await self.redis.delete(self._key(source))


_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS cursors (
    source     TEXT NOT NULL,
    user_id    TEXT NOT NULL,
    cursor     TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (source, user_id)
);
"""

_SET_SQL = """
INSERT INTO cursors (source, user_id, cursor)
VALUES ($1, $2, $3)
ON CONFLICT (source, user_id) DO UPDATE SET
    cursor = EXCLUDED.cursor,
    updated_at = NOW()
"""


class PostgresCursorStore(CursorStore):
    """Cursor store in the `cursors` table next to the records."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the cursors table (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Cursors table ensured")

    async def get(self, source: str, user_id: str) -> str | None:
        return await self._db.fetchval(
            "SELECT cursor FROM cursors WHERE source = $1 AND user_id = $2",
            source, user_id,
        )

    async def get_many(self, source: str, user_ids: list[str]) -> dict[str, str | None]:
        if not user_ids:
            return {}
        rows = await self._db.fetch(
            "SELECT user_id, cursor FROM cursors WHERE source = $1 AND user_id = ANY($2::text[])",
            source, user_ids,
        )
        found = {row["user_id"]: row["cursor"] for row in rows}
        return {user_id: found.get(user_id) for user_id in user_ids}

    async def set(self, source: str, user_id: str, cursor: str) -> None:
        await self._db.execute(_SET_SQL, source, user_id, cursor)

    async def set_many(self, source: str, cursors: dict[str, str]) -> None:
        """All of a batch's cursors commit together or not at all."""
        if not cursors:
            return
        async with self._db.transaction() as conn:
            await conn.executemany(
                _SET_SQL,
                [(source, user_id, cursor) for user_id, cursor in cursors.items()],
            )

    async def reset(self, source: str, user_id: str) -> None:
        await self._db.execute(
            "DELETE FROM cursors WHERE source = $1 AND user_id = $2",
            source, user_id,
        )

    async def drop_source(self, source: str) -> None:
        await self._db.execute("DELETE FROM cursors WHERE source = $1", source)
