"""
Downstream record store interface.

The apply engine writes through this interface; an external query layer
reads through it. Tombstoned records must never appear in active results.
"""

from abc import ABC, abstractmethod

from indexer.storage.schemas import Record


class RecordStore(ABC):
    """Abstract record store."""

    @abstractmethod
    async def upsert(self, record: Record) -> None:
        """Insert or replace the record with the same key."""
        ...

    @abstractmethod
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
        """
        Mark a record deleted, keeping its payload.

        A record that was never indexed is created already tombstoned.
        """
        ...

    @abstractmethod
    async def get_by_identifier(
        self,
        owner_id: str,
        identifier: str,
        kind: str | None = None,
    ) -> Record | None:
        """Look up a record, tombstoned or not."""
        ...

    @abstractmethod
    async def list_active(
        self,
        owner_id: str,
        kind: str | None = None,
    ) -> list[Record]:
        """Non-tombstoned records of a user, ordered by kind and identifier."""
        ...
