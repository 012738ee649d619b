"""Storage layer - record stores and PostgreSQL connection management."""

from indexer.storage.base import RecordStore
from indexer.storage.database import Database
from indexer.storage.memory import InMemoryRecordStore
from indexer.storage.repository import PostgresRecordRepository
from indexer.storage.schemas import Record

__all__ = [
    "Database",
    "InMemoryRecordStore",
    "PostgresRecordRepository",
    "Record",
    "RecordStore",
]
