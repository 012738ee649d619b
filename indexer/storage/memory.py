"""In-memory record store for tests and single-process runs."""

from indexer.storage.base import RecordStore
from indexer.storage.schemas import Record, utc_now


class InMemoryRecordStore(RecordStore):
    """Dict-backed RecordStore keyed by (owner_id, kind, identifier)."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], Record] = {}

    def __len__(self) -> int:
        return len(self._records)

    def all_records(self) -> list[Record]:
        return [self._records[key] for key in sorted(self._records)]

    async def upsert(self, record: Record) -> None:
        self._records[record.key] = record.model_copy(deep=True)

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
        key = (owner_id, kind, identifier)
        existing = self._records.get(key)
        if existing is None:
            record = Record(
                owner_id=owner_id,
                kind=kind,
                identifier=identifier,
                uri=uri,
                tombstoned=True,
                source=source,
                cursor=cursor,
            )
        else:
            record = existing.model_copy(
                update={
                    "tombstoned": True,
                    "source": source,
                    "cursor": cursor,
                    "updated_at": utc_now(),
                }
            )
        self._records[key] = record
        return record.model_copy(deep=True)

    async def get_by_identifier(
        self,
        owner_id: str,
        identifier: str,
        kind: str | None = None,
    ) -> Record | None:
        for (owner, record_kind, record_id), record in sorted(self._records.items()):
            if owner == owner_id and record_id == identifier:
                if kind is None or record_kind == kind:
                    return record.model_copy(deep=True)
        return None

    async def list_active(
        self,
        owner_id: str,
        kind: str | None = None,
    ) -> list[Record]:
        return [
            record.model_copy(deep=True)
            for record in self.all_records()
            if record.owner_id == owner_id
            and not record.tombstoned
            and (kind is None or record.kind == kind)
        ]
