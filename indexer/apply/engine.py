"""
Apply engine: idempotent materialization of events into the record store.

Writes upsert by (owner, kind, identifier) and deletes tombstone, so
applying the same event sequence twice (a crash before the cursor commit,
then a retry) converges on the same records as applying it once.

Invariants:
    - Identifiers are derived or validated per resource kind before any write
    - A write carrying the soft-delete sentinel tombstones instead of updating
    - Store errors surface as ApplyFailure and abort the batch
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from indexer.errors import ApplyFailure, InvalidPayload, MalformedId
from indexer.ids.codec import (
    canonical_identity,
    decode_hash_id,
    decode_timestamp_id,
    encode_hash_digest,
    encode_timestamp_id,
    hash_id,
)
from indexer.ingestion.resource_kinds import ResourceKind, ResourceKindRegistry
from indexer.ingestion.schemas import Event, EventKind, IdFamily
from indexer.storage.base import RecordStore
from indexer.storage.schemas import Record

logger = logging.getLogger(__name__)


class ApplyAction(str, Enum):
    """What applying an event did to the store."""

    UPSERT = "upsert"
    TOMBSTONE = "tombstone"
    SOFT_DELETE = "soft_delete"


@dataclass
class ApplyOutcome:
    action: ApplyAction
    record: Record


def is_soft_deleted(kind: ResourceKind, payload: dict[str, Any] | None, sentinel: str) -> bool:
    """
    Whether a written payload expresses a deletion.

    Soft deletion is a data convention: the kind's sentinel field holds the
    reserved literal. This is the only place that policy is encoded.
    """
    if payload is None or kind.sentinel_field is None:
        return False
    return payload.get(kind.sentinel_field) == sentinel


def resolve_identifier(
    kind: ResourceKind,
    event: Event,
    payload: dict[str, Any] | None = None,
) -> str:
    """
    Derive the canonical record identifier for an event.

    - timestamp kinds: the path id must decode; the canonical re-encoding is used
    - hash kinds: on writes the id is recomputed from the payload's identity
      fields and must match the path; on deletes the path id must decode
    - user kinds: the path id (the target user) as-is
    - singletons: the fixed singleton id

    Raises:
        MalformedId: If the path id is invalid or does not match the content
    """
    if kind.id_family is IdFamily.TIMESTAMP:
        return encode_timestamp_id(decode_timestamp_id(event.path_id))

    if kind.id_family is IdFamily.HASH:
        path_digest = decode_hash_id(event.path_id)
        if event.kind is EventKind.DELETE or payload is None:
            return encode_hash_digest(path_digest)

        parts = []
        for field_name in kind.identity_fields:
            value = payload.get(field_name)
            if not isinstance(value, str):
                raise MalformedId(
                    f"{kind.name} {event.uri} lacks identity field {field_name!r}"
                )
            parts.append(value)

        expected = hash_id(canonical_identity(*parts))
        if decode_hash_id(expected) != path_digest:
            raise MalformedId(
                f"{kind.name} id {event.path_id} does not match content (expected {expected})"
            )
        return expected

    return event.path_id


class ApplyEngine:
    """
    Applies normalized events to a RecordStore.

    Usage:
        engine = ApplyEngine(store, sentinel="[DELETED]")
        outcome = await engine.apply(event, payload, source="https://hs.example")
    """

    def __init__(
        self,
        store: RecordStore,
        kinds: ResourceKindRegistry | None = None,
        sentinel: str = "[DELETED]",
    ):
        self._store = store
        self._kinds = kinds or ResourceKindRegistry()
        self._sentinel = sentinel

    @property
    def store(self) -> RecordStore:
        return self._store

    async def apply(
        self,
        event: Event,
        payload: dict[str, Any] | None = None,
        source: str | None = None,
    ) -> ApplyOutcome:
        """
        Apply one event.

        Args:
            event: Normalized event
            payload: Current JSON content for writes (ignored for deletes)
            source: Address of the source the event came from

        Returns:
            ApplyOutcome describing the store change

        Raises:
            MalformedId: Identifier invalid for its kind (skip the event)
            InvalidPayload: Write without content (skip the event)
            ApplyFailure: The store rejected the write (abort the batch)
        """
        kind = self._kinds.get(event.resource_kind)

        if event.kind is EventKind.DELETE:
            identifier = resolve_identifier(kind, event)
            record = await self._tombstone(kind, identifier, event, source)
            return ApplyOutcome(ApplyAction.TOMBSTONE, record)

        if payload is None:
            raise InvalidPayload(f"No content available for {event.uri}")

        if is_soft_deleted(kind, payload, self._sentinel):
            # Sentinel content no longer hashes to the id, so only the path is checked
            identifier = resolve_identifier(kind, event)
            logger.debug(f"Soft delete of {kind.name} {identifier} for {event.owner_id}")
            record = await self._tombstone(kind, identifier, event, source)
            return ApplyOutcome(ApplyAction.SOFT_DELETE, record)

        identifier = resolve_identifier(kind, event, payload)

        record = Record(
            owner_id=event.owner_id,
            kind=kind.name,
            identifier=identifier,
            uri=event.uri,
            payload=payload,
            content_hash=event.content_hash,
            tombstoned=False,
            source=source,
            cursor=event.cursor,
        )
        try:
            await self._store.upsert(record)
        except Exception as e:
            raise ApplyFailure(f"Upsert of {event.uri} rejected: {e}") from e
        return ApplyOutcome(ApplyAction.UPSERT, record)

    async def _tombstone(
        self,
        kind: ResourceKind,
        identifier: str,
        event: Event,
        source: str | None,
    ) -> Record:
        try:
            return await self._store.tombstone(
                event.owner_id,
                kind.name,
                identifier,
                uri=event.uri,
                source=source,
                cursor=event.cursor,
            )
        except Exception as e:
            raise ApplyFailure(f"Tombstone of {event.uri} rejected: {e}") from e
