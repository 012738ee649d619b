"""
Indexed record schema.

A Record is the queryable materialization of one resource. Deleted
resources are tombstoned rather than removed, so identifiers that other
resources point at keep resolving.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class Record(BaseModel):
    """One indexed resource, keyed by (owner_id, kind, identifier)."""

    owner_id: str = Field(..., min_length=1, description="Public id of the owning user")
    kind: str = Field(..., description="Resource kind discriminator")
    identifier: str = Field(..., min_length=1, description="Logical resource id")
    uri: str = Field(..., description="Resource URI at the source")
    payload: dict[str, Any] | None = Field(
        default=None,
        description="Last indexed JSON content; kept on tombstoned records",
    )
    content_hash: str | None = Field(
        default=None,
        description="Fingerprint of the last written bytes",
    )
    tombstoned: bool = False
    source: str | None = Field(default=None, description="Source the record came from")
    cursor: str | None = Field(
        default=None,
        description="Cursor of the event that last changed this record",
    )
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.owner_id, self.kind, self.identifier)

    @property
    def is_active(self) -> bool:
        return not self.tombstoned
