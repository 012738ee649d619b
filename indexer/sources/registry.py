"""In-memory registry of tracked sources and the users followed on each."""

import json
import logging
from pathlib import Path

from indexer.sources.schemas import Source, normalize_address

logger = logging.getLogger(__name__)


def _parse_source_entry(entry: dict, default_prefix: str) -> tuple[Source, list[str]]:
    """Convert a JSON sources-file entry to a Source and its users."""
    source = Source(
        address=entry["address"],
        path_prefix=entry.get("path_prefix", default_prefix),
    )
    return source, list(entry.get("users", []))


class SourceRegistry:
    """Tracked sources keyed by address.

    A single scheduler owns the registry, so each (source, user) pair is
    polled by exactly one task at a time.
    """

    def __init__(self) -> None:
        self._sources: dict[str, Source] = {}
        self._users: dict[str, list[str]] = {}

    @classmethod
    def from_file(cls, path: Path, default_prefix: str = "/pub/pubky.app/") -> "SourceRegistry":
        """Build a registry from a JSON list of {address, path_prefix, users}."""
        with open(path) as f:
            entries = json.load(f)

        registry = cls()
        for entry in entries:
            source, users = _parse_source_entry(entry, default_prefix)
            registry.register(source)
            for user_id in users:
                registry.track_user(source.address, user_id)

        logger.info(f"Loaded {len(registry)} sources from {path}")
        return registry

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, address: str) -> bool:
        return normalize_address(address) in self._sources

    def register(self, source: Source) -> Source:
        """
        Register a source. Re-registering the same address is a no-op.

        Raises:
            ValueError: If the address is registered with a different prefix
        """
        existing = self._sources.get(source.address)
        if existing is not None:
            if existing.path_prefix != source.path_prefix:
                raise ValueError(
                    f"Source {source.address} already registered with prefix "
                    f"{existing.path_prefix!r}"
                )
            return existing

        self._sources[source.address] = source
        self._users[source.address] = []
        logger.info(f"Registered source {source.address} ({source.path_prefix})")
        return source

    def deregister(self, address: str) -> bool:
        """Remove a source and its users. Returns True if it was registered."""
        address = normalize_address(address)
        removed = self._sources.pop(address, None)
        self._users.pop(address, None)
        if removed is not None:
            logger.info(f"Deregistered source {address}")
        return removed is not None

    def get(self, address: str) -> Source | None:
        return self._sources.get(normalize_address(address))

    def sources(self) -> list[Source]:
        return list(self._sources.values())

    def track_user(self, address: str, user_id: str) -> None:
        """Start tracking a user on a registered source."""
        address = normalize_address(address)
        if address not in self._sources:
            raise KeyError(f"Unknown source: {address}")
        users = self._users[address]
        if user_id not in users:
            users.append(user_id)

    def untrack_user(self, address: str, user_id: str) -> bool:
        users = self._users.get(normalize_address(address), [])
        if user_id in users:
            users.remove(user_id)
            return True
        return False

    def users_for(self, address: str) -> list[str]:
        return list(self._users.get(normalize_address(address), []))

    def mark_reachable(self, address: str, reachable: bool) -> None:
        source = self.get(address)
        if source is not None:
            source.is_reachable = reachable
