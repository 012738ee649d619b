"""Data models for the sources module."""

from dataclasses import dataclass
from datetime import datetime


def normalize_address(address: str) -> str:
    """Canonical form of a source address (no trailing slash)."""
    return address.strip().rstrip("/")


@dataclass
class Source:
    """A per-user data store exposing a change feed.

    The address and path prefix never change after registration; only the
    reachability flag is updated, by the poller after each fetch.
    """

    address: str
    path_prefix: str = "/pub/pubky.app/"
    is_reachable: bool = True
    last_polled_at: datetime | None = None

    def __post_init__(self) -> None:
        self.address = normalize_address(self.address)
        if not self.path_prefix.startswith("/"):
            raise ValueError(f"Path prefix must be absolute: {self.path_prefix!r}")
        if not self.path_prefix.endswith("/"):
            self.path_prefix += "/"


@dataclass(frozen=True)
class Subscription:
    """One tracked (source, user) pair with its current cursor."""

    source: str
    user_id: str
    path_prefix: str
    cursor: str | None = None
