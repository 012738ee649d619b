"""
Batch-level deduplication of change events.

Within one batch, an event followed later by another event for the same
resource has no lasting effect: the later write or delete overwrites
whatever it did. Superseded events are consumed without being applied, and
superseded writes are never hydrated from the source.
"""

from indexer.ingestion.schemas import Event


def superseded_indices(events: list[Event]) -> set[int]:
    """
    Find events overwritten by a later event for the same resource.

    Args:
        events: Normalized events in source order

    Returns:
        Indices (into `events`) of superseded events
    """
    last_seen: dict[tuple[str, str], int] = {}
    superseded: set[int] = set()

    for index, event in enumerate(events):
        key = (event.owner_id, event.path)
        previous = last_seen.get(key)
        if previous is not None:
            superseded.add(previous)
        last_seen[key] = index

    return superseded

