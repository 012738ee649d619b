"""
Event stream client for per-user data stores.

One request per source batches every tracked user:

    GET <address>/events-stream?path=<prefix>&limit=<n>&user=<id>[:<cursor>]&user=...

A user without a cursor is fetched from the beginning. The client also
hydrates write payloads with `GET <address><path>`, addressing the owning
user through the `pubky-host` header.
"""

import logging
from typing import Any

from indexer.errors import (
    EventSkipped,
    InvalidPayload,
    SourceProtocolError,
    SourceUnreachable,
)
from indexer.ingestion.framing import parse_event_stream
from indexer.ingestion.http_client import HTTPClient, HTTPClientError, TransportError
from indexer.ingestion.normalizer import split_uri
from indexer.ingestion.schemas import Event, EventBatch, RawEvent
from indexer.sources.schemas import Source, Subscription

logger = logging.getLogger(__name__)

EVENTS_STREAM_PATH = "/events-stream"
USER_HOST_HEADER = "pubky-host"


def cursor_rewinds(current: str, candidate: str) -> bool:
    """
    Whether `candidate` moves backwards relative to `current`.

    Cursors are opaque; only integer cursors can be compared. Anything else
    is trusted to follow stream order.
    """
    if current.isdigit() and candidate.isdigit():
        return int(candidate) < int(current)
    return False


def build_stream_params(
    path_prefix: str,
    subscriptions: list[Subscription],
    limit: int | None = None,
) -> list[tuple[str, str]]:
    """Query parameters for an events-stream request, in a stable order."""
    params = [("path", path_prefix)]
    if limit is not None:
        params.append(("limit", str(limit)))
    for sub in subscriptions:
        value = sub.user_id if sub.cursor is None else f"{sub.user_id}:{sub.cursor}"
        params.append(("user", value))
    return params


class EventStreamClient:
    """
    Fetches change events and resource payloads from sources.

    Usage:
        async with HTTPClient(RetryConfig()) as http:
            client = EventStreamClient(http, batch_limit=500)
            batch = await client.fetch_events(source, subscriptions)
    """

    def __init__(self, http_client: HTTPClient, batch_limit: int | None = 1000):
        self._http = http_client
        self._batch_limit = batch_limit

    async def fetch_events(
        self,
        source: Source,
        subscriptions: list[Subscription],
    ) -> EventBatch:
        """
        Fetch one batch of events for all given users of a source.

        Args:
            source: Source to fetch from
            subscriptions: (user, cursor) pairs to request

        Returns:
            EventBatch with ordered raw events and per-user cursors

        Raises:
            SourceUnreachable: On connection failure or persistent 5xx
            SourceProtocolError: On bad status or unparseable framing
        """
        previous = {sub.user_id: sub.cursor for sub in subscriptions}
        batch = EventBatch(
            source=source.address,
            cursors=dict(previous),
            limit=self._batch_limit,
        )
        if not subscriptions:
            return batch

        params = build_stream_params(source.path_prefix, subscriptions, self._batch_limit)
        url = f"{source.address}{EVENTS_STREAM_PATH}"

        try:
            response = await self._http.get(url, params=params)
        except TransportError as e:
            raise SourceUnreachable(str(e), source=source.address) from e
        except HTTPClientError as e:
            raise SourceProtocolError(str(e), source=source.address) from e

        try:
            batch.events = parse_event_stream(response.text)
        except SourceProtocolError as e:
            e.source = source.address
            raise

        for raw in batch.events:
            self._advance_cursor(batch, raw)

        logger.debug(
            f"Fetched {len(batch.events)} events from {source.address} "
            f"for {len(subscriptions)} users"
        )
        return batch

    def _advance_cursor(self, batch: EventBatch, raw: RawEvent) -> None:
        try:
            _, user_id, _ = split_uri(raw.uri)
        except EventSkipped:
            # Unattributable; the normalizer reports it
            return

        if user_id not in batch.cursors:
            # Never adopt cursors for users that were not requested
            return

        current = batch.cursors[user_id]
        if current is not None and cursor_rewinds(current, raw.cursor):
            raise SourceProtocolError(
                f"Cursor for {user_id} moved backwards: {current} -> {raw.cursor}",
                source=batch.source,
            )
        batch.cursors[user_id] = raw.cursor

    async def fetch_resource(self, source: Source, event: Event) -> dict[str, Any] | None:
        """
        Fetch the current JSON content of a written resource.

        Returns:
            The JSON object, or None if the resource no longer exists

        Raises:
            InvalidPayload: If the content is not a JSON object or access is refused
            SourceUnreachable: On transport failure
        """
        url = f"{source.address}{event.path}"
        try:
            response = await self._http.get(url, headers={USER_HOST_HEADER: event.owner_id})
        except TransportError as e:
            raise SourceUnreachable(str(e), source=source.address) from e
        except HTTPClientError as e:
            if e.status_code == 404:
                return None
            raise InvalidPayload(f"Cannot read {event.uri}: {e}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise InvalidPayload(f"Content of {event.uri} is not JSON") from e

        if not isinstance(payload, dict):
            raise InvalidPayload(f"Content of {event.uri} is not a JSON object")
        return payload
