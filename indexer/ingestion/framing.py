"""
Parser for the events-stream wire framing.

Events are separated by blank lines. Each event is one `event:` line
(`PUT` or `DEL`) followed by `data:` lines in fixed order:

    event: PUT
    data: pubky://<user>/pub/pubky.app/posts/0033SSE3B1FQ0
    data: cursor: 42
    data: content_hash: 9d0e...

`DEL` events carry no content_hash line. A body with no events is valid and
means the caller's cursors are already current. Lines starting with `:` are
comments.
"""

from indexer.errors import SourceProtocolError
from indexer.ingestion.schemas import RawEvent, WireOp

CURSOR_FIELD = "cursor"
CONTENT_HASH_FIELD = "content_hash"


def _split_field(line: str) -> tuple[str, str]:
    name, sep, value = line.partition(":")
    if not sep:
        raise SourceProtocolError(f"Malformed stream line: {line!r}")
    if value.startswith(" "):
        value = value[1:]
    return name, value


def _parse_block(lines: list[str]) -> RawEvent:
    name, value = _split_field(lines[0])
    if name != "event":
        raise SourceProtocolError(f"Event must start with 'event:', got {lines[0]!r}")
    try:
        op = WireOp(value.strip())
    except ValueError:
        raise SourceProtocolError(f"Unknown event type: {value!r}") from None

    data: list[str] = []
    for line in lines[1:]:
        name, value = _split_field(line)
        if name != "data":
            raise SourceProtocolError(f"Unexpected field {name!r} in {op.value} event")
        data.append(value)

    expected = 3 if op is WireOp.PUT else 2
    if len(data) != expected:
        raise SourceProtocolError(
            f"{op.value} event needs {expected} data lines, got {len(data)}"
        )

    uri = data[0].strip()
    if not uri:
        raise SourceProtocolError("Event has an empty URI")

    cursor = _keyed_value(data[1], CURSOR_FIELD)
    content_hash = _keyed_value(data[2], CONTENT_HASH_FIELD) if op is WireOp.PUT else None

    return RawEvent(op=op, uri=uri, cursor=cursor, content_hash=content_hash)


def _keyed_value(line: str, key: str) -> str:
    name, value = _split_field(line)
    value = value.strip()
    if name.strip() != key or not value:
        raise SourceProtocolError(f"Expected '{key}: <value>', got {line!r}")
    return value


def parse_event_stream(body: str) -> list[RawEvent]:
    """
    Parse an events-stream response body.

    Args:
        body: Decoded response text

    Returns:
        Events in the order the source returned them

    Raises:
        SourceProtocolError: If the body does not follow the framing
    """
    events: list[RawEvent] = []
    block: list[str] = []

    for line in body.splitlines():
        if not line.strip():
            if block:
                events.append(_parse_block(block))
                block = []
            continue
        if line.startswith(":"):
            continue
        block.append(line)

    if block:
        events.append(_parse_block(block))

    return events
