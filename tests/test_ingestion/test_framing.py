"""Tests for events-stream framing."""

import pytest

from indexer.errors import SourceProtocolError
from indexer.ingestion.framing import parse_event_stream
from indexer.ingestion.schemas import RawEvent, WireOp

POST_URI = "pubky://alice/pub/pubky.app/posts/0033SSE3B1FQ0"


class TestParseEventStream:
    """Tests for parse_event_stream."""

    def test_put_and_del(self):
        body = (
            "event: PUT\n"
            f"data: {POST_URI}\n"
            "data: cursor: 41\n"
            "data: content_hash: 9d0e51\n"
            "\n"
            "event: DEL\n"
            f"data: {POST_URI}\n"
            "data: cursor: 42\n"
        )

        events = parse_event_stream(body)

        assert events == [
            RawEvent(op=WireOp.PUT, uri=POST_URI, cursor="41", content_hash="9d0e51"),
            RawEvent(op=WireOp.DEL, uri=POST_URI, cursor="42"),
        ]

    def test_empty_body(self):
        """No events means the caller's cursors are current."""
        assert parse_event_stream("") == []
        assert parse_event_stream("\n\n") == []

    def test_preserves_order(self, stream_body):
        raws = [
            RawEvent(WireOp.PUT, f"pubky://alice/pub/pubky.app/posts/{i:013d}", str(i), "h")
            for i in range(1, 6)
        ]
        assert parse_event_stream(stream_body(*raws)) == raws

    def test_crlf_and_extra_blank_lines(self):
        body = f"\r\n\r\nevent: DEL\r\ndata: {POST_URI}\r\ndata: cursor: 7\r\n\r\n\r\n"
        assert parse_event_stream(body) == [RawEvent(WireOp.DEL, POST_URI, "7")]

    def test_comment_lines_ignored(self):
        body = f": keep-alive\nevent: DEL\n: note\ndata: {POST_URI}\ndata: cursor: 3\n"
        assert parse_event_stream(body) == [RawEvent(WireOp.DEL, POST_URI, "3")]

    def test_opaque_cursor(self):
        body = f"event: DEL\ndata: {POST_URI}\ndata: cursor: 0033SSE3B1FQ0\n"
        assert parse_event_stream(body)[0].cursor == "0033SSE3B1FQ0"

    @pytest.mark.parametrize(
        "body",
        [
            f"data: {POST_URI}\ndata: cursor: 1\n",  # missing event line
            f"event: PATCH\ndata: {POST_URI}\ndata: cursor: 1\n",  # unknown op
            f"event: PUT\ndata: {POST_URI}\ndata: cursor: 1\n",  # PUT without hash
            f"event: DEL\ndata: {POST_URI}\ndata: cursor: 1\ndata: content_hash: x\n",
            "event: DEL\ndata: \ndata: cursor: 1\n",  # empty uri
            f"event: DEL\ndata: {POST_URI}\ndata: position: 1\n",  # wrong key
            f"event: DEL\ndata: {POST_URI}\ndata: cursor: \n",  # empty cursor
            f"event: DEL\nid: 4\ndata: {POST_URI}\ndata: cursor: 1\n",  # unknown field
            "event: DEL\ngarbage\n",
        ],
    )
    def test_malformed_framing(self, body: str):
        with pytest.raises(SourceProtocolError):
            parse_event_stream(body)
