"""
Identifier codec for indexed resources.

Two disjoint identifier families:
- Timestamp ids: 13 Crockford base-32 characters encoding a 64-bit
  microsecond timestamp (posts, files, events).
- Hash ids: 26 Crockford base-32 characters encoding the first 16 bytes of
  a SHA-256 digest over the resource's identity fields (tags, bookmarks).

Bit alignment is part of the wire contract. 13 characters carry 65 bits, so
a 64-bit value is right-aligned with a single zero padding bit at the most
significant position. The first character of a valid timestamp id is
therefore always in 0-F. Hash ids follow the same rule: 128 bits in 130,
with two zero padding bits on top. This differs from byte-stream base-32
(RFC 4648 style), where the padding bits trail the last byte: a hash id
produced by a byte-stream encoder spells the same digest differently and
must be re-encoded with encode_hash_digest() before comparison.

    encode_timestamp_id(0)           == "0000000000000"
    encode_timestamp_id(2**64 - 1)   == "FZZZZZZZZZZZZ"
"""

import hashlib
import threading
import time

from indexer.errors import MalformedId

ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

TIMESTAMP_ID_LENGTH = 13
HASH_ID_LENGTH = 26
HASH_ID_BYTES = 16

_MAX_U64 = 2**64
_DECODE_MAP: dict[str, int] = {char: value for value, char in enumerate(ALPHABET)}
# Ambiguous characters fold onto their look-alikes
_DECODE_MAP.update({"O": 0, "I": 1, "L": 1})
# Lowercase is matched directly, never through str.upper(), which maps
# non-ASCII characters such as ß or ı into the alphabet
_DECODE_MAP.update({char.lower(): value for char, value in list(_DECODE_MAP.items())})

_clock_lock = threading.Lock()
_last_micros = 0


def _encode_int(value: int, length: int) -> str:
    chars = []
    for shift in range(5 * (length - 1), -1, -5):
        chars.append(ALPHABET[(value >> shift) & 0x1F])
    return "".join(chars)


def _decode_int(text: str, length: int) -> int:
    if not isinstance(text, str) or len(text) != length:
        raise MalformedId(f"Expected {length} characters, got {text!r}")

    value = 0
    for char in text:
        digit = _DECODE_MAP.get(char)
        if digit is None:
            raise MalformedId(f"Invalid character {char!r} in {text!r}")
        value = (value << 5) | digit
    return value


def encode_timestamp_id(micros: int) -> str:
    """
    Encode a 64-bit unsigned microsecond value as a timestamp id.

    Args:
        micros: Value in [0, 2**64)

    Returns:
        13-character Crockford base-32 string

    Raises:
        ValueError: If the value does not fit in 64 unsigned bits
    """
    if not 0 <= micros < _MAX_U64:
        raise ValueError(f"Timestamp out of 64-bit range: {micros}")
    return _encode_int(micros, TIMESTAMP_ID_LENGTH)


def decode_timestamp_id(text: str) -> int:
    """
    Decode a timestamp id back to its microsecond value.

    Decoding is case-insensitive and folds O to 0, I and L to 1.

    Raises:
        MalformedId: On wrong length, characters outside the alphabet,
            or a set padding bit
    """
    value = _decode_int(text, TIMESTAMP_ID_LENGTH)
    if value >= _MAX_U64:
        raise MalformedId(f"Timestamp id overflows 64 bits: {text!r}")
    return value


def is_timestamp_id(text: str) -> bool:
    """Check whether text decodes as a timestamp id."""
    try:
        decode_timestamp_id(text)
    except MalformedId:
        return False
    return True


def timestamp_id_now() -> str:
    """
    Create a timestamp id for the current wall-clock time.

    Ids are strictly increasing within a process: a second call in the same
    microsecond gets the next microsecond.
    """
    global _last_micros

    with _clock_lock:
        micros = max(time.time_ns() // 1000, _last_micros + 1)
        _last_micros = micros
    return encode_timestamp_id(micros)


def canonical_identity(*parts: str) -> bytes:
    """Serialize identity-bearing fields into the bytes fed to hash_id()."""
    return ":".join(parts).encode("utf-8")


def hash_id(data: bytes) -> str:
    """
    Derive a content-addressed id from canonical identity bytes.

    Identical input always yields the identical id, so re-applying the same
    logical write lands on the same record.

    Args:
        data: Canonical identity bytes (see canonical_identity())

    Returns:
        26-character Crockford base-32 string
    """
    return encode_hash_digest(hashlib.sha256(data).digest()[:HASH_ID_BYTES])


def encode_hash_digest(digest: bytes) -> str:
    """Encode 16 digest bytes in the canonical hash id spelling."""
    if len(digest) != HASH_ID_BYTES:
        raise ValueError(f"Expected {HASH_ID_BYTES} digest bytes, got {len(digest)}")
    return _encode_int(int.from_bytes(digest, "big"), HASH_ID_LENGTH)


def decode_hash_id(text: str) -> bytes:
    """
    Decode a hash id back to its 16 digest bytes.

    Raises:
        MalformedId: On wrong length, bad characters, or set padding bits
    """
    value = _decode_int(text, HASH_ID_LENGTH)
    if value >> (8 * HASH_ID_BYTES):
        raise MalformedId(f"Hash id overflows 128 bits: {text!r}")
    return value.to_bytes(HASH_ID_BYTES, "big")
