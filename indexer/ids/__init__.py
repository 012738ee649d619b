"""Identifier derivation: timestamp ids and content-hash ids."""

from indexer.ids.codec import (
    canonical_identity,
    decode_hash_id,
    decode_timestamp_id,
    encode_hash_digest,
    encode_timestamp_id,
    hash_id,
    is_timestamp_id,
    timestamp_id_now,
)

__all__ = [
    "encode_timestamp_id",
    "decode_timestamp_id",
    "is_timestamp_id",
    "timestamp_id_now",
    "canonical_identity",
    "hash_id",
    "decode_hash_id",
    "encode_hash_digest",
]
