"""Homeserver indexer - cross-source event indexing pipeline."""

__version__ = "0.1.0"
