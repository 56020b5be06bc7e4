"""Revision-based synchronization of a chunked payload.

Local writes are immediate; a background engine mirrors them to a
size-limited remote store and resolves conflicts by revision.
"""

from .codec import Chunk, join, split
from .engine import LocalCache, SyncEngine
from .metadata import MetadataV0, MetadataV1, decode_metadata
from .revision import RevisionState, RevisionTracker

__all__ = [
    "Chunk",
    "join",
    "split",
    "LocalCache",
    "SyncEngine",
    "MetadataV0",
    "MetadataV1",
    "decode_metadata",
    "RevisionState",
    "RevisionTracker",
]
