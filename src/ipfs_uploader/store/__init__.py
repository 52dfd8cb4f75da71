"""Local upload state.

This package groups together the pieces of state the uploader owns:
- `StagingArea`: scratch files for objects that are not published yet.
- `ChunkTracker`: per-upload assembly of client-submitted chunks.
- `BlobIndex`: content hash -> backend id mapping (`JsonlBlobIndex` persists it).
- `LocalStore`: a small façade that composes all three.
"""

from ipfs_uploader.store.chunks import AssembledObject, ChunkResult, ChunkStatus, ChunkTracker, Reaper
from ipfs_uploader.store.index import BlobIndex, BlobRecord, JsonlBlobIndex
from ipfs_uploader.store.local import LocalStore
from ipfs_uploader.store.staging import StagingArea

__all__ = [
    "AssembledObject",
    "BlobIndex",
    "BlobRecord",
    "ChunkResult",
    "ChunkStatus",
    "ChunkTracker",
    "JsonlBlobIndex",
    "LocalStore",
    "Reaper",
    "StagingArea",
]
