from __future__ import annotations

from pathlib import Path

from ipfs_uploader.store.chunks import ChunkTracker, Reaper
from ipfs_uploader.store.index import BlobIndex, JsonlBlobIndex
from ipfs_uploader.store.staging import StagingArea


class LocalStore:
    """Staging area, chunk tracker and blob index built from one set of paths."""

    def __init__(
        self,
        *,
        staging_dir: str | Path = "staging",
        index_path: str | Path | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self._staging = StagingArea(root=staging_dir)
        self._tracker = ChunkTracker(self._staging, max_bytes=max_bytes)
        self._index = JsonlBlobIndex(index_path) if index_path is not None else BlobIndex()

    @property
    def staging(self) -> StagingArea:
        return self._staging

    @property
    def chunks(self) -> ChunkTracker:
        return self._tracker

    @property
    def index(self) -> BlobIndex:
        return self._index

    def reaper(self, max_age: float, interval: float) -> Reaper:
        return Reaper(self._tracker, max_age=max_age, interval=interval)
