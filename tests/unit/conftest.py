from pathlib import Path

import pytest

from ipfs_uploader.backend.mock import MockBackend
from ipfs_uploader.orchestrator import UploadOrchestrator
from ipfs_uploader.store.chunks import ChunkTracker
from ipfs_uploader.store.index import BlobIndex
from ipfs_uploader.store.staging import StagingArea


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def staging(tmp_path: Path) -> StagingArea:
    return StagingArea(tmp_path / "staging")


@pytest.fixture
def tracker(staging: StagingArea, clock: FakeClock) -> ChunkTracker:
    return ChunkTracker(staging, max_bytes=1024, clock=clock)


@pytest.fixture
def index() -> BlobIndex:
    return BlobIndex()


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def orchestrator(backend: MockBackend, index: BlobIndex, staging: StagingArea, tracker: ChunkTracker) -> UploadOrchestrator:
    return UploadOrchestrator(backend, index, staging, tracker=tracker, max_file_size=1024, backend_timeout=1.0)
