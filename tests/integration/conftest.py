"""Integration test fixtures.

Builds the FastAPI app in-process with the mock backend and a staging
directory under ``tmp_path``, and wraps it in a ``TestClient`` so the
lifespan (and with it the reaper) runs for every test.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path

from fastapi.testclient import TestClient
import pytest

from ipfs_uploader.backend.mock import MockBackend
from ipfs_uploader.config import Settings
from ipfs_uploader.server import create_app

MAX_FILE_SIZE = 1024


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        backend="mock",
        staging_dir=tmp_path / "staging",
        index_path=tmp_path / "index.jsonl",
        max_file_size=MAX_FILE_SIZE,
        backend_timeout=2.0,
    )


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def make_client(settings: Settings) -> Generator[Callable[[MockBackend], TestClient], None, None]:
    """Return a factory that starts an app around the given backend."""
    clients: list[TestClient] = []

    def _make(backend: MockBackend) -> TestClient:
        client = TestClient(create_app(settings, backend=backend))
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in reversed(clients):
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client: Callable[[MockBackend], TestClient], backend: MockBackend) -> TestClient:
    return make_client(backend)
