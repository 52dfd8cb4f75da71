import asyncio
from collections.abc import AsyncIterator
import hashlib
from typing import BinaryIO

from ipfs_uploader.backend.base import Bandwidth, NodeInfo, NodeStatus, Peers, Repository
from ipfs_uploader.errors import NotFound, UploadError


class MockBackend:
    """In-process backend that keeps objects in a dict.

    ``delay`` makes ``add_object`` yield to the event loop before storing, so
    concurrent publishes overlap; ``fail_with`` makes every add raise.
    """

    def __init__(self, delay: float = 0.0, fail_with: UploadError | None = None) -> None:
        self.objects: dict[str, bytes] = {}
        self.add_calls = 0
        self.delay = delay
        self.fail_with = fail_with

    async def add_object(self, stream: BinaryIO, size_hint: int, mime_type: str, name: str) -> str:
        self.add_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        data = stream.read()
        cid = "Qm" + hashlib.sha256(data).hexdigest()[:44]
        self.objects[cid] = data
        return cid

    async def resolve(self, backend_id: str) -> AsyncIterator[bytes]:
        data = self.objects.get(backend_id)
        if data is None:
            raise NotFound(f"Mock backend has no object {backend_id}", backend_id=backend_id)
        yield data

    async def status(self) -> NodeStatus:
        size = sum(len(d) for d in self.objects.values())
        return NodeStatus(
            bandwidth=Bandwidth(total_in=size, total_out=0, rate_in=0.0, rate_out=0.0, interval="5m"),
            repository=Repository(
                size=size, storage_max=0, num_objects=len(self.objects), path="memory", version="mock"
            ),
            node=NodeInfo(id="mock", public_key="", addresses=[], agent_version="mock", protocol_version="mock"),
            peers=Peers(count=0, entries=[]),
        )

    async def aclose(self) -> None:
        pass
