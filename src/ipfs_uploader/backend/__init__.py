"""Storage backends the assembled objects are published to.

- `IpfsBackend`: the HTTP RPC API of an IPFS daemon.
- `MockBackend`: an in-process dict, used for tests and local runs.
"""

from ipfs_uploader.backend.base import BackendAdapter, NodeStatus
from ipfs_uploader.backend.ipfs import IpfsBackend
from ipfs_uploader.backend.mock import MockBackend
from ipfs_uploader.config import Settings


def create_backend(settings: Settings) -> BackendAdapter:
    if settings.backend == "mock":
        return MockBackend()
    return IpfsBackend(
        api_url=settings.ipfs_api,
        timeout=settings.backend_timeout,
        status_timeout=settings.status_timeout,
    )


__all__ = ["BackendAdapter", "IpfsBackend", "MockBackend", "NodeStatus", "create_backend"]
