from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, BinaryIO, Protocol, runtime_checkable

from pydantic.dataclasses import dataclass


@dataclass
class Bandwidth:
    total_in: int
    total_out: int
    rate_in: float
    rate_out: float
    interval: str


@dataclass
class Repository:
    size: int
    storage_max: int
    num_objects: int
    path: str
    version: str


@dataclass
class NodeInfo:
    id: str
    public_key: str
    addresses: list[str]
    agent_version: str
    protocol_version: str


@dataclass
class Peers:
    count: int
    entries: list[dict[str, Any]]


@dataclass
class NodeStatus:
    bandwidth: Bandwidth
    repository: Repository
    node: NodeInfo
    peers: Peers


@runtime_checkable
class BackendAdapter(Protocol):
    """Content-addressable storage the assembled objects are published to.

    ``add_object`` raises ``BackendUnavailable`` or ``BackendTimeout``;
    ``resolve`` raises ``NotFound`` or ``BackendUnavailable``.
    """

    async def add_object(self, stream: BinaryIO, size_hint: int, mime_type: str, name: str) -> str: ...

    def resolve(self, backend_id: str) -> AsyncIterator[bytes]: ...

    async def status(self) -> NodeStatus: ...

    async def aclose(self) -> None: ...
