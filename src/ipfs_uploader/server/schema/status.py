from pydantic.dataclasses import dataclass

from ipfs_uploader.backend.base import Bandwidth, NodeInfo, Peers, Repository


@dataclass
class StatusResponse:
    status: str
    timestamp: str
    bandwidth: Bandwidth
    repository: Repository
    node: NodeInfo
    peers: Peers


@dataclass
class HealthResponse:
    status: str
    version: str
    live_uploads: int
    blobs: int
