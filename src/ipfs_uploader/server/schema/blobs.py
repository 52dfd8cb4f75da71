from pydantic.dataclasses import dataclass

from ipfs_uploader.store.index import BlobRecord


@dataclass
class BlobsResponse:
    count: int
    blobs: list[BlobRecord]
