from pydantic.dataclasses import dataclass


@dataclass
class UploadDetails:
    name: str
    size_bytes: int
    mime_type: str
    cid: str
    content_hash: str
    upload_duration_ms: float
    deduplicated: bool
    timestamp: str


@dataclass
class UploadResponse:
    status: str
    cid: str
    filename: str
    size: int
    details: UploadDetails


@dataclass
class ChunkResponse:
    status: str
    upload_id: str
    chunk_status: str
    received_count: int
    total_chunks: int
    result: UploadResponse | None = None
