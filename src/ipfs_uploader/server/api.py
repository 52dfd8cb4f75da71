from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.datastructures import UploadFile

from ipfs_uploader.__about__ import __version__
from ipfs_uploader.errors import InvalidChunkParameters, NoPayload, PayloadTooLarge, UploadError
from ipfs_uploader.orchestrator import PublishResult, UploadOrchestrator
from ipfs_uploader.server.schema.blobs import BlobsResponse
from ipfs_uploader.server.schema.status import HealthResponse, StatusResponse
from ipfs_uploader.server.schema.upload import ChunkResponse, UploadDetails, UploadResponse
from ipfs_uploader.store.digest import BLOCK_SIZE
from ipfs_uploader.utils import logging

# Headroom for multipart boundaries and form fields around the file itself.
MULTIPART_OVERHEAD = 64 * 1024


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _read_upload(file: UploadFile) -> AsyncIterator[bytes]:
    while block := await file.read(BLOCK_SIZE):
        yield block


def _upload_response(result: PublishResult) -> UploadResponse:
    return UploadResponse(
        status="success",
        cid=result.backend_id,
        filename=result.name,
        size=result.size,
        details=UploadDetails(
            name=result.name,
            size_bytes=result.size,
            mime_type=result.mime_type,
            cid=result.backend_id,
            content_hash=result.content_hash,
            upload_duration_ms=round(result.duration_ms, 2),
            deduplicated=result.deduplicated,
            timestamp=_timestamp(),
        ),
    )


def _content_disposition(name: str) -> str:
    quoted = quote(name)
    if quoted != name:
        fallback = name.encode("ascii", "replace").decode("ascii").replace('"', "_").replace("\\", "_")
        return f"inline; filename=\"{fallback}\"; filename*=utf-8''{quoted}"
    return f'inline; filename="{name}"'


def _form_int(value: object, field: str) -> int:
    try:
        return int(str(value))
    except ValueError as exc:
        raise InvalidChunkParameters(f"{field} must be an integer", **{field: value}) from exc


class UploadApi:
    """HTTP surface for uploads, chunked uploads, blob lookups and node status."""

    def __init__(self, orchestrator: UploadOrchestrator) -> None:
        self.logger = logging.get_logger(__name__)
        self.orchestrator = orchestrator

    def _preflight(self, request: Request) -> None:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit():
            limit = self.orchestrator.max_file_size + MULTIPART_OVERHEAD
            if int(declared) > limit:
                raise PayloadTooLarge(int(declared), self.orchestrator.max_file_size)

    async def health(self, request: Request, response: Response) -> HealthResponse:
        return HealthResponse(
            status="healthy",
            version=__version__,
            live_uploads=self.orchestrator.tracker.live_count(),
            blobs=len(self.orchestrator.index),
        )

    async def upload(self, request: Request) -> UploadResponse:
        self._preflight(request)
        async with request.form(max_files=1) as form:
            file = form.get("file")
            if not isinstance(file, UploadFile):
                raise NoPayload("No file uploaded")
            claimed = form.get("hash")
            result = await self.orchestrator.publish(
                _read_upload(file),
                size_hint=file.size,
                claimed_hash=claimed if isinstance(claimed, str) and claimed else None,
                mime_type=file.content_type,
                name=file.filename,
            )
        return _upload_response(result)

    async def upload_chunk(self, request: Request) -> ChunkResponse:
        self._preflight(request)
        async with request.form(max_files=1) as form:
            file = form.get("file")
            if not isinstance(file, UploadFile):
                raise NoPayload("No chunk uploaded")
            claimed = form.get("hash")
            name = form.get("name")
            receipt = await self.orchestrator.submit_chunk(
                str(form.get("uploadId") or ""),
                _form_int(form.get("chunkIndex"), "chunkIndex"),
                _form_int(form.get("totalChunks"), "totalChunks"),
                await file.read(),
                name=name if isinstance(name, str) and name else file.filename or "",
                mime_type=file.content_type,
                claimed_hash=claimed if isinstance(claimed, str) and claimed else None,
            )
        return ChunkResponse(
            status="success",
            upload_id=receipt.upload_id,
            chunk_status=receipt.status.value,
            received_count=receipt.received_count,
            total_chunks=receipt.total_chunks,
            result=_upload_response(receipt.result) if receipt.result is not None else None,
        )

    async def blobs(self, request: Request, response: Response) -> BlobsResponse:
        records = self.orchestrator.index.list()
        return BlobsResponse(count=len(records), blobs=records)

    async def blob(self, request: Request, digest: str) -> Response:
        if request.method == "HEAD":
            if self.orchestrator.index.exists(digest):
                return Response(status_code=status.HTTP_200_OK)
            return Response(status_code=status.HTTP_404_NOT_FOUND)
        record = self.orchestrator.index.get(digest)
        return JSONResponse(record.serialize())

    async def blob_content(self, request: Request, digest: str) -> StreamingResponse:
        record, body = await self.orchestrator.fetch(digest)
        return StreamingResponse(
            body,
            media_type=record.mime_type,
            headers={"Content-Disposition": _content_disposition(record.display_name)},
        )

    async def status(self, request: Request, response: Response) -> StatusResponse | JSONResponse:
        try:
            node = await self.orchestrator.backend.status()
        except UploadError as exc:
            self.logger.error("Status check error: %s", exc)
            return JSONResponse(
                {
                    "error": "Failed to retrieve IPFS status",
                    "details": exc.message,
                    "status": "failed",
                    "timestamp": _timestamp(),
                },
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return StatusResponse(
            status="success",
            timestamp=_timestamp(),
            bandwidth=node.bandwidth,
            repository=node.repository,
            node=node.node,
            peers=node.peers,
        )
