"""Publish buffered objects to the backend, at most once per content hash.

Both single-shot uploads and completed chunk sessions end up here. The object
is staged to disk and hashed, the claimed digest (if any) is verified, and then
the index check, the backend add and the index insert run under a lock keyed by
the content hash, so two concurrent uploads of the same bytes publish once.
Staged files are released on every path out of ``publish``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Callable
import contextlib
from dataclasses import asdict, dataclass
from pathlib import Path
import time
from typing import Any, BinaryIO

from ipfs_uploader.backend.base import BackendAdapter
from ipfs_uploader.config import MAX_FILE_SIZE
from ipfs_uploader.errors import BackendTimeout, BackendUnavailable, NoPayload, PayloadTooLarge, UploadError
from ipfs_uploader.store.chunks import AssembledObject, ChunkStatus, ChunkTracker
from ipfs_uploader.store.digest import BLOCK_SIZE, Digester, digest_file, verify_digest
from ipfs_uploader.store.index import BlobIndex, BlobRecord
from ipfs_uploader.store.staging import StagingArea
from ipfs_uploader.utils import logging

logger = logging.get_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

Source = bytes | bytearray | memoryview | AsyncIterable[bytes]


@dataclass
class PublishResult:
    content_hash: str
    backend_id: str
    size: int
    mime_type: str
    name: str
    uploaded_at: float
    deduplicated: bool = False
    duration_ms: float = 0.0

    @classmethod
    def from_record(cls, record: BlobRecord, deduplicated: bool = False, duration_ms: float = 0.0) -> PublishResult:
        return cls(
            content_hash=record.content_hash,
            backend_id=record.backend_id,
            size=record.size_bytes,
            mime_type=record.mime_type,
            name=record.display_name,
            uploaded_at=record.uploaded_at,
            deduplicated=deduplicated,
            duration_ms=duration_ms,
        )

    def serialize(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ChunkReceipt:
    upload_id: str
    status: ChunkStatus
    received_count: int
    total_chunks: int
    result: PublishResult | None = None

    def serialize(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "upload_id": self.upload_id,
            "status": self.status.value,
            "received_count": self.received_count,
            "total_chunks": self.total_chunks,
        }
        if self.result is not None:
            d["result"] = self.result.serialize()
        return d


async def _blocks(source: Source) -> AsyncIterator[bytes]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        view = memoryview(source)
        for offset in range(0, len(view), BLOCK_SIZE):
            yield bytes(view[offset : offset + BLOCK_SIZE])
        return
    async for block in source:
        yield block


def _absorb(f: BinaryIO, digester: Digester, block: bytes) -> None:
    digester.update(block)
    f.write(block)


class UploadOrchestrator:
    def __init__(
        self,
        backend: BackendAdapter,
        index: BlobIndex,
        staging: StagingArea,
        tracker: ChunkTracker | None = None,
        max_file_size: int = MAX_FILE_SIZE,
        backend_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.index = index
        self.staging = staging
        self.tracker = tracker or ChunkTracker(staging, max_bytes=max_file_size)
        self.max_file_size = max_file_size
        self.backend_timeout = backend_timeout
        self._clock = clock
        self._hash_locks: dict[str, asyncio.Lock] = {}
        self._hash_users: dict[str, int] = {}

    async def publish(
        self,
        source: Source | None,
        *,
        size_hint: int | None = None,
        claimed_hash: str | None = None,
        mime_type: str | None = None,
        name: str | None = None,
    ) -> PublishResult:
        if source is None:
            raise NoPayload("No file uploaded")
        if size_hint is not None and size_hint > self.max_file_size:
            raise PayloadTooLarge(size_hint, self.max_file_size)

        path = self.staging.new_path("upload")
        try:
            digester = Digester()
            f = await asyncio.to_thread(path.open, "wb")
            try:
                async for block in _blocks(source):
                    if digester.size + len(block) > self.max_file_size:
                        raise PayloadTooLarge(digester.size + len(block), self.max_file_size)
                    await asyncio.to_thread(_absorb, f, digester, block)
            finally:
                await asyncio.to_thread(f.close)
            if digester.size == 0:
                raise NoPayload("Uploaded file is empty")
            return await self._publish_staged(
                path, digester.hexdigest(), digester.size, claimed_hash=claimed_hash, mime_type=mime_type, name=name
            )
        finally:
            await asyncio.to_thread(self.staging.release, path)

    async def publish_assembled(
        self,
        assembled: AssembledObject,
        *,
        claimed_hash: str | None = None,
        mime_type: str | None = None,
        name: str | None = None,
    ) -> PublishResult:
        try:
            if assembled.size > self.max_file_size:
                raise PayloadTooLarge(assembled.size, self.max_file_size)
            if assembled.size == 0:
                raise NoPayload(f"Upload {assembled.upload_id} assembled to an empty object")
            digest = await asyncio.to_thread(digest_file, assembled.path)
            return await self._publish_staged(
                assembled.path,
                digest,
                assembled.size,
                claimed_hash=claimed_hash or assembled.claimed_hash,
                mime_type=mime_type or assembled.mime_type,
                name=name or assembled.name,
            )
        finally:
            await asyncio.to_thread(self.staging.release, assembled.path)

    async def submit_chunk(
        self,
        upload_id: str,
        chunk_index: int,
        total_chunks: int,
        payload: bytes | None,
        *,
        name: str = "",
        mime_type: str | None = None,
        claimed_hash: str | None = None,
    ) -> ChunkReceipt:
        result = await self.tracker.begin_or_continue(
            upload_id,
            chunk_index,
            total_chunks,
            payload,
            name=name,
            mime_type=mime_type,
            claimed_hash=claimed_hash,
        )
        receipt = ChunkReceipt(upload_id, result.status, result.received_count, result.total_chunks)
        if result.assembled is not None:
            try:
                receipt.result = await self.publish_assembled(result.assembled)
            except Exception:
                # Nothing was published; a resubmission must start a new session.
                self.tracker.forget(upload_id)
                raise
        return receipt

    async def fetch(self, content_hash: str) -> tuple[BlobRecord, AsyncIterator[bytes]]:
        record = self.index.get(content_hash)
        stream = self.backend.resolve(record.backend_id)
        # Pull the first block now so a missing object fails before any bytes are sent.
        try:
            first = await anext(stream)
        except StopAsyncIteration:
            first = b""

        async def body() -> AsyncIterator[bytes]:
            if first:
                yield first
            async for block in stream:
                yield block

        return record, body()

    @contextlib.asynccontextmanager
    async def _single_flight(self, content_hash: str) -> AsyncIterator[None]:
        lock = self._hash_locks.setdefault(content_hash, asyncio.Lock())
        self._hash_users[content_hash] = self._hash_users.get(content_hash, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._hash_users[content_hash] -= 1
            if not self._hash_users[content_hash]:
                del self._hash_users[content_hash]
                del self._hash_locks[content_hash]

    async def _publish_staged(
        self,
        path: Path,
        content_hash: str,
        size: int,
        *,
        claimed_hash: str | None,
        mime_type: str | None,
        name: str | None,
    ) -> PublishResult:
        if claimed_hash is not None:
            verify_digest(claimed_hash, content_hash)
        mime_type = mime_type or DEFAULT_MIME_TYPE
        name = name or content_hash

        async with self._single_flight(content_hash):
            existing = self.index.find(content_hash)
            if existing is not None:
                logger.info("Content %s already published as %s, skipping backend", content_hash, existing.backend_id)
                return PublishResult.from_record(existing, deduplicated=True)

            start = time.perf_counter()
            backend_id = await self._add(path, size, mime_type, name)
            duration_ms = (time.perf_counter() - start) * 1000

            record = BlobRecord(
                content_hash=content_hash,
                backend_id=backend_id,
                size_bytes=size,
                mime_type=mime_type,
                uploaded_at=self._clock(),
                display_name=name,
            )
            await asyncio.to_thread(self.index.put, content_hash, record)

        logger.info(
            "File uploaded successfully: %s",
            {
                "name": name,
                "size_bytes": size,
                "mime_type": mime_type,
                "cid": backend_id,
                "upload_duration_ms": round(duration_ms, 2),
            },
        )
        return PublishResult.from_record(record, duration_ms=duration_ms)

    async def _add(self, path: Path, size: int, mime_type: str, name: str) -> str:
        stream = await asyncio.to_thread(path.open, "rb")
        try:
            return await asyncio.wait_for(
                self.backend.add_object(stream, size, mime_type, name), timeout=self.backend_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("Backend add for %s timed out after %ss", name, self.backend_timeout)
            raise BackendTimeout(f"Backend did not answer within {self.backend_timeout}s") from exc
        except UploadError as exc:
            logger.error("Backend add for %s failed: %s", name, exc)
            raise
        except Exception as exc:
            logger.exception("Backend add for %s failed", name)
            raise BackendUnavailable(f"Failed to upload to backend: {exc}") from exc
        finally:
            await asyncio.to_thread(stream.close)
