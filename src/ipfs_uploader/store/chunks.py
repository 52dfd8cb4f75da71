"""Chunked upload assembly.

Every chunk is written to its own part file inside the session directory, so
chunks may arrive in any order; the parts are concatenated by index once the
last missing one lands. Work on one session is serialized by the session lock,
different sessions never share a lock.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import contextlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import shutil
import time

from ipfs_uploader.errors import InvalidChunkParameters, NoPayload, PayloadTooLarge
from ipfs_uploader.store.digest import BLOCK_SIZE
from ipfs_uploader.store.staging import StagingArea
from ipfs_uploader.utils import logging

logger = logging.get_logger(__name__)

MAX_UPLOAD_ID_LENGTH = 128


class ChunkStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    DUPLICATE = "duplicate"
    COMPLETE = "complete"


@dataclass
class AssembledObject:
    upload_id: str
    path: Path
    size: int
    total_chunks: int
    name: str = ""
    mime_type: str | None = None
    claimed_hash: str | None = None


@dataclass
class ChunkResult:
    status: ChunkStatus
    received_count: int
    total_chunks: int
    # Only set on the single COMPLETE result; the caller owns the file from then on.
    assembled: AssembledObject | None = None


@dataclass(eq=False)
class UploadSession:
    upload_id: str
    total_chunks: int
    directory: Path
    started_at: float
    touched_at: float
    original_name: str = ""
    mime_type: str | None = None
    claimed_hash: str | None = None
    received: set[int] = field(default_factory=set)
    size: int = 0
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_complete(self) -> bool:
        return len(self.received) == self.total_chunks

    def part_path(self, chunk_index: int) -> Path:
        return self.directory / f"part-{chunk_index:08d}"

    def age(self, now: float) -> float:
        return now - self.touched_at


class ChunkTracker:
    def __init__(
        self,
        staging: StagingArea,
        max_bytes: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.staging = staging
        self.max_bytes = max_bytes
        self._clock = clock
        self._sessions: dict[str, UploadSession] = {}
        # upload_id -> (completed_at, total_chunks); late chunks of finished uploads are duplicates.
        self._completed: dict[str, tuple[float, int]] = {}

    def live_count(self) -> int:
        return len(self._sessions)

    def get_session(self, upload_id: str) -> UploadSession | None:
        return self._sessions.get(upload_id)

    def is_completed(self, upload_id: str) -> bool:
        return upload_id in self._completed

    def forget(self, upload_id: str) -> None:
        """Drop the completion marker so the upload id can be submitted again."""
        self._completed.pop(upload_id, None)

    async def begin_or_continue(
        self,
        upload_id: str,
        chunk_index: int,
        total_chunks: int,
        payload: bytes | None,
        *,
        name: str = "",
        mime_type: str | None = None,
        claimed_hash: str | None = None,
    ) -> ChunkResult:
        self._validate(upload_id, chunk_index, total_chunks)
        if payload is None:
            raise NoPayload(f"No payload for chunk {chunk_index} of upload {upload_id}")

        while True:
            completed = self._completed.get(upload_id)
            if completed is not None:
                logger.info("Late chunk %d for completed upload %s ignored", chunk_index, upload_id)
                return ChunkResult(ChunkStatus.DUPLICATE, completed[1], completed[1])

            session = self._sessions.get(upload_id)
            if session is None:
                session = self._open(upload_id, total_chunks, name, mime_type)

            async with session.lock:
                if session.closed:
                    # Reaped or finished while this chunk waited for the lock.
                    continue
                return await self._accept(session, chunk_index, total_chunks, payload, claimed_hash)

    async def reap_expired(self, max_age: float) -> list[str]:
        now = self._clock()
        reaped: list[str] = []
        for upload_id, session in list(self._sessions.items()):
            if session.age(now) <= max_age or session.lock.locked():
                continue
            async with session.lock:
                if session.closed or session.age(self._clock()) <= max_age:
                    continue
                await self._drop(session)
            logger.info(
                "Reaped abandoned upload %s (%d/%d chunks, %d bytes)",
                upload_id,
                len(session.received),
                session.total_chunks,
                session.size,
            )
            reaped.append(upload_id)

        for upload_id, (completed_at, _) in list(self._completed.items()):
            if now - completed_at > max_age:
                del self._completed[upload_id]
        return reaped

    def _validate(self, upload_id: str, chunk_index: int, total_chunks: int) -> None:
        if not upload_id or len(upload_id) > MAX_UPLOAD_ID_LENGTH:
            raise InvalidChunkParameters(
                f"uploadId must be between 1 and {MAX_UPLOAD_ID_LENGTH} characters", upload_id=upload_id
            )
        if total_chunks < 1:
            raise InvalidChunkParameters("totalChunks must be at least 1", total_chunks=total_chunks)
        if not 0 <= chunk_index < total_chunks:
            raise InvalidChunkParameters(
                f"chunkIndex must be in [0, {total_chunks})", chunk_index=chunk_index, total_chunks=total_chunks
            )

    def _open(self, upload_id: str, total_chunks: int, name: str, mime_type: str | None) -> UploadSession:
        now = self._clock()
        session = UploadSession(
            upload_id=upload_id,
            total_chunks=total_chunks,
            directory=self.staging.new_dir("session"),
            started_at=now,
            touched_at=now,
            original_name=name,
            mime_type=mime_type,
        )
        self._sessions[upload_id] = session
        logger.info("Started upload %s (%d chunks) for %r", upload_id, total_chunks, name)
        return session

    async def _accept(
        self,
        session: UploadSession,
        chunk_index: int,
        total_chunks: int,
        payload: bytes,
        claimed_hash: str | None = None,
    ) -> ChunkResult:
        if total_chunks != session.total_chunks:
            raise InvalidChunkParameters(
                f"totalChunks changed from {session.total_chunks} to {total_chunks}",
                upload_id=session.upload_id,
                total_chunks=total_chunks,
            )
        if chunk_index in session.received:
            logger.info("Duplicate chunk %d for upload %s ignored", chunk_index, session.upload_id)
            return ChunkResult(ChunkStatus.DUPLICATE, len(session.received), session.total_chunks)

        size = session.size + len(payload)
        if self.max_bytes is not None and size > self.max_bytes:
            await self._drop(session)
            logger.warning("Upload %s dropped: %d bytes exceeds %d", session.upload_id, size, self.max_bytes)
            raise PayloadTooLarge(size, self.max_bytes)

        await asyncio.to_thread(session.part_path(chunk_index).write_bytes, payload)
        session.received.add(chunk_index)
        session.size = size
        session.touched_at = self._clock()
        if claimed_hash and not session.claimed_hash:
            session.claimed_hash = claimed_hash

        if not session.is_complete:
            logger.debug(
                "Upload %s received chunk %d (%d/%d)",
                session.upload_id,
                chunk_index,
                len(session.received),
                session.total_chunks,
            )
            return ChunkResult(ChunkStatus.IN_PROGRESS, len(session.received), session.total_chunks)

        session.closed = True
        self._sessions.pop(session.upload_id, None)
        self._completed[session.upload_id] = (self._clock(), session.total_chunks)
        try:
            assembled = await asyncio.to_thread(self._assemble, session)
        except BaseException:
            self._completed.pop(session.upload_id, None)
            raise
        finally:
            await asyncio.to_thread(self.staging.release, session.directory)
        logger.info("Upload %s assembled (%d bytes)", session.upload_id, assembled.size)
        return ChunkResult(ChunkStatus.COMPLETE, session.total_chunks, session.total_chunks, assembled=assembled)

    def _assemble(self, session: UploadSession) -> AssembledObject:
        path = self.staging.new_path("assembled")
        try:
            with path.open("wb") as out:
                for index in range(session.total_chunks):
                    with session.part_path(index).open("rb") as part:
                        shutil.copyfileobj(part, out, BLOCK_SIZE)
        except OSError:
            self.staging.release(path)
            raise
        return AssembledObject(
            upload_id=session.upload_id,
            path=path,
            size=session.size,
            total_chunks=session.total_chunks,
            name=session.original_name,
            mime_type=session.mime_type,
            claimed_hash=session.claimed_hash,
        )

    async def _drop(self, session: UploadSession) -> None:
        session.closed = True
        self._sessions.pop(session.upload_id, None)
        await asyncio.to_thread(self.staging.release, session.directory)


class Reaper:
    """Periodic ``reap_expired`` sweep with an explicit cancellation handle."""

    def __init__(self, tracker: ChunkTracker, max_age: float, interval: float) -> None:
        self.tracker = tracker
        self.max_age = max_age
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> list[str]:
        return await self.tracker.reap_expired(self.max_age)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Reaper sweep failed")

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="chunk-reaper")
        return self._task  # type: ignore[return-value]

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
