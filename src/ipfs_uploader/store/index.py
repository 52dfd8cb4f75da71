"""Content hash -> backend metadata.

The index is insert-once: the first record stored for a hash is authoritative
and later ``put`` calls for the same hash are no-ops. ``JsonlBlobIndex`` keeps
the mapping across restarts by appending every accepted record to a JSON-lines
file and replaying it on start-up.
"""

from __future__ import annotations

from dataclasses import asdict
import json
from pathlib import Path
import threading
from typing import Annotated, Any

from pydantic import Field
from pydantic.dataclasses import dataclass

from ipfs_uploader.errors import NotFound
from ipfs_uploader.store.digest import normalize_digest
from ipfs_uploader.utils import logging

logger = logging.get_logger(__name__)


@dataclass(frozen=True)
class BlobRecord:
    content_hash: Annotated[str, Field(pattern=r"^[0-9a-f]{64}$")]
    backend_id: str
    size_bytes: Annotated[int, Field(ge=0)]
    mime_type: str
    uploaded_at: float
    display_name: str

    def serialize(self) -> dict[str, Any]:
        return asdict(self)


class BlobIndex:
    """In-memory index; safe to share between threads and event-loop tasks."""

    def __init__(self) -> None:
        self._records: dict[str, BlobRecord] = {}
        self._lock = threading.Lock()

    def put(self, content_hash: str, record: BlobRecord) -> bool:
        key = normalize_digest(content_hash)
        if key != record.content_hash:
            raise ValueError(f"Record for {record.content_hash} stored under {key}")
        with self._lock:
            if key in self._records:
                return False
            self._persist(record)
            self._records[key] = record
        logger.debug("Indexed %s -> %s", key, record.backend_id)
        return True

    def get(self, content_hash: str) -> BlobRecord:
        record = self.find(content_hash)
        if record is None:
            raise NotFound(f"No blob for {content_hash}", content_hash=content_hash)
        return record

    def find(self, content_hash: str) -> BlobRecord | None:
        with self._lock:
            return self._records.get(normalize_digest(content_hash))

    def exists(self, content_hash: str) -> bool:
        return self.find(content_hash) is not None

    def list(self) -> list[BlobRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _persist(self, record: BlobRecord) -> None:
        pass


class JsonlBlobIndex(BlobIndex):
    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self.path.is_file():
            return
        with self.path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    record = BlobRecord(**json.loads(stripped))
                except (ValueError, TypeError) as exc:
                    # A torn final line from a crash mid-append is skipped, not fatal.
                    logger.warning("Skipping unreadable index line %d in %s: %s", lineno, self.path, exc)
                    continue
                self._records.setdefault(record.content_hash, record)
        logger.info("Loaded %d blob records from %s", len(self._records), self.path)

    def _persist(self, record: BlobRecord) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record.serialize(), sort_keys=True) + "\n")
            f.flush()
