"""Streaming sha256 digests.

The same bytes always hash to the same lowercase hex digest no matter how they
are split into reads, so a digest can be computed while an object is buffered
and reused both to verify a client-claimed hash and as the dedup key.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, Iterable
import hashlib
from pathlib import Path
import re

from ipfs_uploader.errors import IntegrityMismatch

BLOCK_SIZE = 64 * 1024
DIGEST_LENGTH = 64

_HEX_DIGEST = re.compile(rf"^[0-9a-f]{{{DIGEST_LENGTH}}}$")


def normalize_digest(digest: str) -> str:
    d = digest.strip().lower()
    for prefix in ("sha256:", "sha256-"):
        if d.startswith(prefix):
            return d[len(prefix) :]
    return d


def is_valid_digest(digest: str) -> bool:
    return bool(_HEX_DIGEST.match(normalize_digest(digest)))


class Digester:
    """Incremental sha256 that also counts the bytes it has seen."""

    def __init__(self) -> None:
        self._sha256 = hashlib.sha256()
        self.size = 0

    def update(self, data: bytes) -> None:
        self._sha256.update(data)
        self.size += len(data)

    def hexdigest(self) -> str:
        return self._sha256.hexdigest()


def digest_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def digest_iter(blocks: Iterable[bytes]) -> str:
    digester = Digester()
    for block in blocks:
        digester.update(block)
    return digester.hexdigest()


async def digest_stream(blocks: AsyncIterable[bytes]) -> str:
    digester = Digester()
    async for block in blocks:
        digester.update(block)
    return digester.hexdigest()


def digest_file(path: Path) -> str:
    with path.open("rb") as f:
        return digest_iter(iter(lambda: f.read(BLOCK_SIZE), b""))


def verify_digest(expected: str, actual: str) -> str:
    """Compare a claimed digest against a computed one.

    Returns the normalized digest on success and raises ``IntegrityMismatch``
    carrying both values otherwise.
    """
    claimed = normalize_digest(expected)
    computed = normalize_digest(actual)
    if claimed != computed:
        raise IntegrityMismatch(expected=claimed, actual=computed)
    return computed
