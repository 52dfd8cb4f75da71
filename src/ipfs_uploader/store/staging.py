from __future__ import annotations

from pathlib import Path
import shutil
import uuid

from ipfs_uploader.utils import logging

logger = logging.get_logger(__name__)


class StagingArea:
    """Scratch space for objects that have not been published yet.

    Files live directly under ``root`` as ``<prefix>-<uuid>``; chunk sessions
    get a directory of the same shape.
    """

    def __init__(self, root: str | Path = "staging") -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def new_path(self, prefix: str = "object") -> Path:
        return self.root / f"{prefix}-{uuid.uuid4().hex}"

    def new_dir(self, prefix: str = "session") -> Path:
        path = self.new_path(prefix)
        path.mkdir(parents=True)
        return path

    def release(self, path: Path) -> None:
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to release staged path %s: %s", path, exc)

    def entries(self) -> list[Path]:
        return sorted(self.root.iterdir())
