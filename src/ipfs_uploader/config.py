from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic.dataclasses import dataclass

MAX_FILE_SIZE = 2000 * 1024 * 1024

# Settings field -> environment variable
_ENV_VARS = {
    "host": "HOST",
    "port": "PORT",
    "log_level": "LOG_LEVEL",
    "ipfs_api": "IPFS_API",
    "backend": "BACKEND",
    "max_file_size": "MAX_FILE_SIZE",
    "staging_dir": "STAGING_DIR",
    "index_path": "INDEX_PATH",
    "chunk_max_age": "CHUNK_MAX_AGE",
    "reap_interval": "REAP_INTERVAL",
    "backend_timeout": "BACKEND_TIMEOUT",
    "status_timeout": "STATUS_TIMEOUT",
}


@dataclass
class Settings:
    host: str = "0.0.0.0"  # noqa: S104
    port: int = Field(default=3232, gt=0, lt=65536)
    log_level: str = "info"
    ipfs_api: str = "http://127.0.0.1:5001"
    backend: Literal["ipfs", "mock"] = "ipfs"
    max_file_size: int = Field(default=MAX_FILE_SIZE, gt=0)
    staging_dir: Path = Path("data/staging")
    # None keeps the blob index in memory only.
    index_path: Path | None = Path("data/index.jsonl")
    chunk_max_age: float = Field(default=3600.0, gt=0)
    reap_interval: float = Field(default=60.0, gt=0)
    backend_timeout: float = Field(default=30.0, gt=0)
    status_timeout: float = Field(default=5.0, gt=0)

    @classmethod
    def from_env(cls, **overrides: Any) -> Settings:
        load_dotenv()
        values: dict[str, Any] = {}
        for field, var in _ENV_VARS.items():
            raw = os.environ.get(var)
            if raw is None:
                continue
            raw = raw.strip()
            if field == "index_path" and raw.lower() in {"", "none", "memory"}:
                values[field] = None
            elif raw:
                values[field] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
