"""Failure taxonomy shared by the chunk tracker, the orchestrator and the HTTP layer."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    NO_PAYLOAD = "no_payload"
    INVALID_CHUNK_PARAMETERS = "invalid_chunk_parameters"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_TIMEOUT = "backend_timeout"
    NOT_FOUND = "not_found"


class UploadError(Exception):
    code: ErrorCode
    # Safe to retry at the caller level.
    transient: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def serialize(self) -> dict[str, Any]:
        d: dict[str, Any] = {"error": self.message, "code": self.code.value}
        if self.details:
            d["details"] = self.details
        return d


class NoPayload(UploadError):
    code = ErrorCode.NO_PAYLOAD


class InvalidChunkParameters(UploadError):
    code = ErrorCode.INVALID_CHUNK_PARAMETERS


class PayloadTooLarge(UploadError):
    code = ErrorCode.PAYLOAD_TOO_LARGE

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Object too large: {size} bytes exceeds the {limit} byte limit", size=size, limit=limit)
        self.size = size
        self.limit = limit


class IntegrityMismatch(UploadError):
    code = ErrorCode.INTEGRITY_MISMATCH

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Digest mismatch: expected {expected}, got {actual}", expected=expected, actual=actual)
        self.expected = expected
        self.actual = actual


class BackendUnavailable(UploadError):
    code = ErrorCode.BACKEND_UNAVAILABLE
    transient = True


class BackendTimeout(UploadError):
    code = ErrorCode.BACKEND_TIMEOUT
    transient = True


class NotFound(UploadError):
    code = ErrorCode.NOT_FOUND
