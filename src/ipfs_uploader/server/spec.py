from __future__ import annotations

from collections.abc import AsyncIterator, Callable
import contextlib
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ipfs_uploader.__about__ import __version__
from ipfs_uploader.backend import BackendAdapter, create_backend
from ipfs_uploader.config import Settings
from ipfs_uploader.errors import ErrorCode, UploadError
from ipfs_uploader.orchestrator import UploadOrchestrator
from ipfs_uploader.server.api import UploadApi
from ipfs_uploader.store import LocalStore, Reaper
from ipfs_uploader.utils import logging

logger = logging.get_logger(__name__)

STATUS_CODES = {
    ErrorCode.NO_PAYLOAD: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_CHUNK_PARAMETERS: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INTEGRITY_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.BACKEND_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.BACKEND_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


class UploadSpec(UploadApi):
    def __init__(self, orchestrator: UploadOrchestrator) -> None:
        super().__init__(orchestrator)
        self._endpoints: list[tuple[str, Callable, list[str]]] = []
        self.add_endpoint("/health", self.health, ["GET"])
        self.add_endpoint("/uploadx", self.upload, ["POST"])
        self.add_endpoint("/uploadx/chunk", self.upload_chunk, ["POST"])
        self.add_endpoint("/blobs", self.blobs, ["GET"])
        self.add_endpoint("/blobs/{digest}", self.blob, ["GET", "HEAD"])
        self.add_endpoint("/blobs/{digest}/content", self.blob_content, ["GET"])
        self.add_endpoint("/status", self.status, ["GET"])

    def add_endpoint(self, path: str, endpoint: Callable, methods: list[str]) -> None:
        """Register an endpoint to be mounted on the app."""
        self._endpoints.append((path, endpoint, methods))

    @property
    def endpoints(self) -> list[tuple[str, Callable, list[str]]]:
        return self._endpoints.copy()

    def mount(self, app: FastAPI) -> None:
        for path, endpoint, methods in self._endpoints:
            app.add_api_route(path, endpoint, methods=methods, response_model=None)


async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    body = exc.serialize()
    body.update(status="failed", timestamp=datetime.now(timezone.utc).isoformat())
    return JSONResponse(body, status_code=STATUS_CODES.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR))


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unexpected error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def create_app(
    settings: Settings | None = None,
    backend: BackendAdapter | None = None,
    store: LocalStore | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    backend = backend or create_backend(settings)
    store = store or LocalStore(
        staging_dir=settings.staging_dir,
        index_path=settings.index_path,
        max_bytes=settings.max_file_size,
    )
    orchestrator = UploadOrchestrator(
        backend,
        store.index,
        store.staging,
        tracker=store.chunks,
        max_file_size=settings.max_file_size,
        backend_timeout=settings.backend_timeout,
    )
    reaper: Reaper = store.reaper(max_age=settings.chunk_max_age, interval=settings.reap_interval)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting uploader v%s with %s backend", __version__, settings.backend)
        reaper.start()
        try:
            yield
        finally:
            await reaper.stop()
            await backend.aclose()
            logger.info("Uploader stopped.")

    app = FastAPI(title="IPFS Uploader", version=__version__, lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.add_exception_handler(UploadError, upload_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unexpected_error_handler)

    spec = UploadSpec(orchestrator)
    spec.mount(app)
    app.state.orchestrator = orchestrator
    app.state.reaper = reaper
    app.state.settings = settings
    return app
