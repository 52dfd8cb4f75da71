"""Backend adapter for the HTTP RPC API of an IPFS daemon (``/api/v0``)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any, BinaryIO

import httpx

from ipfs_uploader.backend.base import Bandwidth, NodeInfo, NodeStatus, Peers, Repository
from ipfs_uploader.errors import BackendTimeout, BackendUnavailable, NotFound
from ipfs_uploader.utils import logging

logger = logging.get_logger(__name__)

BANDWIDTH_INTERVAL = "5m"


class IpfsBackend:
    def __init__(
        self,
        api_url: str = "http://127.0.0.1:5001",
        timeout: float = 30.0,
        status_timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.status_timeout = status_timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, command: str) -> str:
        return f"{self.api_url}/api/v0/{command}"

    async def add_object(self, stream: BinaryIO, size_hint: int, mime_type: str, name: str) -> str:
        files = {"file": (name or "blob", stream, mime_type)}
        try:
            response = await self._client.post(
                self._url("add"),
                params={"pin": "true"},
                files=files,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise BackendTimeout(f"IPFS add timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise BackendUnavailable(
                f"IPFS add failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
                body=exc.response.text[:200],
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendUnavailable(f"IPFS add failed: {exc}") from exc

        try:
            cid = response.json()["Hash"]
        except (ValueError, KeyError) as exc:
            raise BackendUnavailable("IPFS add returned an unexpected response", body=response.text[:200]) from exc
        logger.debug("IPFS add %s (%d bytes) -> %s", name, size_hint, cid)
        return cid

    async def resolve(self, backend_id: str) -> AsyncIterator[bytes]:
        try:
            async with self._client.stream(
                "POST", self._url("cat"), params={"arg": backend_id}, timeout=self.timeout
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    if response.status_code == 404 or b"not found" in body.lower():
                        raise NotFound(f"IPFS has no object {backend_id}", backend_id=backend_id)
                    raise BackendUnavailable(
                        f"IPFS cat failed with HTTP {response.status_code}",
                        status_code=response.status_code,
                        body=body[:200].decode("utf-8", "replace"),
                    )
                async for block in response.aiter_bytes():
                    yield block
        except httpx.TimeoutException as exc:
            raise BackendTimeout(f"IPFS cat timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise BackendUnavailable(f"IPFS cat failed: {exc}") from exc

    async def _rpc(self, command: str, **params: str) -> dict[str, Any]:
        response = await self._client.post(self._url(command), params=params, timeout=self.status_timeout)
        response.raise_for_status()
        return response.json()

    async def status(self) -> NodeStatus:
        try:
            bw, repo, ident = await asyncio.gather(
                self._rpc("stats/bw", interval=BANDWIDTH_INTERVAL),
                self._rpc("repo/stat"),
                self._rpc("id"),
            )
            peers = (await self._rpc("swarm/peers")).get("Peers") or []
        except httpx.TimeoutException as exc:
            raise BackendTimeout(f"IPFS status timed out after {self.status_timeout}s") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise BackendUnavailable(f"Failed to retrieve IPFS status: {exc}") from exc

        return NodeStatus(
            bandwidth=Bandwidth(
                total_in=bw.get("TotalIn", 0),
                total_out=bw.get("TotalOut", 0),
                rate_in=bw.get("RateIn", 0.0),
                rate_out=bw.get("RateOut", 0.0),
                interval=BANDWIDTH_INTERVAL,
            ),
            repository=Repository(
                size=repo.get("RepoSize", 0),
                storage_max=repo.get("StorageMax", 0),
                num_objects=repo.get("NumObjects", 0),
                path=repo.get("RepoPath", ""),
                version=repo.get("Version", ""),
            ),
            node=NodeInfo(
                id=ident.get("ID", ""),
                public_key=ident.get("PublicKey", ""),
                addresses=ident.get("Addresses") or [],
                agent_version=ident.get("AgentVersion", ""),
                protocol_version=ident.get("ProtocolVersion", ""),
            ),
            peers=Peers(count=len(peers), entries=peers),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
