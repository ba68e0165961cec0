"""Object storage contract and its HTTP implementation."""

import logging
from typing import Protocol

import httpx

from idcard_engine.common.exceptions import ExternalDependencyError

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str: ...

    async def fetch(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> None: ...


class HttpObjectStorage:
    """Bucket-style storage reachable over HTTP (PUT/GET/DELETE on object paths)."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _path(self, path_or_url: str) -> str:
        if path_or_url.startswith(self.base_url):
            path_or_url = path_or_url[len(self.base_url):]
        return "/" + path_or_url.lstrip("/")

    async def upload(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        try:
            async with self._client() as client:
                resp = await client.put(
                    self._path(path), content=data, headers={"Content-Type": content_type},
                )
                resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExternalDependencyError(f"Storage upload timed out: {path}") from exc
        except httpx.HTTPError as exc:
            raise ExternalDependencyError(f"Storage upload failed: {path}: {exc}") from exc
        return self.public_url(path)

    async def fetch(self, path: str) -> bytes:
        try:
            async with self._client() as client:
                resp = await client.get(self._path(path))
                resp.raise_for_status()
                return resp.content
        except httpx.TimeoutException as exc:
            raise ExternalDependencyError(f"Storage fetch timed out: {path}") from exc
        except httpx.HTTPError as exc:
            raise ExternalDependencyError(f"Storage fetch failed: {path}: {exc}") from exc

    async def delete(self, path: str) -> None:
        try:
            async with self._client() as client:
                resp = await client.delete(self._path(path))
                if resp.status_code != 404:
                    resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExternalDependencyError(f"Storage delete timed out: {path}") from exc
        except httpx.HTTPError as exc:
            raise ExternalDependencyError(f"Storage delete failed: {path}: {exc}") from exc
