"""
Object storage — binary in, durable public URL out.

Uploads go to a logical key, so uploading the same invoice again replaces
the previous object instead of creating a second one.
"""
from __future__ import annotations

import abc
import structlog
from typing import Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import ConfigurationError

logger = structlog.get_logger()


class ObjectStorage(abc.ABC):

    @abc.abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        ...

    async def close(self) -> None:
        pass


class HTTPObjectStorage(ObjectStorage):
    """PUT <base_url>/<folder>/<key>; the object is served from <public_base_url>/<folder>/<key>."""

    def __init__(self, base_url: str, public_base_url: str = "", token: str = "",
                 folder: str = ""):
        if not base_url:
            raise ConfigurationError("INVOICE_STORAGE_URL must be set")
        self.base_url = base_url.rstrip("/")
        self.public_base_url = (public_base_url or base_url).rstrip("/")
        self.folder = folder.strip("/")
        self._token = token
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(60.0, connect=10.0),
            )
        return self._client

    def _path(self, key: str) -> str:
        key = key.lstrip("/")
        return f"{self.folder}/{key}" if self.folder else key

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    async def upload(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        client = await self._get_client()
        path = self._path(key)
        resp = await client.put(
            f"{self.base_url}/{path}",
            content=data,
            headers={"Content-Type": content_type},
        )
        if resp.status_code >= 400:
            logger.error("object_upload_failed",
                         key=path,
                         status=resp.status_code,
                         body=resp.text[:500])
        resp.raise_for_status()
        url = f"{self.public_base_url}/{path}"
        logger.info("object_uploaded", key=path, url=url, size=len(data))
        return url

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()


class InMemoryObjectStorage(ObjectStorage):

    def __init__(self, public_base_url: str = "memory://objects"):
        self.public_base_url = public_base_url.rstrip("/")
        self.objects: dict[str, bytes] = {}

    async def upload(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        self.objects[key] = data
        return f"{self.public_base_url}/{key}"
