"""
Invoice rendering — order data in, PDF bytes out.

A renderer may leave a local temporary file behind (``local_path``); the
invoice workflow deletes it once the document has been uploaded and mailed.
"""
from __future__ import annotations

import abc
import os
import tempfile
import structlog
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx

from core.errors import ConfigurationError, PipelineError

logger = structlog.get_logger()


class RenderError(PipelineError):
    pass


@dataclass
class RenderedDocument:
    content: bytes
    local_path: Optional[Path] = None
    content_type: str = "application/pdf"


class InvoiceRenderer(abc.ABC):

    @abc.abstractmethod
    async def render(self, order_data: dict[str, Any]) -> RenderedDocument:
        ...

    async def close(self) -> None:
        pass


class RemoteInvoiceRenderer(InvoiceRenderer):
    """POSTs the order snapshot as JSON to a rendering service and reads back the PDF."""

    def __init__(self, url: str, token: str = "", timeout: float = 60.0):
        if not url:
            raise ConfigurationError("INVOICE_RENDERER_URL must be set")
        self.url = url
        self._token = token
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(self._timeout, connect=10.0),
            )
        return self._client

    async def render(self, order_data: dict[str, Any]) -> RenderedDocument:
        client = await self._get_client()
        resp = await client.post(self.url, json=order_data)
        if resp.status_code >= 400:
            logger.error("invoice_render_failed",
                         status=resp.status_code,
                         body=resp.text[:500])
            raise RenderError(f"Renderer returned HTTP {resp.status_code}")
        if not resp.content:
            raise RenderError("Renderer returned an empty document")
        return RenderedDocument(
            content=resp.content,
            content_type=resp.headers.get("content-type", "application/pdf"),
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()


class StaticInvoiceRenderer(InvoiceRenderer):
    """
    Returns the same placeholder document for every order. With
    ``write_temp_file`` it also leaves a temporary copy on disk the way
    browser-based renderers do.
    """

    PLACEHOLDER = b"%PDF-1.4\n% invoice placeholder\n%%EOF\n"

    def __init__(self, content: bytes = PLACEHOLDER, write_temp_file: bool = False):
        self.content = content
        self.write_temp_file = write_temp_file
        self.rendered: list[dict[str, Any]] = []

    async def render(self, order_data: dict[str, Any]) -> RenderedDocument:
        self.rendered.append(order_data)
        local_path = None
        if self.write_temp_file:
            fd, name = tempfile.mkstemp(prefix="invoice-", suffix=".pdf")
            with os.fdopen(fd, "wb") as f:
                f.write(self.content)
            local_path = Path(name)
        return RenderedDocument(content=self.content, local_path=local_path)
