"""
Order document store — read and update calls against the storefront's orders.

The storefront owns the documents; the pipeline only reads an order and
writes invoice fields back onto it.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import ConfigurationError

logger = structlog.get_logger()


class OrderRepository(abc.ABC):

    @abc.abstractmethod
    async def get_order(self, order_id: str) -> Optional[dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def update_order(self, order_id: str, fields: dict[str, Any]) -> None:
        """Apply ``fields`` to the order. Raises when the update does not land."""
        ...

    async def close(self) -> None:
        pass


class RESTOrderRepository(OrderRepository):
    """Orders behind the storefront's REST API: GET/PATCH /orders/{id}."""

    def __init__(self, base_url: str, token: str = ""):
        if not base_url:
            raise ConfigurationError("ORDERS_API_URL must be set")
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=30.0,
            )
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        return await client.request(method, path, **kwargs)

    async def get_order(self, order_id: str) -> Optional[dict[str, Any]]:
        resp = await self._request("GET", f"/orders/{order_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        body = resp.json()
        return body.get("data", body) if isinstance(body, dict) else None

    async def update_order(self, order_id: str, fields: dict[str, Any]) -> None:
        resp = await self._request("PATCH", f"/orders/{order_id}", json=fields)
        if resp.status_code >= 400:
            logger.error("order_update_failed",
                         order_id=order_id,
                         status=resp.status_code,
                         body=resp.text[:500])
        resp.raise_for_status()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()


class InMemoryOrderRepository(OrderRepository):

    def __init__(self, orders: dict[str, dict[str, Any]] = None):
        self._orders: dict[str, dict[str, Any]] = dict(orders or {})

    async def get_order(self, order_id: str) -> Optional[dict[str, Any]]:
        order = self._orders.get(order_id)
        return dict(order) if order else None

    async def update_order(self, order_id: str, fields: dict[str, Any]) -> None:
        if order_id not in self._orders:
            raise KeyError(f"Order not found: {order_id}")
        self._orders[order_id].update(fields)
