"""Request/response client for the counter endpoints."""

import logging
from typing import Any, Dict, List

import httpx

from sync_counter.client.exceptions import (
    CounterNotFoundError,
    InvalidInputError,
    SyncCounterError,
    TransientNetworkError,
)
from sync_counter.core.config import settings

logger = logging.getLogger(__name__)


class CounterStoreClient:
    """Thin async wrapper over ``/api/counters``; no retry or queueing of its own."""

    def __init__(
        self,
        base_url: str | None = None,
        api_prefix: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.SERVER_URL).rstrip("/")
        self.api_prefix = api_prefix if api_prefix is not None else settings.API_PREFIX
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.CLIENT_REQUEST_TIMEOUT,
            transport=transport,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    def url(self, path: str) -> str:
        return f"{self.api_prefix}{path}"

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, self.url(path), **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {path} failed: {e!r}") from e

        if response.status_code >= 500:
            raise TransientNetworkError(_error_message(response), response.status_code)
        if response.status_code == 404:
            raise CounterNotFoundError(_error_message(response), 404)
        if response.status_code in (400, 409, 422):
            raise InvalidInputError(_error_message(response), response.status_code)
        if response.is_error:
            raise SyncCounterError(_error_message(response), response.status_code)
        return response.json()

    # -----------------------------------------------------------------------
    # Counter operations
    # -----------------------------------------------------------------------

    async def list(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/counters")
        return data["counters"]

    async def get(self, counter_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/counters/{counter_id}")
        return data["counter"]

    async def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "/counters", json=fields)
        return data["counter"]

    async def update(self, counter_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("PUT", f"/counters/{counter_id}", json=fields)
        return data["counter"]

    async def delete(self, counter_id: str) -> Dict[str, Any]:
        data = await self._request("DELETE", f"/counters/{counter_id}")
        return data["counter"]

    async def increment(self, counter_id: str, user: str | None = None, day: str | None = None) -> Dict[str, Any]:
        data = await self._request("POST", f"/counters/{counter_id}/increment", json={"user": user, "day": day})
        return data["counter"]

    async def decrement(self, counter_id: str, user: str | None = None, day: str | None = None) -> Dict[str, Any]:
        data = await self._request("POST", f"/counters/{counter_id}/decrement", json={"user": user, "day": day})
        return data["counter"]

    async def adjust(
        self, counter_id: str, delta: int, user: str | None = None, day: str | None = None,
    ) -> Dict[str, Any]:
        data = await self._request(
            "POST", f"/counters/{counter_id}/adjust", json={"delta": delta, "user": user, "day": day},
        )
        return data["counter"]

    async def reset(self, counter_id: str) -> Dict[str, Any]:
        data = await self._request("POST", f"/counters/{counter_id}/reset")
        return data["counter"]

    async def health(self) -> bool:
        """True when the server answers ``/health``; never raises."""
        try:
            response = await self._client.get("/health")
        except httpx.TransportError:
            return False
        return response.status_code == 200


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"
