"""
CKAN DataStore source.

Serves pages from ``{base_url}/datastore_search`` for a resource id. A
response with ``success: false`` or an HTTP error status raises
``SourceError``; nothing is retried.
"""

from __future__ import annotations

from typing import Any

import httpx

from municipal_spine.core.errors import SourceError
from municipal_spine.core.logging import get_logger
from municipal_spine.core.settings import DEFAULT_CKAN_BASE_URL
from municipal_spine.sources.base import RawRecord

logger = get_logger(__name__)

USER_AGENT = "municipal-spine ETL"


class CkanSource:
    """Pages of DataStore records over ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str = DEFAULT_CKAN_BASE_URL,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
        return self._client

    async def fetch_page(self, resource_id: str, limit: int, offset: int) -> list[RawRecord]:
        url = f"{self.base_url}/datastore_search"
        params: dict[str, Any] = {"resource_id": resource_id, "limit": limit, "offset": offset}
        try:
            response = await self._get_client().get(url, params=params)
        except httpx.HTTPError as e:
            raise SourceError(f"CKAN request failed: {e}", cause=e).with_context(
                url=url, resource_id=resource_id
            ) from e

        if response.status_code >= 400:
            raise SourceError(
                f"CKAN API failed: {response.status_code} {response.reason_phrase}"
            ).with_context(url=url, resource_id=resource_id, http_status=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceError("CKAN API returned invalid JSON", cause=e).with_context(
                url=url, resource_id=resource_id
            ) from e

        if not payload.get("success"):
            message = (payload.get("error") or {}).get("message") or "Unknown error"
            raise SourceError(f"CKAN API returned error: {message}").with_context(
                url=url, resource_id=resource_id
            )

        records = (payload.get("result") or {}).get("records") or []
        return [dict(record) for record in records]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> CkanSource:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()


__all__ = ["CkanSource", "USER_AGENT"]
