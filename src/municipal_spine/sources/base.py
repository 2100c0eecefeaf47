"""
Source collaborator contract and the pagination drain.

A source serves pages of raw rows for a resource. The pipeline drains a
resource fully into memory before transforming: pages are requested at
increasing offsets until one comes back shorter than the page size.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

from municipal_spine.core.logging import get_logger

logger = get_logger(__name__)

RawRecord = dict[str, Any]


@runtime_checkable
class Source(Protocol):
    """Anything that can serve pages of raw rows for a resource."""

    async def fetch_page(self, resource_id: str, limit: int, offset: int) -> list[RawRecord]: ...


async def drain(
    source: Source,
    resource_id: str,
    page_size: int = 1000,
    page_delay: float = 0.0,
) -> list[RawRecord]:
    """Fetch every page of ``resource_id`` until a short page is returned."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    records: list[RawRecord] = []
    offset = 0
    pages = 0
    while True:
        page = await source.fetch_page(resource_id, page_size, offset)
        pages += 1
        records.extend(page)
        logger.debug("page_fetched", resource_id=resource_id, offset=offset, rows=len(page))
        if len(page) < page_size:
            break
        offset += page_size
        if page_delay > 0:
            await asyncio.sleep(page_delay)
    logger.info("resource_drained", resource_id=resource_id, pages=pages, records=len(records))
    return records


class StaticSource:
    """Serves pre-loaded rows per resource id, sliced into pages."""

    def __init__(self, rows_by_resource: dict[str, list[RawRecord]]):
        self.rows_by_resource = rows_by_resource

    async def fetch_page(self, resource_id: str, limit: int, offset: int) -> list[RawRecord]:
        rows = self.rows_by_resource.get(resource_id, [])
        return [dict(row) for row in rows[offset:offset + limit]]


__all__ = ["RawRecord", "Source", "StaticSource", "drain"]
