"""
Wikidata knowledge-base source.

For each in-scope INE code, finds the Wikidata item through the SPARQL
endpoint (property P772, INE municipality code) and fetches its claims
with ``wbgetentities``. Requests for consecutive municipalities are spaced
by ``delay`` seconds to respect the public endpoints' rate limits.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from typing import Any

import httpx

from municipal_spine.core.errors import SourceError
from municipal_spine.core.logging import get_logger
from municipal_spine.sources.base import RawRecord
from municipal_spine.sources.ckan import USER_AGENT

logger = get_logger(__name__)

SPARQL_ENDPOINT = "https://query.wikidata.org/sparql"
API_ENDPOINT = "https://www.wikidata.org/w/api.php"

SQUARE_KILOMETRE = "Q712226"
_QID = re.compile(r"/(Q\d+)$")
_WIKIDATA_DATE = re.compile(r"\+(\d{4})-(\d{2})-(\d{2})")


def _claim_value(claims: dict[str, Any], prop: str) -> Any:
    values = claims.get(prop) or []
    if not values:
        return None
    snak = values[0].get("mainsnak") or {}
    if snak.get("snaktype") != "value" or not snak.get("datavalue"):
        return None
    return snak["datavalue"].get("value")


def extract_quantity(claims: dict[str, Any], prop: str) -> float | None:
    value = _claim_value(claims, prop)
    if not isinstance(value, dict) or "amount" not in value:
        return None
    try:
        amount = float(str(value["amount"]).lstrip("+"))
    except ValueError:
        return None
    return amount


def extract_area_km2(claims: dict[str, Any]) -> float | None:
    """Surface area (P2046) in km²; m² values are converted."""
    amount = extract_quantity(claims, "P2046")
    if amount is None or amount <= 0:
        return None
    unit = str((_claim_value(claims, "P2046") or {}).get("unit", ""))
    if SQUARE_KILOMETRE not in unit and amount >= 1000:
        amount = amount / 1_000_000
    return round(amount, 2)


def extract_coordinates(claims: dict[str, Any]) -> tuple[float, float] | None:
    value = _claim_value(claims, "P625")
    if not isinstance(value, dict):
        return None
    lat, lon = value.get("latitude"), value.get("longitude")
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return None
    return float(lat), float(lon)


def extract_string(claims: dict[str, Any], prop: str) -> str | None:
    value = _claim_value(claims, prop)
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and "text" in value:
        return str(value["text"])
    return None


def extract_date(claims: dict[str, Any], prop: str) -> str | None:
    """Complete dates only; year-only values (``+1496-00-00``) are None."""
    value = _claim_value(claims, prop)
    if not isinstance(value, dict) or not value.get("time"):
        return None
    match = _WIKIDATA_DATE.search(value["time"])
    if not match:
        return None
    year, month, day = (int(g) for g in match.groups())
    if month == 0 or day == 0 or month > 12 or day > 31 or not 1000 <= year <= 2100:
        return None
    return f"{year:04d}-{month:02d}-{day:02d}"


def extract_image_url(claims: dict[str, Any], prop: str = "P18") -> str | None:
    value = extract_string(claims, prop)
    if not value:
        return None
    filename = value[5:] if value.startswith("File:") else value
    return f"https://commons.wikimedia.org/wiki/Special:FilePath/{filename.replace(' ', '_')}"


def entity_to_record(ine_code: str, qid: str, entity: dict[str, Any]) -> RawRecord:
    """Flatten a Wikidata entity into a raw record."""
    claims = entity.get("claims") or {}
    labels = entity.get("labels") or {}
    descriptions = entity.get("descriptions") or {}
    coords = extract_coordinates(claims)
    postal = extract_string(claims, "P281")
    population = extract_quantity(claims, "P1082")
    return {
        "ine_code": ine_code,
        "wikidata_id": qid,
        "label": (labels.get("es") or labels.get("en") or {}).get("value"),
        "description": (descriptions.get("es") or descriptions.get("en") or {}).get("value"),
        "latitude": coords[0] if coords else None,
        "longitude": coords[1] if coords else None,
        "surface_area_km2": extract_area_km2(claims),
        "altitude_m": extract_quantity(claims, "P2044"),
        "population": int(population) if population is not None else None,
        "postal_code": postal[:50] if postal else None,
        "official_website": extract_string(claims, "P856"),
        "image_url": extract_image_url(claims),
        "inception_date": extract_date(claims, "P571"),
    }


class WikidataSource:
    """Builds one record per allowed INE code, then serves them as pages."""

    def __init__(
        self,
        codes: Iterable[str],
        *,
        client: httpx.AsyncClient | None = None,
        delay: float = 1.0,
        timeout: float = 30.0,
    ):
        self.codes = sorted(codes)
        self._client = client
        self._owns_client = client is None
        self.delay = delay
        self.timeout = timeout
        self._records: list[RawRecord] | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
        return self._client

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._get_client().get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise SourceError(f"Wikidata request failed: {e.response.status_code}", cause=e).with_context(
                url=url, http_status=e.response.status_code
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SourceError(f"Wikidata request failed: {e}", cause=e).with_context(url=url) from e

    async def find_qid(self, ine_code: str) -> str | None:
        query = f'SELECT ?item WHERE {{ ?item wdt:P772 "{ine_code}" . }} LIMIT 1'
        data = await self._get_json(SPARQL_ENDPOINT, {"query": query, "format": "json"})
        bindings = (data.get("results") or {}).get("bindings") or []
        if not bindings:
            return None
        match = _QID.search((bindings[0].get("item") or {}).get("value", ""))
        return match.group(1) if match else None

    async def fetch_entity(self, qid: str) -> dict[str, Any] | None:
        data = await self._get_json(
            API_ENDPOINT,
            {
                "action": "wbgetentities",
                "ids": qid,
                "format": "json",
                "props": "claims|labels|descriptions",
            },
        )
        return (data.get("entities") or {}).get(qid)

    async def records(self) -> list[RawRecord]:
        if self._records is not None:
            return self._records
        records: list[RawRecord] = []
        for position, code in enumerate(self.codes):
            if position and self.delay > 0:
                await asyncio.sleep(self.delay)
            qid = await self.find_qid(code)
            if qid is None:
                logger.warning("wikidata_item_not_found", ine_code=code)
                continue
            entity = await self.fetch_entity(qid)
            if not entity:
                logger.warning("wikidata_entity_missing", ine_code=code, wikidata_id=qid)
                continue
            records.append(entity_to_record(code, qid, entity))
        self._records = records
        return records

    async def fetch_page(self, resource_id: str, limit: int, offset: int) -> list[RawRecord]:
        records = await self.records()
        return [dict(r) for r in records[offset:offset + limit]]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None


__all__ = [
    "API_ENDPOINT",
    "SPARQL_ENDPOINT",
    "WikidataSource",
    "entity_to_record",
    "extract_area_km2",
    "extract_coordinates",
    "extract_date",
    "extract_quantity",
]
