"""
CatalogEnrichmentClient: fills in measurements, UPC and wholesale price for
parsed line items from the vendor's catalog API.

Every lookup goes through VendorCatalogCache (cache-first, single-flight).
Only the HTTP call itself holds a slot of the concurrency semaphore, so cache
hits and coalesced waiters never consume capacity.

Nothing here raises for a failed lookup: each item independently resolves to
a CatalogEntry or an EnrichmentMiss / EnrichmentTimeout, and the caller keeps
the vendor-reported fields for misses.

Catalog sources (Vendor.catalog.kind):
  json    GET {url}?brand=&model=&color=&size=
          -> {"variants": [{"color_code", "color_name", "eye_size", "bridge",
                            "temple", "a", "b", "dbl", "ed", "upc",
                            "wholesale_price"}, ...]}
  safilo  POST {url} {"search": "<model>", ...filters}
          -> [{"collectionName", "styleCode",
               "colorGroup": [{"color", "colorName", "sizes": [...]}]}]

Environment variables
---------------------
CATALOG_MAX_CONCURRENCY   Max simultaneous catalog HTTP calls (default: 5).
CATALOG_ITEM_TIMEOUT      Seconds allowed per item lookup (default: 8).
CATALOG_HTTP_TIMEOUT      httpx timeout per request (default: 5).
CATALOG_MAX_RETRIES       Retries for transport errors and 5xx (default: 2).
CATALOG_MIN_CONFIDENCE    Lowest variant score accepted (default: 50).
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from app.models.catalog import (
    CatalogEntry,
    CatalogKey,
    EnrichedLineItem,
    EnrichmentMiss,
    EnrichmentResult,
    EnrichmentTimeout,
)
from app.models.order import RawLineItem
from app.models.vendor import Vendor
from app.services.catalog_cache import VendorCatalogCache, get_catalog_cache
from app.services.parsers.base import normalize_size
from app.services.vendor_registry import get_vendor

logger = logging.getLogger(__name__)

SCORE_COLOR_AND_SIZE = 100
SCORE_COLOR_ONLY = 80
SCORE_SIZE_ONLY = 50


@dataclass
class CatalogQuery:
    """The vendor-reported fields of one item, as sent to the catalog."""
    brand: str
    model: str
    color: str
    size: str = ""
    color_code: Optional[str] = None


# ---------------------------------------------------------------------------
# Catalog sources
# ---------------------------------------------------------------------------

class CatalogSource(ABC):
    """One vendor catalog API. Subclasses build the request and flatten the response."""

    kind = ""

    def __init__(self, url: str):
        self.url = url

    @abstractmethod
    def build_request(self, query: CatalogQuery) -> httpx.Request:
        ...

    @abstractmethod
    def variants(self, payload: Any) -> list[dict]:
        """
        Flatten a response body into variant dicts with the CatalogEntry
        measurement keys plus color_code / color_name.

        Raises ValueError for a body that does not have the expected shape.
        """


class JsonCatalogSource(CatalogSource):
    kind = "json"

    def build_request(self, query: CatalogQuery) -> httpx.Request:
        params = {"brand": query.brand, "model": query.model, "color": query.color}
        if query.size:
            params["size"] = query.size
        return httpx.Request("GET", self.url, params=params)

    def variants(self, payload: Any) -> list[dict]:
        if not isinstance(payload, dict) or not isinstance(payload.get("variants"), list):
            raise ValueError("expected an object with a 'variants' list")
        out = []
        for v in payload["variants"]:
            if not isinstance(v, dict):
                raise ValueError("variant is not an object")
            out.append({**v, "color_name": v.get("color_name") or v.get("color")})
        return out


class SafiloCatalogSource(CatalogSource):
    kind = "safilo"

    _FILTERS = {
        "Collections": [], "ColorFamily": [], "Shapes": [], "FrameTypes": [],
        "Genders": [], "FrameMaterials": [], "FrontMaterials": [], "HingeTypes": [],
        "RimTypes": [], "TempleMaterials": [], "LensMaterials": [],
        "NewStyles": False, "BestSellers": False, "RxAvailable": False,
        "InStock": False, "Readers": False,
    }

    def build_request(self, query: CatalogQuery) -> httpx.Request:
        body = {**self._FILTERS, "search": query.model}
        return httpx.Request("POST", self.url, json=body, headers={"Accept": "application/json"})

    def variants(self, payload: Any) -> list[dict]:
        if not isinstance(payload, list):
            raise ValueError("expected a list of products")
        out = []
        for product in payload[:1]:
            for group in product.get("colorGroup") or []:
                for size in group.get("sizes") or []:
                    price = size.get("wholesale") or size.get("price")
                    out.append({
                        "color_code": group.get("color"),
                        "color_name": group.get("colorName"),
                        "eye_size": _str(size.get("eyeSize") or size.get("a")),
                        "bridge": _str(size.get("bridge") or size.get("dbl")),
                        "temple": _str(size.get("temple")),
                        "a": _str(size.get("a")),
                        "b": _str(size.get("b")),
                        "dbl": _str(size.get("dbl")),
                        "ed": _str(size.get("ed")),
                        "upc": _str(size.get("upc")),
                        "wholesale_price": float(price) if price not in (None, "") else None,
                    })
        return out


_SOURCES: dict[str, type[CatalogSource]] = {
    JsonCatalogSource.kind: JsonCatalogSource,
    SafiloCatalogSource.kind: SafiloCatalogSource,
}


def _str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def source_for(vendor: Vendor) -> Optional[CatalogSource]:
    """The catalog source configured for vendor, or None when enrichment is off."""
    if not vendor.enrichment_required or vendor.catalog is None or not vendor.catalog.url:
        return None
    source_cls = _SOURCES.get(vendor.catalog.kind)
    if source_cls is None:
        logger.warning(f"Unknown catalog kind {vendor.catalog.kind!r} for vendor {vendor.code}")
        return None
    return source_cls(vendor.catalog.url)


# ---------------------------------------------------------------------------
# Variant selection
# ---------------------------------------------------------------------------

def _same(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and " ".join(str(a).split()).casefold() == " ".join(str(b).split()).casefold()


def score_variant(variant: dict, query: CatalogQuery) -> int:
    """Color and size -> 100, color only -> 80, size only -> 50, neither -> 0."""
    color_hit = (
        _same(variant.get("color_code"), query.color_code)
        or _same(variant.get("color_code"), query.color)
        or _same(variant.get("color_name"), query.color)
    )
    eye_size = normalize_size(query.size).eye_size
    size_hit = bool(eye_size) and _same(variant.get("eye_size"), eye_size)

    if color_hit and size_hit:
        return SCORE_COLOR_AND_SIZE
    if color_hit:
        return SCORE_COLOR_ONLY
    if size_hit:
        return SCORE_SIZE_ONLY
    return 0


def select_variant(variants: list[dict], query: CatalogQuery) -> tuple[Optional[dict], int]:
    best, best_score = None, 0
    for variant in variants:
        score = score_variant(variant, query)
        if score > best_score:
            best, best_score = variant, score
    return best, best_score


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class CatalogEnrichmentClient:
    def __init__(
        self,
        cache: VendorCatalogCache,
        http_client: Optional[httpx.AsyncClient] = None,
        max_concurrency: Optional[int] = None,
        item_timeout: Optional[float] = None,
        http_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        min_confidence: Optional[int] = None,
        retry_backoff: float = 0.5,
    ):
        self.cache = cache
        self.max_concurrency = max_concurrency or int(os.getenv("CATALOG_MAX_CONCURRENCY", "5"))
        self.item_timeout = item_timeout or float(os.getenv("CATALOG_ITEM_TIMEOUT", "8"))
        self.max_retries = max_retries if max_retries is not None else int(os.getenv("CATALOG_MAX_RETRIES", "2"))
        self.min_confidence = (
            min_confidence if min_confidence is not None else int(os.getenv("CATALOG_MIN_CONFIDENCE", "50"))
        )
        self.retry_backoff = retry_backoff
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=http_timeout or float(os.getenv("CATALOG_HTTP_TIMEOUT", "5"))
        )
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "CatalogEnrichmentClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def enrich(
        self,
        vendor: Union[Vendor, str],
        brand: str,
        model: str,
        color: str,
        size: str = "",
        color_code: Optional[str] = None,
    ) -> EnrichmentResult:
        """
        Look up one frame variant. Always returns; never raises.

        Returns CatalogEntry on success, EnrichmentTimeout when the item
        exceeds CATALOG_ITEM_TIMEOUT, EnrichmentMiss otherwise.
        """
        if isinstance(vendor, str):
            resolved = get_vendor(vendor)
            if resolved is None:
                return EnrichmentMiss("unknown_vendor", detail=vendor)
            vendor = resolved

        key = CatalogKey.build(vendor.code, brand, model, color, normalize_size(size).key)
        source = source_for(vendor)
        if source is None:
            return EnrichmentMiss("enrichment_not_configured", key)

        query = CatalogQuery(brand=brand, model=model, color=color, size=size, color_code=color_code)
        try:
            return await asyncio.wait_for(
                self.cache.get_or_fetch(key, lambda: self._fetch(source, key, query)),
                timeout=self.item_timeout,
            )
        except asyncio.TimeoutError:
            logger.info(f"Catalog lookup timed out after {self.item_timeout}s: {key.as_string()}")
            return EnrichmentTimeout(key=key)
        except Exception as e:
            logger.error(f"Catalog lookup failed for {key.as_string()}: {e}")
            return EnrichmentMiss("error", key, str(e))

    async def enrich_item(self, vendor: Union[Vendor, str], item: RawLineItem) -> EnrichmentResult:
        return await self.enrich(
            vendor, item.brand, item.model, item.color, item.size.key, color_code=item.color_code
        )

    async def enrich_many(
        self,
        vendor: Union[Vendor, str],
        items: list[RawLineItem],
        deadline: Optional[float] = None,
    ) -> list[EnrichedLineItem]:
        """
        Enrich every item concurrently and return results in input order.

        With a deadline (seconds), items still running when it expires are
        cancelled and reported as timeouts; shared fetches keep running and
        fill the cache for later emails.
        """
        if not items:
            return []

        tasks = [asyncio.ensure_future(self.enrich_item(vendor, item)) for item in items]
        if deadline is not None:
            done, pending = await asyncio.wait(tasks, timeout=deadline)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(
                    f"Enrichment deadline of {deadline}s hit; {len(pending)} of {len(items)} items timed out"
                )
                await asyncio.gather(*pending, return_exceptions=True)
        else:
            await asyncio.wait(tasks)

        results = []
        for item, task in zip(items, tasks):
            if task.cancelled():
                outcome: EnrichmentResult = EnrichmentTimeout(detail="email deadline")
            else:
                outcome = task.result()
            if isinstance(outcome, CatalogEntry):
                results.append(EnrichedLineItem(item=item, entry=outcome))
            else:
                results.append(EnrichedLineItem(item=item, miss_reason=outcome.reason))
        return results

    async def _fetch(self, source: CatalogSource, key: CatalogKey, query: CatalogQuery) -> EnrichmentResult:
        try:
            async with self._semaphore:
                payload = await self._request(source.build_request(query))
        except httpx.HTTPStatusError as e:
            logger.info(f"Catalog returned {e.response.status_code} for {key.as_string()}")
            return EnrichmentMiss(f"http_{e.response.status_code}", key)
        except httpx.TransportError as e:
            logger.info(f"Catalog unreachable for {key.as_string()}: {e}")
            return EnrichmentMiss("transport_error", key, str(e))
        except ValueError as e:
            return EnrichmentMiss("malformed_response", key, str(e))
        except Exception as e:
            # Runs as a shared task; nobody may be awaiting it to see the error.
            logger.error(f"Catalog fetch failed for {key.as_string()}: {e}")
            return EnrichmentMiss("error", key, str(e))

        try:
            variants = source.variants(payload)
        except (ValueError, TypeError, AttributeError) as e:
            logger.info(f"Malformed catalog response for {key.as_string()}: {e}")
            return EnrichmentMiss("malformed_response", key, str(e))

        best, score = select_variant(variants, query)
        if best is None or score < self.min_confidence:
            logger.debug(f"No catalog variant matched {key.as_string()} (best score {score})")
            return EnrichmentMiss("no_matching_variant", key)

        full_size = "-".join(p for p in (best.get("eye_size"), best.get("bridge"), best.get("temple")) if p)
        return CatalogEntry(
            cache_key=key.as_string(),
            vendor=key.vendor,
            brand=key.brand,
            model=key.model,
            color=key.color,
            size=key.size,
            eye_size=_str(best.get("eye_size")),
            bridge=_str(best.get("bridge")),
            temple=_str(best.get("temple")),
            full_size=full_size or None,
            a=_str(best.get("a")),
            b=_str(best.get("b")),
            dbl=_str(best.get("dbl")),
            ed=_str(best.get("ed")),
            upc=_str(best.get("upc")),
            wholesale_price=best.get("wholesale_price"),
            confidence=score,
            source=source.kind,
        )

    async def _request(self, request: httpx.Request) -> Any:
        """
        Send request, retrying transport errors and 5xx with linear backoff.

        Raises httpx.HTTPStatusError (4xx, or 5xx after retries),
        httpx.TransportError after retries, or ValueError for a non-JSON body.
        """
        attempt = 0
        while True:
            try:
                response = await self._http.send(request)
            except httpx.TransportError:
                if attempt >= self.max_retries:
                    raise
            else:
                if response.status_code < 500 or attempt >= self.max_retries:
                    response.raise_for_status()
                    return response.json()
                logger.info(f"Catalog {response.status_code}, retrying ({attempt + 1}/{self.max_retries})")
            attempt += 1
            await asyncio.sleep(self.retry_backoff * attempt)


_client: Optional[CatalogEnrichmentClient] = None


def get_catalog_client() -> CatalogEnrichmentClient:
    """
    Process-wide enrichment client over get_catalog_cache().

    Shared fetches outlive the email that started them, so the HTTP client
    stays open until close_catalog_client() runs at app shutdown.
    """
    global _client
    if _client is None:
        _client = CatalogEnrichmentClient(get_catalog_cache())
    return _client


async def close_catalog_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
