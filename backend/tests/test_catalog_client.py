"""
CatalogEnrichmentClient tests.

The catalog API is replaced with httpx.MockTransport so each test controls
status codes, latency and response bodies.
"""

import asyncio
import json
import os

import httpx
import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoiYW5vbiJ9.test")

from app.models.catalog import CatalogEntry, CatalogKey, EnrichmentMiss, EnrichmentTimeout
from app.models.order import RawLineItem
from app.models.vendor import CatalogSourceConfig, Vendor
from app.services.catalog_cache import VendorCatalogCache
from app.services.catalog_client import (
    CatalogEnrichmentClient,
    CatalogQuery,
    SafiloCatalogSource,
    score_variant,
    select_variant,
)
from app.services.parsers.base import normalize_size


CATALOG_URL = "https://catalog.test/frames"

VENDOR = Vendor(
    code="modern_optical",
    name="Modern Optical",
    parser_key="jiecosystem",
    enrichment_required=True,
    catalog=CatalogSourceConfig(kind="json", url=CATALOG_URL),
)

BLACK_52 = {
    "color_code": "BLK",
    "color_name": "Black",
    "eye_size": "52",
    "bridge": "18",
    "temple": "140",
    "a": "52",
    "b": "40",
    "dbl": "18",
    "ed": "56",
    "upc": "715317146401",
    "wholesale_price": 45.0,
}


def _ok(*variants):
    return httpx.Response(200, json={"variants": list(variants)})


def _client(handler, cache=None, **kwargs) -> CatalogEnrichmentClient:
    kwargs.setdefault("retry_backoff", 0)
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CatalogEnrichmentClient(cache or VendorCatalogCache(), http_client=http, **kwargs)


def _item(model="MT100", color="Black", size="52/18/140") -> RawLineItem:
    return RawLineItem(brand="Modern Times", model=model, color=color, size=normalize_size(size), quantity=1)


class TestVariantScoring:
    def test_color_and_size(self):
        query = CatalogQuery(brand="Modern Times", model="MT100", color="Black", size="52-18-140")
        assert score_variant(BLACK_52, query) == 100

    def test_color_only(self):
        query = CatalogQuery(brand="Modern Times", model="MT100", color="black", size="54")
        assert score_variant(BLACK_52, query) == 80

    def test_color_code_matches(self):
        query = CatalogQuery(brand="x", model="MT100", color="Jet", color_code="blk")
        assert score_variant(BLACK_52, query) == 80

    def test_size_only(self):
        query = CatalogQuery(brand="x", model="MT100", color="Red", size="52")
        assert score_variant(BLACK_52, query) == 50

    def test_neither(self):
        query = CatalogQuery(brand="x", model="MT100", color="Red", size="60")
        assert score_variant(BLACK_52, query) == 0

    def test_select_prefers_highest_score(self):
        other_size = {**BLACK_52, "eye_size": "54", "upc": "other"}
        query = CatalogQuery(brand="x", model="MT100", color="Black", size="52")
        best, score = select_variant([other_size, BLACK_52], query)
        assert best["upc"] == "715317146401"
        assert score == 100


class TestSafiloSource:
    def test_request_is_post_with_search(self):
        source = SafiloCatalogSource("https://safilo.test/api")
        request = source.build_request(CatalogQuery(brand="Carrera", model="8869", color="807"))
        assert request.method == "POST"
        body = json.loads(request.content)
        assert body["search"] == "8869"
        assert body["InStock"] is False

    def test_variants_flatten_color_groups(self):
        payload = [{
            "collectionName": "CARRERA",
            "styleCode": "8869",
            "colorGroup": [{
                "color": "807",
                "colorName": "BLACK",
                "sizes": [{"eyeSize": 54.0, "bridge": 18, "temple": 145, "upc": "7162", "wholesale": "89.5"}],
            }],
        }]
        variants = SafiloCatalogSource("u").variants(payload)
        assert variants == [{
            "color_code": "807",
            "color_name": "BLACK",
            "eye_size": "54",
            "bridge": "18",
            "temple": "145",
            "a": None,
            "b": None,
            "dbl": None,
            "ed": None,
            "upc": "7162",
            "wholesale_price": 89.5,
        }]

    def test_non_list_is_malformed(self):
        with pytest.raises(ValueError):
            SafiloCatalogSource("u").variants({"error": "nope"})


class TestEnrich:
    @pytest.mark.asyncio
    async def test_successful_lookup(self):
        seen = []

        def handler(request):
            seen.append(request)
            return _ok(BLACK_52)

        client = _client(handler)
        entry = await client.enrich(VENDOR, "Modern Times", "MT100", "Black", "52-18-140")

        assert isinstance(entry, CatalogEntry)
        assert entry.full_size == "52-18-140"
        assert entry.upc == "715317146401"
        assert entry.wholesale_price == 45.0
        assert entry.confidence == 100
        assert entry.source == "json"
        assert seen[0].url.params["model"] == "MT100"
        assert seen[0].url.params["size"] == "52-18-140"

    @pytest.mark.asyncio
    async def test_second_lookup_is_served_from_cache(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return _ok(BLACK_52)

        client = _client(handler)
        await client.enrich(VENDOR, "Modern Times", "MT100", "Black", "52-18-140")
        again = await client.enrich(VENDOR, "MODERN TIMES", "mt100", "black", "52-18-140")

        assert calls == 1
        assert again.upc == "715317146401"

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(404, json={"error": "not found"})

        result = await _client(handler).enrich(VENDOR, "Modern Times", "MT100", "Black")

        assert isinstance(result, EnrichmentMiss)
        assert result.reason == "http_404"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        responses = [httpx.Response(503), httpx.Response(502), _ok(BLACK_52)]

        def handler(request):
            return responses.pop(0)

        result = await _client(handler, max_retries=2).enrich(VENDOR, "Modern Times", "MT100", "Black", "52")

        assert isinstance(result, CatalogEntry)
        assert responses == []

    @pytest.mark.asyncio
    async def test_server_error_after_retries(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        result = await _client(handler, max_retries=2).enrich(VENDOR, "Modern Times", "MT100", "Black")

        assert result.reason == "http_500"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_transport_error(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        result = await _client(handler, max_retries=1).enrich(VENDOR, "Modern Times", "MT100", "Black")

        assert result.reason == "transport_error"
        assert "connection refused" in result.detail
        assert calls == 2

    @pytest.mark.asyncio
    async def test_unexpected_body_shape(self):
        result = await _client(lambda r: httpx.Response(200, json={"items": []})).enrich(
            VENDOR, "Modern Times", "MT100", "Black"
        )
        assert result.reason == "malformed_response"

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        result = await _client(lambda r: httpx.Response(200, text="<html>maintenance</html>")).enrich(
            VENDOR, "Modern Times", "MT100", "Black"
        )
        assert result.reason == "malformed_response"

    @pytest.mark.asyncio
    async def test_no_matching_variant(self):
        red_60 = {**BLACK_52, "color_code": "RED", "color_name": "Red", "eye_size": "60"}
        result = await _client(lambda r: _ok(red_60)).enrich(VENDOR, "Modern Times", "MT100", "Black", "52")
        assert result.reason == "no_matching_variant"

    @pytest.mark.asyncio
    async def test_min_confidence_rejects_weak_match(self):
        red_52 = {**BLACK_52, "color_code": "RED", "color_name": "Red"}
        client = _client(lambda r: _ok(red_52), min_confidence=80)
        result = await client.enrich(VENDOR, "Modern Times", "MT100", "Black", "52")
        assert result.reason == "no_matching_variant"

    @pytest.mark.asyncio
    async def test_misses_are_retried_on_next_lookup(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(404)

        client = _client(handler)
        await client.enrich(VENDOR, "Modern Times", "MT100", "Black")
        await client.enrich(VENDOR, "Modern Times", "MT100", "Black")
        assert calls == 2

    @pytest.mark.asyncio
    async def test_item_timeout(self):
        async def handler(request):
            await asyncio.sleep(0.5)
            return _ok(BLACK_52)

        cache = VendorCatalogCache()
        result = await _client(handler, cache=cache, item_timeout=0.05).enrich(
            VENDOR, "Modern Times", "MT100", "Black", "52"
        )

        assert isinstance(result, EnrichmentTimeout)
        assert result.reason == "timeout"

        # the shared fetch keeps running and fills the cache
        await asyncio.sleep(0.6)
        assert cache.get(CatalogKey.build("modern_optical", "Modern Times", "MT100", "Black", "52")) is not None

    @pytest.mark.asyncio
    async def test_unknown_vendor_code(self):
        result = await _client(lambda r: _ok()).enrich("no_such_vendor", "b", "m", "c")
        assert result.reason == "unknown_vendor"
        assert result.detail == "no_such_vendor"

    @pytest.mark.asyncio
    async def test_vendor_without_catalog(self):
        def handler(request):
            raise AssertionError("no HTTP call expected")

        result = await _client(handler).enrich("luxottica", "Burberry", "0BE2345", "3001")
        assert result.reason == "enrichment_not_configured"

    @pytest.mark.asyncio
    async def test_vendor_code_resolved_through_registry(self, monkeypatch):
        from app.services import vendor_registry

        monkeypatch.setenv("MODERN_OPTICAL_CATALOG_URL", CATALOG_URL)
        vendor_registry.reset_registry()

        result = await _client(lambda r: _ok(BLACK_52)).enrich("modern_optical", "Modern Times", "MT100", "Black")
        assert isinstance(result, CatalogEntry)
        assert result.confidence == 80


class TestEnrichMany:
    @pytest.mark.asyncio
    async def test_results_keep_input_order(self):
        def handler(request):
            model = request.url.params["model"]
            if model == "MISSING":
                return httpx.Response(404)
            return _ok({**BLACK_52, "upc": f"upc-{model}"})

        items = [_item("A1"), _item("MISSING"), _item("B2")]
        results = await _client(handler).enrich_many(VENDOR, items)

        assert [r.item.model for r in results] == ["A1", "MISSING", "B2"]
        assert results[0].entry.upc == "upc-A1"
        assert results[1].entry is None
        assert results[1].miss_reason == "http_404"
        assert results[2].enriched

    @pytest.mark.asyncio
    async def test_empty_list(self):
        assert await _client(lambda r: _ok()).enrich_many(VENDOR, []) == []

    @pytest.mark.asyncio
    async def test_identical_items_share_one_request(self):
        calls = 0

        async def handler(request):
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return _ok(BLACK_52)

        results = await _client(handler).enrich_many(VENDOR, [_item() for _ in range(5)])

        assert calls == 1
        assert all(r.enriched for r in results)

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        active = 0
        peak = 0

        async def handler(request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return _ok(BLACK_52)

        items = [_item(f"M{i}") for i in range(6)]
        results = await _client(handler, max_concurrency=2).enrich_many(VENDOR, items)

        assert peak == 2
        assert all(r.enriched for r in results)

    @pytest.mark.asyncio
    async def test_deadline_times_out_slow_items_only(self):
        async def handler(request):
            if request.url.params["model"] == "SLOW":
                await asyncio.sleep(0.3)
            return _ok(BLACK_52)

        cache = VendorCatalogCache()
        client = _client(handler, cache=cache, item_timeout=5)
        items = [_item("FAST1"), _item("SLOW"), _item("FAST2")]

        results = await client.enrich_many(VENDOR, items, deadline=0.1)

        assert results[0].enriched
        assert results[1].miss_reason == "timeout"
        assert results[2].enriched

        await asyncio.sleep(0.4)
        assert cache.get(CatalogKey.build("modern_optical", "Modern Times", "SLOW", "Black", "52-18-140"))
        assert cache.inflight_count == 0
