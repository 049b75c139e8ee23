"""
Catalog enrichment models.

CatalogKey identifies one frame variant in a vendor catalog. CatalogEntry is
the cached measurement/pricing record for that key. EnrichmentMiss and
EnrichmentTimeout are returned (not raised) by the enrichment client when a
lookup does not produce an entry.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel

from app.models.order import RawLineItem

_WS = re.compile(r"\s+")


def _norm(value: Optional[str]) -> str:
    return _WS.sub(" ", (value or "").strip()).casefold()


@dataclass(frozen=True)
class CatalogKey:
    vendor: str
    brand: str
    model: str
    color: str
    size: str = ""

    @classmethod
    def build(cls, vendor: str, brand: str, model: str, color: str, size: str = "") -> "CatalogKey":
        return cls(
            vendor=_norm(vendor),
            brand=_norm(brand),
            model=_norm(model),
            color=_norm(color),
            size=_norm(size),
        )

    def as_string(self) -> str:
        return "|".join((self.vendor, self.brand, self.model, self.color, self.size))


class CatalogEntry(BaseModel):
    """One row of the vendor_catalog table."""
    model_config = {"extra": "ignore"}

    cache_key: str
    vendor: str
    brand: str
    model: str
    color: str
    size: str = ""
    eye_size: Optional[str] = None
    bridge: Optional[str] = None
    temple: Optional[str] = None
    full_size: Optional[str] = None
    a: Optional[str] = None
    b: Optional[str] = None
    dbl: Optional[str] = None
    ed: Optional[str] = None
    upc: Optional[str] = None
    wholesale_price: Optional[float] = None
    confidence: int = 0
    source: Optional[str] = None
    fetched_at: Optional[str] = None


@dataclass
class EnrichmentMiss:
    """No usable catalog data for this key. `reason` is a short machine code."""
    reason: str
    key: Optional[CatalogKey] = None
    detail: Optional[str] = None


@dataclass
class EnrichmentTimeout(EnrichmentMiss):
    reason: str = "timeout"


EnrichmentResult = Union[CatalogEntry, EnrichmentMiss]


class EnrichedLineItem(BaseModel):
    """A parsed line item paired with the outcome of its catalog lookup."""
    item: RawLineItem
    entry: Optional[CatalogEntry] = None
    miss_reason: Optional[str] = None

    @property
    def enriched(self) -> bool:
        return self.entry is not None
