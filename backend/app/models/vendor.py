"""
Pydantic models for vendor configuration and detection results.
"""

from typing import Optional
from pydantic import BaseModel, Field

UNKNOWN_VENDOR = "unknown"


class CatalogSourceConfig(BaseModel):
    """Where (and how) to look up a vendor's product catalog."""
    kind: str = "json"          # "json" | "safilo"
    url: Optional[str] = None


class Vendor(BaseModel):
    """
    A frame distributor whose order emails we ingest.

    Detection signals are grouped in three tiers, strongest first:
      domains           sender domain patterns (tier 1)
      body_signatures   unique company strings in the body (tier 2)
      subject_keywords  weak subject/body keywords; at least
      body_keywords     `required_matches` of them must hit (tier 3)
    """
    model_config = {"extra": "ignore"}

    code: str
    name: str
    parser_key: str
    domains: list[str] = []
    body_signatures: list[str] = []
    subject_keywords: list[str] = []
    body_keywords: list[str] = []
    domain_weight: int = 95
    signature_weight: int = 85
    keyword_weight: int = 60
    required_matches: int = 2
    enrichment_required: bool = False
    catalog: Optional[CatalogSourceConfig] = None
    default_brand: Optional[str] = None


class DetectionResult(BaseModel):
    vendor: str = UNKNOWN_VENDOR
    vendor_name: Optional[str] = None
    confidence: int = 0
    method: Optional[str] = None        # "domain" | "body_signature" | "keywords"
    effective_sender: Optional[str] = None
    signals: dict = Field(default_factory=dict)

    @property
    def is_unknown(self) -> bool:
        return self.vendor == UNKNOWN_VENDOR
