"""
Vendor registry.

Every vendor difference the pipeline cares about (detection signals, which
parser reads its emails, whether and where its catalog is looked up) lives
in this table. Code elsewhere dispatches on a Vendor record, never on a
vendor name.

Adding a new vendor:
  1. Add an entry to _DEFAULT_VENDORS (code must be unique, lowercase).
  2. Point parser_key at an existing parser or register a new one in
     app/services/parsers/__init__.py.
  3. Optionally set <CODE>_CATALOG_URL to enable catalog enrichment.

Environment variables
---------------------
VENDOR_REGISTRY_PATH   Optional JSON file (list of vendor objects) that
                       replaces the built-in table.
<CODE>_CATALOG_URL     Overrides catalog.url for one vendor, e.g.
                       SAFILO_CATALOG_URL, MODERN_OPTICAL_CATALOG_URL.
"""

import json
import logging
import os
from typing import Optional

from app.models.vendor import CatalogSourceConfig, Vendor

logger = logging.getLogger(__name__)

# Order matters: detection walks the list top to bottom and the first domain
# match wins.
_DEFAULT_VENDORS: list[dict] = [
    {
        "code": "safilo",
        "name": "Safilo",
        "parser_key": "safilo",
        "domains": ["safilo.com", "mysafilo.com"],
        "body_signatures": ["safilo usa, inc", "safilo usa inc", "mysafilo.com"],
        "subject_keywords": ["safilo", "mysafilo"],
        "body_keywords": ["safilo", "order has been received"],
        "enrichment_required": True,
        "catalog": {"kind": "safilo", "url": "https://www.mysafilo.com/US/api/CatalogAPI/filter"},
    },
    {
        "code": "luxottica",
        "name": "Luxottica",
        "parser_key": "luxottica",
        "domains": ["luxottica.com"],
        "body_signatures": ["my.luxottica.com", "luxottica group"],
        "subject_keywords": ["luxottica", "cart number", "order confirmation"],
        "body_keywords": ["luxottica", "customer code", "agent reference", "cart number"],
        "enrichment_required": False,
    },
    {
        "code": "ideal_optics",
        "name": "Ideal Optics",
        "parser_key": "ideal_optics",
        "domains": ["i-dealoptics.com", "idealoptics.com"],
        "body_signatures": ["i-deal optics", "i-dealoptics.com", "i-deal-optics-logo-mail.png"],
        "subject_keywords": ["ideal optics", "i-deal", "order confirmation"],
        "body_keywords": ["ideal optics", "web order #", "style name"],
        "enrichment_required": True,
        "default_brand": "Ideal Optics",
    },
    {
        "code": "lamy_america",
        "name": "L'Amy America",
        "parser_key": "jiecosystem",
        "domains": ["lamyamerica.com", "lamy-america.com"],
        "body_signatures": ["l'amy america", "lamy america", "lamyamerica.com"],
        "subject_keywords": ["lamy", "l'amy", "order confirmation"],
        "body_keywords": ["lamy america", "l'amy america", "order number"],
        "enrichment_required": True,
    },
    {
        "code": "modern_optical",
        "name": "Modern Optical",
        "parser_key": "jiecosystem",
        "domains": ["modernoptical.com"],
        "body_signatures": ["custsvc@modernoptical.com", "modern optical"],
        "subject_keywords": ["modern optical", "receipt for order number"],
        "body_keywords": ["modern optical", "order number", "placed by rep"],
        "enrichment_required": True,
    },
    {
        "code": "kenmark",
        "name": "Kenmark",
        "parser_key": "jiecosystem",
        "domains": ["kenmarkeyewear.com"],
        "body_signatures": ["kenmark eyewear", "kenmarkeyewear.com", "imageserver.jiecosystem.net/image/kenmark/"],
        "subject_keywords": ["kenmark eyewear", "kenmark", "receipt for order number"],
        "body_keywords": ["kenmark", "order number", "placed by rep"],
        "enrichment_required": True,
        "default_brand": "Kenmark",
    },
    {
        "code": "clearvision",
        "name": "ClearVision",
        "parser_key": "clearvision",
        "domains": ["cvoptical.com"],
        "body_signatures": ["clearvision optical", "cvoptical.com", "cvogo order"],
        "subject_keywords": ["cvogo", "new cvogo order"],
        "body_keywords": ["clearvision", "customer id", "territory"],
        "enrichment_required": True,
        "default_brand": "ClearVision",
    },
    {
        "code": "etnia_barcelona",
        "name": "Etnia Barcelona",
        "parser_key": "etnia_barcelona",
        "domains": ["etniabarcelona.com", "etnia.es"],
        "body_signatures": ["etnia barcelona llc", "etnia eyewear culture", "extranet-etniabarcelona.com"],
        "subject_keywords": ["etnia", "order"],
        "body_keywords": ["etnia barcelona", "etnia eyewear", "trusting in etnia"],
        "enrichment_required": True,
        "default_brand": "Etnia Barcelona",
    },
    {
        "code": "europa",
        "name": "Europa",
        "parser_key": "europa",
        "domains": ["europaeye.com"],
        "body_signatures": ["europaeye.com", "europa sales representative"],
        "subject_keywords": ["europa", "customer receipt", "receipt for order"],
        "body_keywords": ["europaeye.com", "order placed by rep", "europa"],
        "enrichment_required": False,
    },
    {
        "code": "marchon",
        "name": "Marchon",
        "parser_key": "marchon",
        "domains": ["marchon.com", "marchoneyewear.com", "altaireyewear.com"],
        "body_signatures": ["marchon order confirmation", "marchon eyewear", "1-800-645-1300"],
        "subject_keywords": ["marchon", "marchon order confirmation"],
        "body_keywords": ["marchon", "order id:", "sales rep:", "rep stock order"],
        "enrichment_required": False,
    },
]

_registry: Optional[list[Vendor]] = None


def _apply_env_overrides(vendor: Vendor) -> Vendor:
    url = os.getenv(f"{vendor.code.upper()}_CATALOG_URL")
    if url:
        catalog = vendor.catalog or CatalogSourceConfig()
        vendor = vendor.model_copy(update={"catalog": catalog.model_copy(update={"url": url})})
    return vendor


def load_vendor_registry(path: Optional[str] = None) -> list[Vendor]:
    """
    Build the vendor list from VENDOR_REGISTRY_PATH (if set) or the built-in table.

    Raises ValueError when the JSON file is not a list or vendor codes repeat.
    """
    path = path or os.getenv("VENDOR_REGISTRY_PATH")
    if path:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
        if not isinstance(raw, list):
            raise ValueError(f"Vendor registry {path!r} must contain a JSON list")
        logger.info(f"Loaded {len(raw)} vendors from {path}")
    else:
        raw = _DEFAULT_VENDORS

    vendors = [_apply_env_overrides(Vendor(**entry)) for entry in raw]

    codes = [v.code for v in vendors]
    duplicates = {c for c in codes if codes.count(c) > 1}
    if duplicates:
        raise ValueError(f"Duplicate vendor codes in registry: {sorted(duplicates)}")

    return vendors


def get_registry() -> list[Vendor]:
    """Return the process-wide vendor list, loading it on first use."""
    global _registry
    if _registry is None:
        _registry = load_vendor_registry()
    return _registry


def reset_registry() -> None:
    """Drop the cached registry so the next call reloads it (used by tests)."""
    global _registry
    _registry = None


def get_vendor(code: str) -> Optional[Vendor]:
    for vendor in get_registry():
        if vendor.code == code:
            return vendor
    return None
