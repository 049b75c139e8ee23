"""
Catalog router.

Manual access to the vendor catalog cache: look up one frame variant
(cache first, then the vendor catalog API) and invalidate cached entries.

Endpoints (all JWT-authenticated):
  GET    /lookup   vendor, brand, model, color, size query params
  DELETE /cache    vendor plus optional brand/model/color/size for one key
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.auth import get_current_user
from app.models.catalog import CatalogEntry, CatalogKey
from app.services.catalog_cache import get_catalog_cache
from app.services.catalog_client import get_catalog_client
from app.services.parsers.base import normalize_size
from app.services.vendor_registry import get_vendor

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_vendor(code: str):
    vendor = get_vendor(code)
    if vendor is None:
        raise HTTPException(status_code=404, detail=f"Unknown vendor '{code}'")
    return vendor


@router.get("/lookup")
async def lookup(
    vendor: str,
    brand: str,
    model: str,
    color: str,
    size: str = "",
    user_id: str = Depends(get_current_user),
) -> dict:
    """
    Return catalog data for one variant.

    A cached entry is returned without calling the vendor API. A miss is
    reported with found=False and the miss reason rather than an error.
    """
    resolved = _require_vendor(vendor)
    cache = get_catalog_cache()

    cached = cache.get(CatalogKey.build(resolved.code, brand, model, color, normalize_size(size).key))
    if cached is not None:
        return {"found": True, "cached": True, "entry": cached}

    result = await get_catalog_client().enrich(resolved, brand, model, color, size)

    if isinstance(result, CatalogEntry):
        return {"found": True, "cached": False, "entry": result}
    return {"found": False, "cached": False, "reason": result.reason, "detail": result.detail}


@router.delete("/cache")
async def invalidate_cache(
    vendor: str,
    brand: Optional[str] = None,
    model: Optional[str] = None,
    color: Optional[str] = None,
    size: str = "",
    user_id: str = Depends(get_current_user),
) -> dict:
    """
    Drop cached catalog entries.

    With brand and model, only that key is removed; otherwise every entry
    of the vendor is.
    """
    resolved = _require_vendor(vendor)
    cache = get_catalog_cache()

    if brand and model:
        key = CatalogKey.build(resolved.code, brand, model, color or "", normalize_size(size).key)
        deleted = cache.invalidate(key)
        logger.info(f"Invalidated catalog entry {key.as_string()} ({deleted} rows)")
    else:
        deleted = cache.invalidate_vendor(resolved.code)

    return {"vendor": resolved.code, "deleted": deleted}
