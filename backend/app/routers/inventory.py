"""
Inventory router.

Item-level lifecycle operations (archive, restore, sell, delete) and the
bulk brand / vendor clean-up operations.

Endpoints (all JWT-authenticated):
  GET    /                    list items, optionally filtered by status
  POST   /archive-brand       archive every open item of one brand
  DELETE /archived/brand      delete archived items of one brand
  DELETE /archived/vendor     delete archived items of one vendor
  POST   /{item_id}/archive
  POST   /{item_id}/restore
  POST   /{item_id}/sold
  DELETE /{item_id}           delete one archived item
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.auth import get_current_user
from app.db import supabase_admin
from app.models.inventory import (
    ArchiveBrandRequest,
    DeleteArchivedRequest,
    InventoryItem,
    ItemStatus,
)
from app.routers.http_errors import to_http_exception
from app.services import inventory_state
from app.services.errors import PipelineError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def list_inventory(
    status: Optional[ItemStatus] = None,
    vendor: Optional[str] = None,
    brand: Optional[str] = None,
    user_id: str = Depends(get_current_user),
) -> list[InventoryItem]:
    query = supabase_admin.table("inventory").select("*").eq("account_id", user_id)
    if status is not None:
        query = query.eq("status", status.value)
    if vendor:
        query = query.eq("vendor", vendor)
    if brand:
        query = query.eq("brand", brand)
    result = query.order("created_at", desc=True).execute()
    return [InventoryItem(**row) for row in result.data or []]


# Bulk routes are declared before the /{item_id} routes so "archived" is
# never captured as an item id.

@router.post("/archive-brand")
async def archive_brand(
    body: ArchiveBrandRequest,
    user_id: str = Depends(get_current_user),
) -> dict:
    archived = inventory_state.archive_brand(supabase_admin, user_id, body.vendor, body.brand)
    return {"vendor": body.vendor, "brand": body.brand, "archived_items": archived}


@router.delete("/archived/brand")
async def delete_archived_brand(
    body: DeleteArchivedRequest,
    user_id: str = Depends(get_current_user),
) -> dict:
    if not body.brand:
        raise HTTPException(status_code=400, detail="brand is required")
    deleted = inventory_state.delete_archived_by_brand(supabase_admin, user_id, body.vendor, body.brand)
    logger.info(f"Deleted {deleted} archived {body.vendor}/{body.brand} items")
    return {"vendor": body.vendor, "brand": body.brand, "deleted_items": deleted}


@router.delete("/archived/vendor")
async def delete_archived_vendor(
    body: DeleteArchivedRequest,
    user_id: str = Depends(get_current_user),
) -> dict:
    deleted = inventory_state.delete_archived_by_vendor(supabase_admin, user_id, body.vendor)
    logger.info(f"Deleted {deleted} archived {body.vendor} items")
    return {"vendor": body.vendor, "deleted_items": deleted}


def _run_item_operation(operation, user_id: str, item_id: str, action: str):
    """Run a state machine operation, mapping its errors onto HTTP responses."""
    try:
        return operation(supabase_admin, user_id, item_id)
    except PipelineError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to {action} item {item_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to {action} item")


@router.post("/{item_id}/archive")
async def archive_item(
    item_id: str,
    user_id: str = Depends(get_current_user),
) -> InventoryItem:
    return _run_item_operation(inventory_state.archive_item, user_id, item_id, "archive")


@router.post("/{item_id}/restore")
async def restore_item(
    item_id: str,
    user_id: str = Depends(get_current_user),
) -> InventoryItem:
    return _run_item_operation(inventory_state.restore_item, user_id, item_id, "restore")


@router.post("/{item_id}/sold")
async def mark_sold(
    item_id: str,
    user_id: str = Depends(get_current_user),
) -> InventoryItem:
    return _run_item_operation(inventory_state.mark_sold, user_id, item_id, "update")


@router.delete("/{item_id}")
async def delete_archived_item(
    item_id: str,
    user_id: str = Depends(get_current_user),
) -> dict:
    """Permanently delete one item. Only archived items can be deleted (409 otherwise)."""
    _run_item_operation(inventory_state.delete_archived_item, user_id, item_id, "delete")
    return {"deleted": True, "item_id": item_id}
