"""
Orders router.

Read access to assembled orders and the order-level lifecycle operations:
confirming received items, archiving and deleting.

Endpoints (all JWT-authenticated):
  GET    /                            list orders
  GET    /{order_id}                  order with its items
  GET    /{order_id}/receipt-status   pending / partial / received
  POST   /{order_id}/confirm          promote pending items to current
  POST   /{order_id}/archive          archive the order and its open items
  DELETE /{order_id}                  delete an order with no current items
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.auth import get_current_user, verify_order_ownership
from app.db import supabase_admin
from app.models.inventory import ConfirmationResult, ConfirmOrderRequest, InventoryItem, OrderReceiptStatus
from app.models.order import Order
from app.routers.http_errors import to_http_exception
from app.services import inventory_state
from app.services.errors import PipelineError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def list_orders(
    archived: Optional[bool] = None,
    vendor: Optional[str] = None,
    user_id: str = Depends(get_current_user),
) -> list[Order]:
    """List the user's orders, newest first."""
    query = supabase_admin.table("orders").select("*").eq("account_id", user_id)
    if archived is not None:
        query = query.eq("archived", archived)
    if vendor:
        query = query.eq("vendor", vendor)
    result = query.order("created_at", desc=True).execute()
    return [Order(**row) for row in result.data or []]


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user),
) -> dict:
    """Return the order row plus every inventory item that belongs to it."""
    order = await verify_order_ownership(order_id, user_id)
    items = (
        supabase_admin.table("inventory")
        .select("*")
        .eq("order_id", order_id)
        .eq("account_id", user_id)
        .order("created_at")
        .execute()
    )
    return {
        "order": Order(**order),
        "items": [InventoryItem(**row) for row in items.data or []],
    }


@router.get("/{order_id}/receipt-status")
async def get_receipt_status(
    order_id: str,
    user_id: str = Depends(get_current_user),
) -> OrderReceiptStatus:
    try:
        return inventory_state.order_receipt_status(supabase_admin, user_id, order_id)
    except PipelineError as e:
        raise to_http_exception(e)


@router.post("/{order_id}/confirm")
async def confirm_order(
    order_id: str,
    body: Optional[ConfirmOrderRequest] = None,
    user_id: str = Depends(get_current_user),
) -> ConfirmationResult:
    """
    Confirm receipt of items in an order (pending -> current).

    An empty or absent item_ids confirms every pending item. Items that
    cannot be confirmed are listed in `rejected`; the others are still
    confirmed. Returns 409 when a non-empty request confirms nothing.
    """
    item_ids = body.item_ids if body else []
    try:
        result = inventory_state.confirm_items(supabase_admin, user_id, order_id, item_ids)
    except PipelineError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to confirm items of order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to confirm items")

    if item_ids and not result.confirmed:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "nothing_confirmed",
                "message": "None of the requested items could be confirmed",
                "rejected": [r.model_dump() for r in result.rejected],
            },
        )
    return result


@router.post("/{order_id}/archive")
async def archive_order(
    order_id: str,
    user_id: str = Depends(get_current_user),
) -> dict:
    try:
        return inventory_state.archive_order(supabase_admin, user_id, order_id)
    except PipelineError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to archive order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to archive order")


@router.delete("/{order_id}")
async def delete_order(
    order_id: str,
    user_id: str = Depends(get_current_user),
) -> dict:
    """Delete an order and its items. 409 while any item is current."""
    try:
        deleted_items = inventory_state.delete_order(supabase_admin, user_id, order_id)
    except PipelineError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to delete order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete order")
    return {"deleted": True, "order_id": order_id, "deleted_items": deleted_items}
