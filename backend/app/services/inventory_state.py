"""
InventoryStateMachine: the user-triggered lifecycle of inventory items.

    pending  -> current | archived
    current  -> sold | archived
    archived -> current          (restore)
    archived -> (deleted)
    sold        terminal

Every transition is a conditional write keyed on the expected source state
(`.eq("status", expected)`), so two concurrent requests can never both
succeed and an update can never overwrite a state it did not read. A write
that matches no row means another request got there first.

All operations are scoped to account_id. Functions take the Supabase client
as their first argument.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from app.models.inventory import (
    ConfirmationResult,
    InventoryItem,
    ItemStatus,
    OrderReceiptStatus,
    RejectedItem,
)
from app.services.errors import (
    ConcurrentConfirmationConflict,
    InvalidTransition,
    ItemNotFound,
    OrderNotFound,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ItemStatus, set[ItemStatus]] = {
    ItemStatus.PENDING: {ItemStatus.CURRENT, ItemStatus.ARCHIVED},
    ItemStatus.CURRENT: {ItemStatus.SOLD, ItemStatus.ARCHIVED},
    ItemStatus.ARCHIVED: {ItemStatus.CURRENT},
    ItemStatus.SOLD: set(),
}

_ACTIVE = [ItemStatus.PENDING.value, ItemStatus.CURRENT.value]


def can_transition(current: str, target: str) -> bool:
    try:
        return ItemStatus(target) in TRANSITIONS[ItemStatus(current)]
    except ValueError:
        return False


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_item(db, account_id: str, item_id: str) -> dict:
    result = (
        db.table("inventory")
        .select("*")
        .eq("id", item_id)
        .eq("account_id", account_id)
        .execute()
    )
    if not result.data:
        raise ItemNotFound(item_id)
    return result.data[0]


def get_order(db, account_id: str, order_id: str) -> dict:
    result = (
        db.table("orders")
        .select("*")
        .eq("id", order_id)
        .eq("account_id", account_id)
        .execute()
    )
    if not result.data:
        raise OrderNotFound(order_id)
    return result.data[0]


def _transition(
    db,
    account_id: str,
    item_id: str,
    target: ItemStatus,
    fields: Optional[dict] = None,
) -> InventoryItem:
    row = get_item(db, account_id, item_id)
    current = row.get("status")
    if not can_transition(current, target.value):
        raise InvalidTransition(item_id, current, target.value)

    update = {"status": target.value, "updated_at": _now(), **(fields or {})}
    result = (
        db.table("inventory")
        .update(update)
        .eq("id", item_id)
        .eq("account_id", account_id)
        .eq("status", current)
        .execute()
    )
    if not result.data:
        latest = get_item(db, account_id, item_id).get("status")
        logger.info(f"Item {item_id} changed from {current} to {latest} during {target.value} transition")
        raise InvalidTransition(item_id, latest, target.value)

    logger.info(f"Item {item_id}: {current} -> {target.value}")
    return InventoryItem(**result.data[0])


# ---------------------------------------------------------------------------
# Single-item operations
# ---------------------------------------------------------------------------

def archive_item(db, account_id: str, item_id: str) -> InventoryItem:
    return _transition(db, account_id, item_id, ItemStatus.ARCHIVED, {"archived_at": _now()})


def restore_item(db, account_id: str, item_id: str) -> InventoryItem:
    return _transition(db, account_id, item_id, ItemStatus.CURRENT, {"archived_at": None})


def mark_sold(db, account_id: str, item_id: str) -> InventoryItem:
    return _transition(db, account_id, item_id, ItemStatus.SOLD, {"sold_at": _now()})


def delete_archived_item(db, account_id: str, item_id: str) -> None:
    """Hard-delete one item. Only archived items may be deleted."""
    row = get_item(db, account_id, item_id)
    if row.get("status") != ItemStatus.ARCHIVED.value:
        raise InvalidTransition(item_id, row.get("status"), "deleted")

    result = (
        db.table("inventory")
        .delete()
        .eq("id", item_id)
        .eq("account_id", account_id)
        .eq("status", ItemStatus.ARCHIVED.value)
        .execute()
    )
    if not result.data:
        latest = get_item(db, account_id, item_id).get("status")
        raise InvalidTransition(item_id, latest, "deleted")
    logger.info(f"Deleted archived item {item_id}")


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------

def _count_pending(db, account_id: str, order_id: str) -> int:
    result = (
        db.table("inventory")
        .select("id")
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .eq("status", ItemStatus.PENDING.value)
        .execute()
    )
    return len(result.data or [])


def confirm_items(db, account_id: str, order_id: str, item_ids: list[str]) -> ConfirmationResult:
    """
    Promote the given pending items of an order to current.

    Items that cannot be confirmed are returned in `rejected` with a reason:
      not_found            id is not an item of this order/account
      invalid_transition   item was not pending
      concurrent_conflict  item was pending but another request moved it first

    The remaining items of the request are still confirmed. Raises
    ConcurrentConfirmationConflict only when every pending item requested
    was lost to a concurrent request. An empty item_ids confirms every
    pending item (see confirm_order).
    """
    get_order(db, account_id, order_id)
    ids = list(dict.fromkeys(item_ids))
    if not ids:
        return confirm_order(db, account_id, order_id)

    before = (
        db.table("inventory")
        .select("*")
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .in_("id", ids)
        .execute()
        .data
        or []
    )
    status_by_id = {row["id"]: row.get("status") for row in before}

    rejected: list[RejectedItem] = []
    pending_ids: list[str] = []
    for item_id in ids:
        status = status_by_id.get(item_id)
        if status is None:
            rejected.append(RejectedItem(item_id=item_id, reason="not_found"))
        elif status != ItemStatus.PENDING.value:
            rejected.append(RejectedItem(item_id=item_id, reason="invalid_transition", status=status))
        else:
            pending_ids.append(item_id)

    confirmed: list[InventoryItem] = []
    if pending_ids:
        now = _now()
        result = (
            db.table("inventory")
            .update({"status": ItemStatus.CURRENT.value, "confirmed_at": now, "updated_at": now})
            .in_("id", pending_ids)
            .eq("order_id", order_id)
            .eq("account_id", account_id)
            .eq("status", ItemStatus.PENDING.value)
            .execute()
        )
        confirmed = [InventoryItem(**row) for row in result.data or []]

        confirmed_ids = {item.id for item in confirmed}
        lost = [i for i in pending_ids if i not in confirmed_ids]
        if lost:
            latest = (
                db.table("inventory").select("id, status").in_("id", lost).execute().data or []
            )
            latest_status = {row["id"]: row.get("status") for row in latest}
            for item_id in lost:
                rejected.append(
                    RejectedItem(item_id=item_id, reason="concurrent_conflict", status=latest_status.get(item_id))
                )
            logger.warning(f"Order {order_id}: {len(lost)} items confirmed concurrently by another request")
            if not confirmed:
                raise ConcurrentConfirmationConflict(order_id, lost)

    logger.info(f"Order {order_id}: confirmed {len(confirmed)} items, rejected {len(rejected)}")
    return ConfirmationResult(
        order_id=order_id,
        confirmed=confirmed,
        rejected=rejected,
        remaining_pending=_count_pending(db, account_id, order_id),
    )


def confirm_order(db, account_id: str, order_id: str) -> ConfirmationResult:
    """Promote every pending item of the order to current."""
    get_order(db, account_id, order_id)
    now = _now()
    result = (
        db.table("inventory")
        .update({"status": ItemStatus.CURRENT.value, "confirmed_at": now, "updated_at": now})
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .eq("status", ItemStatus.PENDING.value)
        .execute()
    )
    confirmed = [InventoryItem(**row) for row in result.data or []]
    logger.info(f"Order {order_id}: confirmed all {len(confirmed)} pending items")
    return ConfirmationResult(
        order_id=order_id,
        confirmed=confirmed,
        remaining_pending=_count_pending(db, account_id, order_id),
    )


# ---------------------------------------------------------------------------
# Order-level operations
# ---------------------------------------------------------------------------

def archive_order(db, account_id: str, order_id: str) -> dict:
    """Archive the order and every pending/current item in it."""
    get_order(db, account_id, order_id)
    now = _now()
    order = (
        db.table("orders")
        .update({"archived": True, "archived_at": now, "updated_at": now})
        .eq("id", order_id)
        .eq("account_id", account_id)
        .execute()
    )
    items = (
        db.table("inventory")
        .update({"status": ItemStatus.ARCHIVED.value, "archived_at": now, "updated_at": now})
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .in_("status", _ACTIVE)
        .execute()
    )
    archived = len(items.data or [])
    logger.info(f"Archived order {order_id} and {archived} items")
    return {"order": order.data[0] if order.data else None, "archived_items": archived}


def _current_items(db, account_id: str, order_id: str) -> list:
    result = (
        db.table("inventory")
        .select("id")
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .eq("status", ItemStatus.CURRENT.value)
        .execute()
    )
    return result.data or []


def _refuse_delete_with_current(order_id: str, current: list) -> InvalidTransition:
    return InvalidTransition(
        order_id,
        ItemStatus.CURRENT.value,
        "deleted",
        message=f"Order {order_id} has {len(current)} current items; archive them first",
    )


def delete_order(db, account_id: str, order_id: str) -> int:
    """
    Delete an order and its items. Refused while any item is current
    (received stock must be archived or sold first).

    The item delete never matches current rows, and current rows are checked
    again before the order itself goes, so an item confirmed mid-delete
    keeps both itself and its order.

    Returns the number of items deleted.
    """
    get_order(db, account_id, order_id)
    current = _current_items(db, account_id, order_id)
    if current:
        raise _refuse_delete_with_current(order_id, current)

    items = (
        db.table("inventory")
        .delete()
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .neq("status", ItemStatus.CURRENT.value)
        .execute()
    )
    deleted = len(items.data or [])

    current = _current_items(db, account_id, order_id)
    if current:
        logger.warning(f"Order {order_id} gained current items during delete; kept the order")
        raise _refuse_delete_with_current(order_id, current)

    db.table("orders").delete().eq("id", order_id).eq("account_id", account_id).execute()
    logger.info(f"Deleted order {order_id} with {deleted} items")
    return deleted


def order_receipt_status(db, account_id: str, order_id: str) -> OrderReceiptStatus:
    """Item counts per status plus pending / partial / received for the whole order."""
    order = get_order(db, account_id, order_id)
    rows = (
        db.table("inventory")
        .select("id, status")
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .execute()
        .data
        or []
    )
    counts = {status.value: 0 for status in ItemStatus}
    for row in rows:
        counts[row["status"]] = counts.get(row["status"], 0) + 1

    pending = counts[ItemStatus.PENDING.value]
    if not rows or pending == len(rows):
        receipt = "pending"
    elif pending == 0:
        receipt = "received"
    else:
        receipt = "partial"

    return OrderReceiptStatus(
        order_id=order_id,
        order_number=order["order_number"],
        receipt_status=receipt,
        total_items=len(rows),
        counts=counts,
    )


# ---------------------------------------------------------------------------
# Bulk brand / vendor operations
# ---------------------------------------------------------------------------

def archive_brand(db, account_id: str, vendor: str, brand: str) -> int:
    """Archive every pending/current item of one brand. Returns the count."""
    now = _now()
    result = (
        db.table("inventory")
        .update({"status": ItemStatus.ARCHIVED.value, "archived_at": now, "updated_at": now})
        .eq("account_id", account_id)
        .eq("vendor", vendor)
        .eq("brand", brand)
        .in_("status", _ACTIVE)
        .execute()
    )
    archived = len(result.data or [])
    logger.info(f"Archived {archived} {vendor}/{brand} items")
    return archived


def delete_archived_by_brand(db, account_id: str, vendor: str, brand: str) -> int:
    result = (
        db.table("inventory")
        .delete()
        .eq("account_id", account_id)
        .eq("vendor", vendor)
        .eq("brand", brand)
        .eq("status", ItemStatus.ARCHIVED.value)
        .execute()
    )
    return len(result.data or [])


def delete_archived_by_vendor(db, account_id: str, vendor: str) -> int:
    result = (
        db.table("inventory")
        .delete()
        .eq("account_id", account_id)
        .eq("vendor", vendor)
        .eq("status", ItemStatus.ARCHIVED.value)
        .execute()
    )
    return len(result.data or [])
