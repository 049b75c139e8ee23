"""
OrderAssembler: turns a parsed, enriched email into persisted orders and
inventory rows without duplicating anything on re-delivery.

Rules
-----
Order dedup      (account_id, vendor, order_number) is the natural key. An
                 existing order is reused; empty header fields are filled in
                 and the result is flagged merged. A concurrent insert that
                 loses the unique-constraint race re-reads the winner.
Row folding      Line items of one email with the same normalised
                 (brand, model, color, size) are folded into one line and
                 their quantities summed.
Existing items   A folded line whose key already exists in the order updates
                 that row in place: quantity is set to the reported value and
                 catalog fields are filled only if the row is not yet
                 enriched. Status is never changed here.
New items        Inserted with status "pending".
No order number  A deterministic fallback "UNKNOWN-<hash10>" derived from the
                 email content hash keeps partial emails idempotent.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from app.models.catalog import CatalogEntry, EnrichedLineItem
from app.models.inventory import InventoryItem, ItemStatus
from app.models.order import Order, OrderHeader

logger = logging.getLogger(__name__)

_HEADER_FIELDS = ("customer_name", "account_number", "order_date", "rep_name")
_ENRICHMENT_FIELDS = ("eye_size", "bridge", "temple", "full_size", "a", "b", "dbl", "ed")


@dataclass
class AssemblyResult:
    order: Order
    items: list[InventoryItem] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    merged: bool = False


def item_key(brand: str, model: str, color: str, size: str) -> tuple[str, str, str, str]:
    """Case- and whitespace-insensitive identity of an item within an order."""
    return tuple(" ".join((v or "").split()).casefold() for v in (brand, model, color, size))


def _line_key(line: EnrichedLineItem) -> tuple[str, str, str, str]:
    item = line.item
    return item_key(item.brand, item.model, item.color, item.size.key)


def _row_key(row: dict) -> tuple[str, str, str, str]:
    return item_key(row.get("brand"), row.get("model"), row.get("color"), row.get("size"))


def fallback_order_number(content_hash: str) -> str:
    return f"UNKNOWN-{content_hash[:10].upper()}"


def fold_duplicates(lines: list[EnrichedLineItem]) -> list[EnrichedLineItem]:
    """
    Fold lines with the same item key, summing quantities. First-seen order is
    kept; the first enriched entry among the duplicates wins.
    """
    folded: dict[tuple, EnrichedLineItem] = {}
    for line in lines:
        key = _line_key(line)
        existing = folded.get(key)
        if existing is None:
            folded[key] = line.model_copy(update={"item": line.item.model_copy(deep=True)})
            continue
        existing.item.quantity += line.item.quantity
        existing.item.needs_review = existing.item.needs_review or line.item.needs_review
        existing.item.review_notes.extend(n for n in line.item.review_notes if n not in existing.item.review_notes)
        if existing.entry is None and line.entry is not None:
            existing.entry = line.entry
            existing.miss_reason = None
    if len(folded) < len(lines):
        logger.info(f"Folded {len(lines)} line items into {len(folded)}")
    return list(folded.values())


def _enrichment_update(entry: CatalogEntry, reported_upc: Optional[str], reported_cost: Optional[float]) -> dict:
    update = {f: getattr(entry, f) for f in _ENRICHMENT_FIELDS if getattr(entry, f)}
    update.update({
        "upc": entry.upc or reported_upc,
        "wholesale_price": entry.wholesale_price if entry.wholesale_price is not None else reported_cost,
        "enriched": True,
        "enrichment_confidence": entry.confidence,
    })
    return update


def _new_item_row(account_id: str, order_id: str, email_id: Optional[str], vendor: str, line: EnrichedLineItem) -> dict:
    item = line.item
    row = {
        "account_id": account_id,
        "order_id": order_id,
        "email_id": email_id,
        "vendor": vendor,
        "brand": item.brand,
        "model": item.model,
        "color": item.color,
        "color_code": item.color_code,
        "size": item.size.key,
        "eye_size": item.size.eye_size,
        "bridge": item.size.bridge,
        "temple": item.size.temple,
        "quantity": item.quantity,
        "upc": item.upc,
        "wholesale_price": item.unit_cost,
        "enriched": False,
        "needs_review": item.needs_review,
        "status": ItemStatus.PENDING.value,
    }
    if line.entry is not None:
        row.update(_enrichment_update(line.entry, item.upc, item.unit_cost))
    return row


def _find_order(db, account_id: str, vendor: str, order_number: str) -> Optional[dict]:
    result = (
        db.table("orders")
        .select("*")
        .eq("account_id", account_id)
        .eq("vendor", vendor)
        .eq("order_number", order_number)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


def _upsert_order(
    db, account_id: str, vendor: str, order_number: str, header: OrderHeader, email_id: Optional[str]
) -> tuple[dict, bool]:
    """Return (order_row, merged)."""
    existing = _find_order(db, account_id, vendor, order_number)

    if existing is None:
        row = {
            "account_id": account_id,
            "vendor": vendor,
            "order_number": order_number,
            "email_id": email_id,
            "archived": False,
            **{f: getattr(header, f) for f in _HEADER_FIELDS},
        }
        try:
            result = db.table("orders").insert(row).execute()
            if result.data:
                return result.data[0], False
        except Exception as e:
            logger.info(f"Order insert for {vendor}/{order_number} conflicted, re-reading: {e}")
        existing = _find_order(db, account_id, vendor, order_number)
        if existing is None:
            raise RuntimeError(f"Failed to create order {vendor}/{order_number}")

    logger.info(f"Order {vendor}/{order_number} already exists ({existing['id']}); merging")
    fill = {f: getattr(header, f) for f in _HEADER_FIELDS if getattr(header, f) and not existing.get(f)}
    if fill:
        fill["updated_at"] = datetime.now(timezone.utc).isoformat()
        result = (
            db.table("orders")
            .update(fill)
            .eq("id", existing["id"])
            .eq("account_id", account_id)
            .execute()
        )
        if result.data:
            existing = result.data[0]
    return existing, True


def _insert_items(db, rows: list[dict], order_id: str) -> list[dict]:
    """
    Bulk insert new rows. If the batch conflicts with rows inserted
    concurrently, fall back to one-by-one inserts that skip existing keys.
    """
    if not rows:
        return []
    try:
        result = db.table("inventory").insert(rows).execute()
        return result.data or []
    except Exception as e:
        logger.info(f"Bulk item insert for order {order_id} conflicted, retrying per item: {e}")

    present = {
        _row_key(r)
        for r in (db.table("inventory").select("*").eq("order_id", order_id).execute().data or [])
    }
    inserted = []
    for row in rows:
        if _row_key(row) in present:
            continue
        result = db.table("inventory").insert(row).execute()
        inserted.extend(result.data or [])
    return inserted


def assemble(
    db,
    account_id: str,
    vendor: str,
    order_header: OrderHeader,
    enriched_line_items: list[EnrichedLineItem],
    email_id: Optional[str] = None,
    content_hash: Optional[str] = None,
) -> AssemblyResult:
    """
    Persist one parsed email as an order plus inventory rows.

    Args:
        db:                   Supabase client.
        account_id:           Owning account (authenticated user id).
        vendor:               Vendor code from detection.
        order_header:         Parsed header; order_number may be missing.
        enriched_line_items:  Parser output paired with catalog results.
        email_id:             emails.id the items came from.
        content_hash:         Email hash used for the fallback order number.

    Returns:
        AssemblyResult with the order, all of its items, and counts of
        created/updated rows.
    """
    order_number = order_header.order_number
    if not order_number:
        order_number = fallback_order_number(content_hash or email_id or "")
        logger.warning(f"No order number for {vendor} email {email_id}; using {order_number}")

    order_row, merged = _upsert_order(db, account_id, vendor, order_number, order_header, email_id)
    order_id = order_row["id"]

    existing_rows = (
        db.table("inventory")
        .select("*")
        .eq("order_id", order_id)
        .eq("account_id", account_id)
        .execute()
        .data
        or []
    )
    by_key = {_row_key(r): r for r in existing_rows}

    now = datetime.now(timezone.utc).isoformat()
    new_rows: list[dict] = []
    updated_rows: dict[str, dict] = {}

    for line in fold_duplicates(enriched_line_items):
        current = by_key.get(_line_key(line))
        if current is None:
            new_rows.append(_new_item_row(account_id, order_id, email_id, vendor, line))
            continue

        update: dict = {}
        if current.get("quantity") != line.item.quantity:
            update["quantity"] = line.item.quantity
        if line.entry is not None and not current.get("enriched"):
            update.update(_enrichment_update(line.entry, current.get("upc"), current.get("wholesale_price")))
        if not update:
            continue

        update["updated_at"] = now
        result = (
            db.table("inventory")
            .update(update)
            .eq("id", current["id"])
            .eq("account_id", account_id)
            .execute()
        )
        if result.data:
            updated_rows[current["id"]] = result.data[0]

    inserted = _insert_items(db, new_rows, order_id)

    items = [InventoryItem(**updated_rows.get(r["id"], r)) for r in existing_rows]
    items.extend(InventoryItem(**r) for r in inserted)

    logger.info(
        f"Assembled {vendor} order {order_number}: {len(inserted)} new, "
        f"{len(updated_rows)} updated, merged={merged}"
    )
    return AssemblyResult(
        order=Order(**order_row),
        items=items,
        created=len(inserted),
        updated=len(updated_rows),
        merged=merged,
    )
