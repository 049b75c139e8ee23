"""
Pydantic models for inventory items and the user-facing lifecycle operations.

Models:
  ItemStatus              pending / current / sold / archived
  InventoryItem           DB row from the inventory table
  ConfirmOrderRequest     body of POST /orders/{id}/confirm
  RejectedItem            one item a confirmation could not promote
  ConfirmationResult      outcome of a (partial) confirmation
  ArchiveBrandRequest     body of POST /inventory/archive-brand
  DeleteArchivedRequest   body of the bulk archived-item deletes
  OrderReceiptStatus      per-status counts for one order
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ItemStatus(str, Enum):
    PENDING = "pending"
    CURRENT = "current"
    SOLD = "sold"
    ARCHIVED = "archived"


class InventoryItem(BaseModel):
    """Full inventory row."""
    model_config = {"from_attributes": True, "extra": "ignore"}

    id: str
    account_id: str
    order_id: str
    email_id: Optional[str] = None
    vendor: str
    brand: str
    model: str
    color: str = ""
    color_code: Optional[str] = None
    size: str = ""
    eye_size: Optional[str] = None
    bridge: Optional[str] = None
    temple: Optional[str] = None
    quantity: int = 1
    upc: Optional[str] = None
    wholesale_price: Optional[float] = None
    full_size: Optional[str] = None
    a: Optional[str] = None
    b: Optional[str] = None
    dbl: Optional[str] = None
    ed: Optional[str] = None
    enriched: bool = False
    enrichment_confidence: Optional[int] = None
    needs_review: bool = False
    status: ItemStatus = ItemStatus.PENDING
    confirmed_at: Optional[str] = None
    sold_at: Optional[str] = None
    archived_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ConfirmOrderRequest(BaseModel):
    """Item ids to promote. An empty list confirms every pending item of the order."""
    item_ids: list[str] = []


class RejectedItem(BaseModel):
    item_id: str
    reason: str                     # "not_found" | "invalid_transition" | "concurrent_conflict"
    status: Optional[str] = None    # status observed when the item was rejected


class ConfirmationResult(BaseModel):
    order_id: str
    confirmed: list[InventoryItem] = []
    rejected: list[RejectedItem] = []
    remaining_pending: int = 0


class ArchiveBrandRequest(BaseModel):
    vendor: str
    brand: str


class DeleteArchivedRequest(BaseModel):
    vendor: str
    brand: Optional[str] = None


class OrderReceiptStatus(BaseModel):
    order_id: str
    order_number: str
    receipt_status: str             # "pending" | "partial" | "received"
    total_items: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
