"""
Pydantic models for parsed orders and persisted order rows.

Models:
  SizeSpec        normalized frame size (eye / bridge / temple)
  RawLineItem     one vendor-reported row, before enrichment
  OrderHeader     order-level fields extracted from the email
  EmailContent    the text forms of an email a parser can read
  Order           DB row from the orders table
"""

from typing import Optional
from pydantic import BaseModel, Field


class SizeSpec(BaseModel):
    """Frame size in a vendor-agnostic shape. `raw` keeps what the vendor wrote."""
    raw: str = ""
    eye_size: Optional[str] = None
    bridge: Optional[str] = None
    temple: Optional[str] = None

    @property
    def key(self) -> str:
        """Canonical string used for matching: '54-19-145', '54-19', '54' or ''."""
        parts = [p for p in (self.eye_size, self.bridge, self.temple) if p]
        if parts:
            return "-".join(parts)
        return self.raw.strip().lower()


class RawLineItem(BaseModel):
    brand: str = ""
    model: str = ""
    color: str = ""
    color_code: Optional[str] = None
    size: SizeSpec = Field(default_factory=SizeSpec)
    quantity: int = 1
    unit_cost: Optional[float] = None
    upc: Optional[str] = None
    needs_review: bool = False
    review_notes: list[str] = []


class OrderHeader(BaseModel):
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    account_number: Optional[str] = None
    order_date: Optional[str] = None
    rep_name: Optional[str] = None


class EmailContent(BaseModel):
    subject: str = ""
    html: str = ""
    text: str = ""
    pdf_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.html.strip() or self.text.strip() or self.pdf_text.strip())


class Order(BaseModel):
    """Full orders row."""
    model_config = {"from_attributes": True, "extra": "ignore"}

    id: str
    account_id: str
    vendor: str
    order_number: str
    customer_name: Optional[str] = None
    account_number: Optional[str] = None
    order_date: Optional[str] = None
    rep_name: Optional[str] = None
    email_id: Optional[str] = None
    archived: bool = False
    archived_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
