"""
Provider-agnostic inbound email models.

InboundEmail represents a normalized vendor email after provider-specific
fields have been stripped away. The router and the intake pipeline work
exclusively with these models; only the adapter layer knows about the
direct / Resend / Postmark payload formats.

EmailRecord mirrors a row in the `emails` table.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel


class ParseStatus(str, Enum):
    PENDING = "pending"      # stored, not parsed yet
    PARSED = "parsed"        # every line item complete
    PARTIAL = "partial"      # some items / header fields need review
    UNPARSED = "unparsed"    # unknown vendor or unrecognised document


class InboundAttachment(BaseModel):
    """A single file attachment, already decoded to raw bytes."""

    filename: str
    content: bytes          # raw bytes; the adapter is responsible for base64-decoding
    content_type: str

    @property
    def is_pdf(self) -> bool:
        return (
            self.content_type.lower() == "application/pdf"
            or self.filename.lower().endswith(".pdf")
        )


class InboundEmail(BaseModel):
    """
    Normalized inbound email, provider-agnostic.

    account_id is set when the payload names the account explicitly; otherwise
    the router resolves it from recipient_email.
    """

    sender_email: str
    recipient_email: str = ""
    subject: Optional[str] = None
    html_body: Optional[str] = None
    plain_body: Optional[str] = None
    account_id: Optional[str] = None
    attachments: list[InboundAttachment] = []

    @property
    def has_body(self) -> bool:
        return bool((self.html_body or "").strip() or (self.plain_body or "").strip())


class EmailRecord(BaseModel):
    """Full `emails` row."""
    model_config = {"from_attributes": True, "extra": "ignore"}

    id: str
    account_id: str
    sender_email: str
    subject: Optional[str] = None
    vendor: str = "unknown"
    vendor_confidence: int = 0
    detection_method: Optional[str] = None
    parse_status: ParseStatus = ParseStatus.PENDING
    needs_review: bool = False
    review_reason: Optional[str] = None
    parse_confidence: Optional[float] = None
    order_id: Optional[str] = None
    content_hash: Optional[str] = None
    received_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class DetectVendorRequest(BaseModel):
    """Body of POST /email-intake/detect-vendor (preview only, nothing is stored)."""
    sender_email: str
    subject: Optional[str] = None
    content: str = ""
