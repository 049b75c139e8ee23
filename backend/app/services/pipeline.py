"""
Per-email intake pipeline.

  InboundEmail
    -> emails row (deduplicated by content hash)
    -> VendorDetector
    -> VendorParser               (sync)
    -> CatalogEnrichmentClient    (async fan-out, bounded by the email deadline)
    -> OrderAssembler             (sync, idempotent)
    -> emails row updated with vendor / parse status / order id

Only a missing body is a hard failure; it is rejected by the webhook before
the pipeline runs. An unknown vendor or an unrecognised document leaves the
email stored with needs_review set and no inventory rows. Enrichment misses
leave items with their vendor-reported fields.

Environment variables
---------------------
PIPELINE_EMAIL_DEADLINE   Seconds allowed for the whole enrichment phase of
                          one email (default: 20).
"""

import hashlib
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from app.models.inbound_email import InboundEmail, ParseStatus
from app.models.order import EmailContent
from app.models.vendor import UNKNOWN_VENDOR
from app.services import order_assembler, vendor_detector
from app.services.catalog_client import CatalogEnrichmentClient, get_catalog_client
from app.services.errors import ParseFailure, ReviewReason
from app.services.parsers import get_parser
from app.services.pdf_text import extract_attachments_text
from app.services.vendor_registry import get_vendor

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    email_id: str
    vendor: str
    parse_status: str
    needs_review: bool = False
    review_reason: Optional[str] = None
    order_id: Optional[str] = None
    items_created: int = 0
    items_updated: int = 0
    items_enriched: int = 0
    merged: bool = False
    duplicate_email: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


def _deadline() -> float:
    return float(os.getenv("PIPELINE_EMAIL_DEADLINE", "20"))


def content_hash(email: InboundEmail) -> str:
    digest = hashlib.sha256()
    for part in (email.sender_email, email.subject, email.html_body, email.plain_body):
        digest.update((part or "").encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


def _store_email(db, account_id: str, email: InboundEmail, digest: str) -> tuple[dict, bool]:
    """Insert the emails row, or return the existing one for a re-delivery."""
    existing = (
        db.table("emails")
        .select("*")
        .eq("account_id", account_id)
        .eq("content_hash", digest)
        .limit(1)
        .execute()
    )
    if existing.data:
        logger.info(f"Email {existing.data[0]['id']} re-delivered; reprocessing existing row")
        return existing.data[0], True

    now_iso = datetime.now(timezone.utc).isoformat()
    result = (
        db.table("emails")
        .insert({
            "account_id": account_id,
            "sender_email": email.sender_email,
            "subject": email.subject,
            "html_body": email.html_body,
            "plain_body": email.plain_body,
            "content_hash": digest,
            "vendor": UNKNOWN_VENDOR,
            "parse_status": ParseStatus.PENDING.value,
            "received_at": now_iso,
        })
        .execute()
    )
    if not result.data:
        raise RuntimeError("Failed to store inbound email")
    return result.data[0], False


def _update_email(db, email_id: str, fields: dict) -> None:
    fields["updated_at"] = datetime.now(timezone.utc).isoformat()
    db.table("emails").update(fields).eq("id", email_id).execute()


async def process_email(
    db,
    email: InboundEmail,
    account_id: str,
    client: Optional[CatalogEnrichmentClient] = None,
    deadline: Optional[float] = None,
) -> PipelineOutcome:
    """
    Run one inbound email through detection, parsing, enrichment and assembly.

    Args:
        db:         Supabase client.
        email:      Normalized inbound email (must have a body).
        account_id: Owning account.
        client:     Enrichment client (default: the process-wide one).
        deadline:   Enrichment deadline in seconds (default PIPELINE_EMAIL_DEADLINE).
    """
    digest = content_hash(email)
    row, duplicate = _store_email(db, account_id, email, digest)
    email_id = row["id"]

    pdf_text = extract_attachments_text(email.attachments)
    html = email.html_body or ""
    text = email.plain_body or ""

    detection = vendor_detector.detect(
        email.sender_email, "\n".join(p for p in (html, text, pdf_text) if p), email.subject
    )
    vendor = None if detection.is_unknown else get_vendor(detection.vendor)
    if vendor is None:
        _update_email(db, email_id, {
            "vendor": UNKNOWN_VENDOR,
            "vendor_confidence": 0,
            "parse_status": ParseStatus.UNPARSED.value,
            "needs_review": True,
            "review_reason": ReviewReason.UNKNOWN_VENDOR.value,
        })
        return PipelineOutcome(
            email_id=email_id,
            vendor=UNKNOWN_VENDOR,
            parse_status=ParseStatus.UNPARSED.value,
            needs_review=True,
            review_reason=ReviewReason.UNKNOWN_VENDOR.value,
            duplicate_email=duplicate,
        )

    logger.info(
        f"Email {email_id} detected as {vendor.code} "
        f"({detection.method}, confidence {detection.confidence})"
    )
    detected = {
        "vendor": vendor.code,
        "vendor_confidence": detection.confidence,
        "detection_method": detection.method,
    }

    content = EmailContent(subject=email.subject or "", html=html, text=text, pdf_text=pdf_text)
    try:
        parsed = get_parser(vendor).parse(content)
    except ParseFailure as e:
        logger.warning(f"Email {email_id} ({vendor.code}) could not be parsed: {e.message}")
        _update_email(db, email_id, {
            **detected,
            "parse_status": ParseStatus.UNPARSED.value,
            "needs_review": True,
            "review_reason": ReviewReason.PARSE_FAILURE.value,
        })
        return PipelineOutcome(
            email_id=email_id,
            vendor=vendor.code,
            parse_status=ParseStatus.UNPARSED.value,
            needs_review=True,
            review_reason=ReviewReason.PARSE_FAILURE.value,
            duplicate_email=duplicate,
        )

    client = client or get_catalog_client()
    enriched = await client.enrich_many(
        vendor, parsed.line_items, deadline=deadline if deadline is not None else _deadline()
    )

    assembly = order_assembler.assemble(
        db,
        account_id=account_id,
        vendor=vendor.code,
        order_header=parsed.order_header,
        enriched_line_items=enriched,
        email_id=email_id,
        content_hash=digest,
    )

    partial = parsed.status == ParseStatus.PARTIAL
    review_reason = ReviewReason.PARTIAL_PARSE.value if partial else None
    _update_email(db, email_id, {
        **detected,
        "parse_status": parsed.status.value,
        "parse_confidence": parsed.confidence,
        "needs_review": partial,
        "review_reason": review_reason,
        "order_id": assembly.order.id,
    })

    return PipelineOutcome(
        email_id=email_id,
        vendor=vendor.code,
        parse_status=parsed.status.value,
        needs_review=partial,
        review_reason=review_reason,
        order_id=assembly.order.id,
        items_created=assembly.created,
        items_updated=assembly.updated,
        items_enriched=sum(1 for line in enriched if line.enriched),
        merged=assembly.merged,
        duplicate_email=duplicate,
    )
