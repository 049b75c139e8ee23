"""
Email intake router.

Receives vendor order emails from the inbound email provider and runs them
through the intake pipeline (detection, parsing, enrichment, assembly).

The webhook endpoint is provider-agnostic: it normalises the raw payload
via the inbound_email_adapter service, so swapping providers only requires
changing the EMAIL_PROVIDER env var.

Environment variables
---------------------
EMAIL_PROVIDER            Which normaliser to use (default: "direct").
                          Supported values: "direct", "resend", "postmark".
INBOUND_WEBHOOK_SECRET    Shared secret checked in X-Webhook-Secret header.
POSTMARK_WEBHOOK_SECRET   Legacy alias, checked as a fallback when
                          INBOUND_WEBHOOK_SECRET is not set.
INBOUND_DOMAIN            Domain of the per-account forwarding address
                          (default: "inbound.frameledger.app").

Endpoints:
  POST   /inbound              provider webhook (auth: X-Webhook-Secret)
  GET    /inbound-address      the user's forwarding address (auth: JWT)
  GET    /emails               list stored emails (auth: JWT)
  DELETE /emails/{email_id}    delete an email without current items (auth: JWT)
  POST   /detect-vendor        detection preview, nothing stored (auth: JWT)
"""

import logging
import os
import re
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from app.auth import get_current_user, verify_email_ownership
from app.db import supabase_admin
from app.models.inbound_email import DetectVendorRequest, EmailRecord
from app.models.inventory import ItemStatus
from app.models.vendor import DetectionResult
from app.services import pipeline, vendor_detector
from app.services.inbound_email_adapter import normalize_webhook

logger = logging.getLogger(__name__)

router = APIRouter()

_SHORT_ID_LENGTH = 8
_ADDRESS_PREFIX = "orders-"


def _inbound_domain() -> str:
    return os.getenv("INBOUND_DOMAIN", "inbound.frameledger.app")


# ---------------------------------------------------------------------------
# Webhook authentication dependency
# ---------------------------------------------------------------------------

def _get_webhook_secret() -> str:
    """
    Return the configured webhook secret.

    Checks INBOUND_WEBHOOK_SECRET first, then falls back to the legacy
    POSTMARK_WEBHOOK_SECRET.
    """
    return (
        os.getenv("INBOUND_WEBHOOK_SECRET")
        or os.getenv("POSTMARK_WEBHOOK_SECRET")
        or ""
    )


def _verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None),
    x_postmark_secret: Optional[str] = Header(None),
) -> None:
    """
    Verify that the inbound webhook request carries the correct shared secret.

    Accepts the secret in either X-Webhook-Secret or the legacy
    X-Postmark-Secret header. Raises 401 if the secret is missing,
    unconfigured, or does not match.
    """
    expected = _get_webhook_secret()
    if not expected:
        logger.warning(
            "No webhook secret configured (INBOUND_WEBHOOK_SECRET / "
            "POSTMARK_WEBHOOK_SECRET); all inbound webhook requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    provided = x_webhook_secret or x_postmark_secret
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _extract_short_id_from_to(to_address: str) -> Optional[str]:
    """
    Extract the 8-char short_id from a To address like:
      orders-abcd1234@inbound.frameledger.app

    Returns None if the address does not match the expected pattern.
    """
    # Some providers wrap the address: "Name <addr@host>"
    match = re.search(r"<([^>]+)>", to_address or "")
    addr = match.group(1) if match else (to_address or "").strip()

    pattern = (
        rf"^{_ADDRESS_PREFIX}([a-zA-Z0-9]{{{_SHORT_ID_LENGTH}}})@{re.escape(_inbound_domain())}$"
    )
    m = re.match(pattern, addr, re.IGNORECASE)
    if not m:
        return None
    return m.group(1)


def _lookup_user_by_short_id(short_id: str) -> Optional[dict]:
    """
    Find a user whose UUID starts with short_id (case-insensitive).

    Queries the public.users view (a thin SELECT over auth.users) via
    PostgREST. Returns the user row dict or None if not found.
    """
    try:
        result = (
            supabase_admin.table("users")
            .select("id")
            .ilike("id", f"{short_id}%")
            .execute()
        )
        if result.data:
            return result.data[0]
    except Exception as e:
        logger.warning(f"Failed to look up user by short_id '{short_id}': {e}")
    return None


def _resolve_account(account_id: Optional[str], recipient: str) -> tuple[Optional[str], Optional[str]]:
    """Return (account_id, reason). reason is set when no account could be resolved."""
    if account_id:
        return account_id, None

    short_id = _extract_short_id_from_to(recipient)
    if not short_id:
        logger.warning(f"Could not extract short_id from recipient address: {recipient!r}")
        return None, "invalid_to_address"

    user = _lookup_user_by_short_id(short_id)
    if not user:
        logger.warning(f"No user found for short_id '{short_id}'")
        return None, "unknown_user"
    return user["id"], None


def _refuse_if_current_items(email_id: str, user_id: str) -> None:
    current = (
        supabase_admin.table("inventory")
        .select("id")
        .eq("email_id", email_id)
        .eq("account_id", user_id)
        .eq("status", ItemStatus.CURRENT.value)
        .execute()
    )
    if current.data:
        raise HTTPException(
            status_code=409,
            detail=f"Email has {len(current.data)} current items; archive them first",
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/inbound")
async def receive_inbound_email(
    payload: Optional[dict] = Body(None),
    _: None = Depends(_verify_webhook_secret),
) -> dict:
    """
    Provider-agnostic inbound email webhook receiver.

    A request without a body, or an email with neither an HTML nor a plain
    text body, is rejected with 400. Everything else returns 200 so the
    provider does not retry; unresolvable accounts and processing errors are
    reported with processed=False.
    """
    if not payload:
        raise HTTPException(status_code=400, detail="Request body is required")

    try:
        email = normalize_webhook(payload)
    except ValueError as exc:
        logger.error(f"Webhook normalization failed: {exc}")
        return {"received": True, "processed": False, "reason": "unsupported_provider"}

    if not email.has_body:
        raise HTTPException(status_code=400, detail="Email has no HTML or plain text body")

    account_id, reason = _resolve_account(email.account_id, email.recipient_email)
    if not account_id:
        return {"received": True, "processed": False, "reason": reason}

    try:
        outcome = await pipeline.process_email(supabase_admin, email, account_id)
    except Exception as e:
        logger.error(f"Failed to process inbound email from {email.sender_email!r}: {e}")
        return {"received": True, "processed": False, "reason": "processing_error"}

    return {"received": True, "processed": True, **outcome.as_dict()}


@router.get("/inbound-address")
async def get_inbound_address(
    user_id: str = Depends(get_current_user),
) -> dict:
    """
    Return the user's inbound email address.

    The address is derived from the first 8 characters of their Supabase UUID.
    """
    short_id = user_id[:_SHORT_ID_LENGTH]
    inbound_address = f"{_ADDRESS_PREFIX}{short_id}@{_inbound_domain()}"
    return {"inbound_address": inbound_address, "user_id": user_id}


@router.get("/emails")
async def list_emails(
    needs_review: Optional[bool] = None,
    user_id: str = Depends(get_current_user),
) -> list[EmailRecord]:
    """List the user's stored emails, most recent first."""
    query = supabase_admin.table("emails").select("*").eq("account_id", user_id)
    if needs_review is not None:
        query = query.eq("needs_review", needs_review)
    result = query.order("received_at", desc=True).execute()
    return [EmailRecord(**row) for row in result.data or []]


@router.delete("/emails/{email_id}")
async def delete_email(
    email_id: str,
    user_id: str = Depends(get_current_user),
) -> dict:
    """
    Delete an email together with its pending and archived items.

    Refused with 409 while any item created from the email is current.
    Sold items are kept as sales history.
    """
    await verify_email_ownership(email_id, user_id)
    _refuse_if_current_items(email_id, user_id)

    items = (
        supabase_admin.table("inventory")
        .delete()
        .eq("email_id", email_id)
        .eq("account_id", user_id)
        .in_("status", [ItemStatus.PENDING.value, ItemStatus.ARCHIVED.value])
        .execute()
    )
    # an item confirmed since the first check keeps the email too
    _refuse_if_current_items(email_id, user_id)
    supabase_admin.table("emails").delete().eq("id", email_id).eq("account_id", user_id).execute()

    deleted_items = len(items.data or [])
    logger.info(f"Deleted email {email_id} and {deleted_items} items")
    return {"deleted": True, "email_id": email_id, "deleted_items": deleted_items}


@router.post("/detect-vendor")
async def detect_vendor(
    body: DetectVendorRequest,
    user_id: str = Depends(get_current_user),
) -> DetectionResult:
    """Run vendor detection on a pasted email without storing anything."""
    return vendor_detector.detect(body.sender_email, body.content, body.subject)
