"""
Inbound email adapter service.

Normalizes provider-specific inbound webhook payloads into a single
provider-agnostic InboundEmail model.

Supported providers:
  - direct    (default) native payload posted by our own forwarder / tests
  - resend    set EMAIL_PROVIDER=resend
  - postmark  set EMAIL_PROVIDER=postmark

Adding a new provider:
  1. Write a normalize_<provider>(payload: dict) -> InboundEmail function.
  2. Register it in _NORMALIZERS.
  3. Set EMAIL_PROVIDER=<provider> in the environment.

Payload field names
-------------------
  direct    senderAddress, recipient, subject, htmlBody, plainBody,
            accountId, attachments[].{filename, content, contentType}
  resend    from, to, subject, html, text,
            attachments[].{filename, content, content_type}
  postmark  From, To, Subject, HtmlBody, TextBody,
            Attachments[].{Name, Content, ContentType}

Attachment content is base64-encoded in every format.
"""

import base64
import binascii
import logging
import os
from typing import Callable, Optional

from app.models.inbound_email import InboundAttachment, InboundEmail

logger = logging.getLogger(__name__)


def _decode(raw: Optional[str], filename: str) -> bytes:
    try:
        return base64.b64decode(raw or "")
    except (binascii.Error, ValueError):
        logger.warning(f"Attachment {filename!r} is not valid base64; ignoring its content")
        return b""


def _attachments(items: Optional[list], name_key: str, content_key: str, type_key: str) -> list[InboundAttachment]:
    attachments: list[InboundAttachment] = []
    for att in items or []:
        filename = att.get(name_key) or "attachment"
        attachments.append(
            InboundAttachment(
                filename=filename,
                content=_decode(att.get(content_key), filename),
                content_type=att.get(type_key) or "application/octet-stream",
            )
        )
    return attachments


# ---------------------------------------------------------------------------
# Direct normalizer
# ---------------------------------------------------------------------------

def normalize_direct(payload: dict) -> InboundEmail:
    """
    Convert the native camelCase payload to InboundEmail.

    accountId, when present, names the owning account directly; otherwise the
    account is resolved from the recipient address.
    """
    return InboundEmail(
        sender_email=payload.get("senderAddress") or payload.get("from") or "",
        recipient_email=payload.get("recipient") or payload.get("to") or "",
        subject=payload.get("subject"),
        html_body=payload.get("htmlBody"),
        plain_body=payload.get("plainBody"),
        account_id=payload.get("accountId"),
        attachments=_attachments(payload.get("attachments"), "filename", "content", "contentType"),
    )


# ---------------------------------------------------------------------------
# Postmark normalizer
# ---------------------------------------------------------------------------

def normalize_postmark(payload: dict) -> InboundEmail:
    """
    Convert a Postmark inbound webhook payload to InboundEmail.

    Postmark uses PascalCase keys.
    """
    return InboundEmail(
        sender_email=payload.get("From", ""),
        recipient_email=payload.get("To", ""),
        subject=payload.get("Subject"),
        html_body=payload.get("HtmlBody"),
        plain_body=payload.get("TextBody"),
        attachments=_attachments(payload.get("Attachments"), "Name", "Content", "ContentType"),
    )


# ---------------------------------------------------------------------------
# Resend normalizer
# ---------------------------------------------------------------------------

def normalize_resend(payload: dict) -> InboundEmail:
    """
    Convert a Resend inbound webhook payload to InboundEmail.

    Resend uses snake_case keys. `to` may be a list; the first address wins.
    """
    to = payload.get("to", "")
    if isinstance(to, list):
        to = to[0] if to else ""
    return InboundEmail(
        sender_email=payload.get("from", ""),
        recipient_email=to,
        subject=payload.get("subject"),
        html_body=payload.get("html"),
        plain_body=payload.get("text"),
        attachments=_attachments(payload.get("attachments"), "filename", "content", "content_type"),
    )


# ---------------------------------------------------------------------------
# Registry and dispatcher
# ---------------------------------------------------------------------------

_NORMALIZERS: dict[str, Callable[[dict], InboundEmail]] = {
    "direct": normalize_direct,
    "postmark": normalize_postmark,
    "resend": normalize_resend,
}


def normalize_webhook(payload: dict, provider: str | None = None) -> InboundEmail:
    """
    Route to the correct normalizer based on the provider argument or the
    EMAIL_PROVIDER environment variable.

    Priority:
      1. provider argument
      2. EMAIL_PROVIDER env var
      3. Default: "direct"

    Raises ValueError for unknown provider names.
    """
    resolved = provider or os.getenv("EMAIL_PROVIDER", "direct")
    resolved = resolved.lower().strip()

    normalizer = _NORMALIZERS.get(resolved)
    if normalizer is None:
        raise ValueError(
            f"Unknown email provider {resolved!r}. "
            f"Supported providers: {sorted(_NORMALIZERS)}"
        )

    return normalizer(payload)
