"""
Vendor detection service.

Classifies an inbound email to a vendor code using the signal tiers defined
in the vendor registry:

  Tier 1 (domain)          sender domain matches a vendor domain; short-circuits
  Tier 2 (body_signature)  unique company strings appear in the body
  Tier 3 (keywords)        at least `required_matches` weak subject/body keywords

The first tier that yields a candidate at or above DETECTION_MIN_CONFIDENCE
decides. Anything else is UNKNOWN_VENDOR; detection never raises for an
unmatched email.

Forwarded emails: when a shop forwards a vendor email from a personal mailbox,
the outer sender is the shop. The body is scanned for addresses and a
vendor-domain address found there replaces the outer sender for tier 1.

Environment variables
---------------------
DETECTION_MIN_CONFIDENCE   Lowest confidence accepted as a match (default: 60).
"""

import logging
import os
import re
from typing import Optional

from app.models.vendor import DetectionResult, Vendor
from app.services.vendor_registry import get_registry

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"[a-z0-9._+-]+@([a-z0-9-]+(?:\.[a-z0-9-]+)+)", re.IGNORECASE)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_WS_PATTERN = re.compile(r"\s+")

# Mailbox providers that never identify a vendor
_PERSONAL_DOMAINS = {
    "gmail.com", "yahoo.com", "outlook.com", "hotmail.com",
    "icloud.com", "aol.com", "live.com", "me.com",
}


def _min_confidence() -> int:
    return int(os.getenv("DETECTION_MIN_CONFIDENCE", "60"))


def _normalize(text: Optional[str]) -> str:
    return _WS_PATTERN.sub(" ", (text or "").lower()).strip()


def extract_domain(address: Optional[str]) -> Optional[str]:
    """'Orders <orders@ModernOptical.com>' -> 'modernoptical.com'."""
    if not address:
        return None
    m = _EMAIL_PATTERN.search(address)
    return m.group(1).lower() if m else None


def _domain_matches(domain: str, pattern: str) -> bool:
    pattern = pattern.lower()
    return domain == pattern or domain.endswith("." + pattern)


def _find_vendor_by_domain(domain: Optional[str], vendors: list[Vendor]) -> Optional[tuple[Vendor, str]]:
    if not domain:
        return None
    for vendor in vendors:
        for pattern in vendor.domains:
            if _domain_matches(domain, pattern):
                return vendor, pattern
    return None


def find_original_sender(raw_content: str, vendors: list[Vendor]) -> Optional[str]:
    """
    Return the first address in the body whose domain belongs to a vendor.

    Personal mailbox domains are ignored. Returns None when no vendor
    address is present.
    """
    for m in _EMAIL_PATTERN.finditer(raw_content or ""):
        domain = m.group(1).lower()
        if domain in _PERSONAL_DOMAINS:
            continue
        if _find_vendor_by_domain(domain, vendors):
            return m.group(0).lower()
    return None


def detect(
    sender_address: str,
    raw_content: str,
    subject: Optional[str] = None,
    vendors: Optional[list[Vendor]] = None,
) -> DetectionResult:
    """
    Classify an email to a vendor.

    Args:
        sender_address: From header (may include a display name).
        raw_content:    Email body (HTML and/or plain text, concatenated is fine).
        subject:        Subject line, used by tier 3 only.
        vendors:        Vendor list; defaults to the process registry.

    Returns:
        DetectionResult. `vendor` is UNKNOWN_VENDOR when nothing matched
        with enough confidence.
    """
    vendors = vendors if vendors is not None else get_registry()
    threshold = _min_confidence()

    # --- Tier 1: sender domain (with forwarded-sender recovery) ---------------
    effective_sender = sender_address
    original = find_original_sender(raw_content, vendors)
    sender_match = _find_vendor_by_domain(extract_domain(sender_address), vendors)
    if sender_match is None and original:
        effective_sender = original
        sender_match = _find_vendor_by_domain(extract_domain(original), vendors)

    if sender_match:
        vendor, pattern = sender_match
        if vendor.domain_weight >= threshold:
            signals = {"matched_domain": pattern}
            if effective_sender != sender_address:
                signals["forwarded_by"] = sender_address
            return DetectionResult(
                vendor=vendor.code,
                vendor_name=vendor.name,
                confidence=vendor.domain_weight,
                method="domain",
                effective_sender=effective_sender,
                signals=signals,
            )

    plain = _TAG_PATTERN.sub(" ", raw_content or "")
    body = _normalize(plain) + " " + _normalize(raw_content)

    # --- Tier 2: strong body signatures ---------------------------------------
    best: Optional[tuple[Vendor, list[str]]] = None
    for vendor in vendors:
        hits = [s for s in vendor.body_signatures if _normalize(s) in body]
        if hits and (best is None or len(hits) > len(best[1])):
            best = (vendor, hits)

    if best and best[0].signature_weight >= threshold:
        vendor, hits = best
        return DetectionResult(
            vendor=vendor.code,
            vendor_name=vendor.name,
            confidence=vendor.signature_weight,
            method="body_signature",
            effective_sender=effective_sender,
            signals={"body_signatures": hits},
        )

    # --- Tier 3: weak keywords -------------------------------------------------
    subject_norm = _normalize(subject)
    best_kw: Optional[tuple[Vendor, list[str], list[str]]] = None
    for vendor in vendors:
        subject_hits = [k for k in vendor.subject_keywords if _normalize(k) in subject_norm]
        body_hits = [k for k in vendor.body_keywords if _normalize(k) in body]
        count = len(subject_hits) + len(body_hits)
        if count < vendor.required_matches:
            continue
        if best_kw is None or count > len(best_kw[1]) + len(best_kw[2]):
            best_kw = (vendor, subject_hits, body_hits)

    if best_kw and best_kw[0].keyword_weight >= threshold:
        vendor, subject_hits, body_hits = best_kw
        return DetectionResult(
            vendor=vendor.code,
            vendor_name=vendor.name,
            confidence=vendor.keyword_weight,
            method="keywords",
            effective_sender=effective_sender,
            signals={"subject_keywords": subject_hits, "body_keywords": body_hits},
        )

    logger.info(f"No vendor matched for sender {sender_address!r}")
    return DetectionResult(effective_sender=effective_sender)
