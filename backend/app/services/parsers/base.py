"""
Common parser contract and helpers shared by every vendor parser.

A parser turns an EmailContent into a ParseResult:

  ParseResult.order_header   order-level fields (order number, customer, ...)
  ParseResult.line_items     RawLineItem list; incomplete rows are kept and
                             flagged needs_review
  ParseResult.confidence     0.0–1.0
  ParseResult.status         ParseStatus.PARSED or ParseStatus.PARTIAL

Subclasses implement extract_header() and extract_items(); parse() applies
the shared validation so every vendor degrades the same way. ParseFailure is
raised only when the document is empty or yields no line items at all.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from bs4 import BeautifulSoup

from app.models.inbound_email import ParseStatus
from app.models.order import EmailContent, OrderHeader, RawLineItem, SizeSpec
from app.models.vendor import Vendor
from app.services.errors import ParseFailure

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    order_header: OrderHeader
    line_items: list[RawLineItem]
    confidence: float
    status: ParseStatus
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Size / number helpers
# ---------------------------------------------------------------------------

# 54/19/145, 54-19-145, 54□19-145, 54 19 145, 54/19 145
_SIZE_FULL = re.compile(r"(?<!\d)(\d{2})\s*[/\-x□\s]\s*(\d{2})\s*[/\-□\s]\s*(\d{3})(?!\d)")
# 54/19, 54-19, 54□19
_SIZE_EYE_BRIDGE = re.compile(r"(?<!\d)(\d{2})\s*[/\-□]\s*(\d{2})(?!\d)")
_SIZE_EYE_ONLY = re.compile(r"^\s*(\d{2})\s*$")
_QTY = re.compile(r"-?\d+")
_MONEY = re.compile(r"-?[\d,]*\.?\d+")


def normalize_size(raw: Optional[str]) -> SizeSpec:
    """
    Normalize the many ways vendors print a frame size into SizeSpec.

    >>> normalize_size("54/19/145").key
    '54-19-145'
    >>> normalize_size("52").eye_size
    '52'
    """
    raw = (raw or "").strip()
    if not raw:
        return SizeSpec()

    m = _SIZE_FULL.search(raw)
    if m:
        return SizeSpec(raw=raw, eye_size=m.group(1), bridge=m.group(2), temple=m.group(3))

    m = _SIZE_EYE_BRIDGE.search(raw)
    if m:
        return SizeSpec(raw=raw, eye_size=m.group(1), bridge=m.group(2))

    m = _SIZE_EYE_ONLY.match(raw)
    if m:
        return SizeSpec(raw=raw, eye_size=m.group(1))

    return SizeSpec(raw=raw)


def parse_quantity(text: Optional[str]) -> Optional[int]:
    """Return the first positive integer in text, or None when there is none."""
    m = _QTY.search(text or "")
    if not m:
        return None
    value = int(m.group(0))
    return value if value > 0 else None


def parse_money(text: Optional[str]) -> Optional[float]:
    """'$1,234.50' -> 1234.5. Returns None for blanks or unparseable text."""
    if not text:
        return None
    m = _MONEY.search(text.replace("$", "").replace("USD", ""))
    if not m:
        return None
    try:
        return float(Decimal(m.group(0).replace(",", "")))
    except InvalidOperation:
        logger.debug(f"parse_money: could not parse {text!r}")
        return None


def search(patterns: Iterable[str], text: str, flags: int = re.IGNORECASE) -> Optional[str]:
    """Return group 1 of the first pattern that matches text, stripped."""
    for pattern in patterns:
        m = re.search(pattern, text or "", flags)
        if m:
            value = m.group(1).strip()
            if value:
                return value
    return None


_ORDER_NUMBER_PATTERNS = [
    r"Order\s*(?:Number|No\.?|#|ID)\s*[:#]?\s*([A-Z0-9][A-Z0-9\-]{2,})",
    r"Confirmation\s*(?:Number|#)\s*[:#]?\s*([A-Z0-9][A-Z0-9\-]{2,})",
    r"PO\s*(?:Number|#)\s*[:#]?\s*([A-Z0-9][A-Z0-9\-]{2,})",
]
_DATE_PATTERNS = [
    r"(?:Order\s*)?Date\s*:?\s*(\d{1,2}/\d{1,2}/\d{2,4})",
    r"(?:Order\s*)?Date\s*:?\s*(\d{4}-\d{2}-\d{2})",
    r"(?:Order\s*)?Date\s*:?\s*([A-Z][a-z]+ \d{1,2},? \d{4})",
]


def extract_order_number(text: str) -> Optional[str]:
    return search(_ORDER_NUMBER_PATTERNS, text)


def extract_date(text: str) -> Optional[str]:
    return search(_DATE_PATTERNS, text)


# ---------------------------------------------------------------------------
# HTML helpers
# ---------------------------------------------------------------------------

def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def html_to_text(html: str) -> str:
    """Flatten HTML to text, one block element per line."""
    if not html:
        return ""
    soup = make_soup(html)
    for br in soup.find_all("br"):
        br.replace_with("\n")
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def cell_text(cell) -> str:
    return cell.get_text(" ", strip=True) if cell is not None else ""


# ---------------------------------------------------------------------------
# Parser base class
# ---------------------------------------------------------------------------

class VendorParser(ABC):
    """Base class for vendor parsers. One instance is bound to one Vendor."""

    key: str = ""

    def __init__(self, vendor: Vendor):
        self.vendor = vendor

    @abstractmethod
    def extract_header(self, content: EmailContent) -> OrderHeader:
        ...

    @abstractmethod
    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        ...

    def parse(self, content: EmailContent) -> ParseResult:
        if content.is_empty:
            raise ParseFailure("Email has no content to parse", self.vendor.code)

        header = self.extract_header(content)
        items = self.extract_items(content)
        if not items:
            raise ParseFailure(
                f"No line items recognised in {self.vendor.name} email", self.vendor.code
            )

        warnings: list[str] = []
        for item in items:
            _flag_incomplete(item)
        flagged = sum(1 for item in items if item.needs_review)
        if flagged:
            warnings.append(f"{flagged} of {len(items)} line items need review")
        if not header.order_number:
            warnings.append("order number not found")

        complete_ratio = (len(items) - flagged) / len(items)
        confidence = round(0.8 * complete_ratio + (0.2 if header.order_number else 0.0), 2)
        status = ParseStatus.PARSED if not warnings else ParseStatus.PARTIAL

        if warnings:
            logger.warning(f"{self.vendor.name} parse degraded: {'; '.join(warnings)}")

        return ParseResult(
            order_header=header,
            line_items=items,
            confidence=confidence,
            status=status,
            warnings=warnings,
        )


def _flag_incomplete(item: RawLineItem) -> None:
    missing = [
        name for name, value in (
            ("brand", item.brand),
            ("model", item.model),
            ("color", item.color),
            ("size", item.size.raw or item.size.eye_size),
        )
        if not value
    ]
    if missing:
        item.needs_review = True
        item.review_notes.append("missing " + ", ".join(missing))
