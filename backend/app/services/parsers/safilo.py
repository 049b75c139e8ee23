"""
Parser for Safilo order confirmations (PDF attachment).

The PDF text puts header labels and values in separate runs:

  Account Number:
  EyeRep Order Number:
  Order Reference Number:
  1111708
  5002949163
  113006337

Frame lines follow "Item Description" and may wrap onto the next lines:

  CARRERA 8869 807 BLACK 54/18 145
  KS MADRID G 086 HAVANA 52/18
  140

The first token(s) identify the brand family; see _BRAND_RULES.
"""

import logging
import re
from typing import Optional

from app.models.order import EmailContent, OrderHeader, RawLineItem, SizeSpec
from app.services.parsers.base import VendorParser, normalize_size, search

logger = logging.getLogger(__name__)

_FRAME_START = re.compile(r"^(CARRERA|VICTORY|CARDUC|CH\s|KS\s|CATRINA|JOLIET|MIS\s)")
_SECTION_STOP = re.compile(r"^(CARRERA|VICTORY|CARDUC|CH\s|KS\s|CATRINA|JOLIET|MIS\s|KSP\s|Total)")
_DATE_LINE = re.compile(r"^\d+/\d+/\d+")
_DATE_STAMP = re.compile(r"\d{5}/\d{2}/\d{4}\.?")
_SIZE = re.compile(r"(\d{2})/(\d{2})\s+(\d{3})")

# prefix -> (brand, number of leading tokens that form the model)
# CARRERA is special-cased: its model is the single token after the prefix.
_BRAND_RULES = [
    ("VICTORY ", "CARRERA", 3),
    ("CARDUC ", "CARRERA DUCATI", 2),
    ("CH ", "CHESTERFIELD", 2),
    ("KS ", "KATE SPADE", 3),
    ("CATRINA", "KATE SPADE", 1),
    ("JOLIET", "KATE SPADE", 1),
    ("MIS ", "MISSONI", 2),
]


def parse_frame_line(line: str) -> Optional[RawLineItem]:
    """
    Turn one (joined) Safilo frame line into a RawLineItem.

    A line the layout rules cannot fully split (no size, too few tokens) still
    yields an item with whatever was read, so the base parser flags it for
    review. Returns None only for a blank line.
    """
    line = " ".join(line.split())
    line = " ".join(_DATE_STAMP.sub("", line).split())
    if not line:
        return None

    m = _SIZE.search(line)
    before = line[: m.start()].strip() if m else line
    parts = before.split()

    if before.startswith("CARRERA "):
        brand, model, rest = "CARRERA", parts[1], parts[2:]
    else:
        for prefix, brand, model_tokens in _BRAND_RULES:
            if before.startswith(prefix):
                break
        else:
            brand, model_tokens = (parts[0] if parts else ""), 2
        model, rest = " ".join(parts[:model_tokens]), parts[model_tokens:]

    color_code = rest[0] if rest else None
    color = " ".join(" ".join(rest[1:]).replace("_", " ").split())

    item = RawLineItem(
        brand=brand,
        model=model,
        color=color,
        color_code=color_code,
        size=normalize_size(m.group(0)) if m else SizeSpec(raw=""),
        quantity=1,
    )
    if m is None:
        item.review_notes.append(f"no size on frame line {line!r}")
    return item


class SafiloParser(VendorParser):
    key = "safilo"

    def _lines(self, content: EmailContent) -> list[str]:
        return [line.strip() for line in (content.pdf_text or content.text).splitlines()]

    def extract_header(self, content: EmailContent) -> OrderHeader:
        lines = self._lines(content)
        text = "\n".join(lines)
        header = OrderHeader()

        for i, line in enumerate(lines):
            if line == "Account Number:" and i + 5 < len(lines):
                header.account_number = lines[i + 3] or None
                header.order_number = lines[i + 5] or None
                break
        if not header.order_number:
            header.order_number = search([r"Order Reference Number[:\s]*(\d+)"], text)
        if not header.account_number:
            header.account_number = search([r"Account[^\n\d]*(\d{6,})"], text)

        header.order_date = search([r"Date:\s*(\d{2}/\d{2}/\d{4})"], text)
        if not header.order_date:
            for i, line in enumerate(lines):
                if line == "Date:" and i + 1 < len(lines) and re.match(r"\d{2}/\d{2}/\d{4}", lines[i + 1]):
                    header.order_date = lines[i + 1]
                    break

        customer = re.search(r"Customer:\s*([^(]+)\s*\(([^)]+)\)", text)
        if customer:
            header.customer_name = customer.group(1).strip()

        for i, line in enumerate(lines):
            if line == "Placed By:" and i + 2 < len(lines):
                placed = re.match(r"^(\d+)\s+(.+)$", lines[i + 2])
                header.rep_name = placed.group(2) if placed else lines[i + 2] or None
                break
        return header

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        lines = self._lines(content)
        start = next((i + 1 for i, line in enumerate(lines) if "Item Description" in line), None)
        if start is None:
            logger.warning("Safilo PDF has no 'Item Description' section")
            return []

        items: list[RawLineItem] = []
        i = start
        while i < len(lines):
            line = lines[i]
            if not line or "Total" in line or "*Date Available" in line or not _FRAME_START.match(line):
                i += 1
                continue

            joined = line
            j = i + 1
            while j < len(lines) and j < i + 4:
                nxt = lines[j]
                if _SECTION_STOP.match(nxt) or _DATE_LINE.match(nxt):
                    break
                if re.fullmatch(r"\d{3}", nxt) or (len(nxt) > 3 and not nxt.isdigit()):
                    joined += " " + nxt
                    j += 1
                    continue
                break

            item = parse_frame_line(joined)
            if item is not None:
                if not item.size.raw:
                    logger.warning(f"Safilo frame line without a size: {joined!r}")
                items.append(item)
            i = j
        return items
