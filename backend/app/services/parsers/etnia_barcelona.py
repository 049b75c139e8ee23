"""
Parser for Etnia Barcelona sales order PDFs.

Header:  "Sales Order 1201039424", "Customer ID 12345", "Date 09/15/2025",
         "Billing Address:" followed by the shop name.

Each frame is a block of lines:

  09/15/2025100000000019343001          date + internal line reference
  4 RANIA 53O TQGR                      line no, model, size code, color code
  RANIA 53O TQGR - METAL OPTICAL        description, wraps over 1-3 lines
  TURQUOISE. GREEN 53-19-142 (O)        ... and ends with the size
  8434800123456                         13-digit UPC
  1.00 PC120.00 USD10.00%108.00 USD     qty, unit price, discount, line total
"""

import logging
import re
from typing import Optional

from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.parsers.base import VendorParser, normalize_size, parse_money, search

logger = logging.getLogger(__name__)

_BLOCK_START = re.compile(r"^(\d{2}/\d{2}/\d{4})(\d+)")
_UPC_LINE = re.compile(r"^\d{13}$")
_PRICE_LINE = re.compile(r"([\d.]+)\s*PC([\d.]+)\s*USD")
_COLOR_CODE = re.compile(r"([A-Z]{4,6})$")
_SIZE = re.compile(r"(\d{2}-\d{2}-\d{3})")

# "RANIA 53O TQGR - METAL OPTICAL TURQUOISE. GREEN 53-19-142"
_DESC_UPPER = re.compile(r"^.+?\s+-\s+[A-Z]+\s+(?:OPTICAL|SUN)\s+(?!Frame\s)(.+?)\s+\d{2}-\d{2}-\d{3}", re.I)
# "COCO Grey Havana - Acetate Optical Frame 51-16-140"
_DESC_FRAME = re.compile(r"^(.+?)\s+-\s+[A-Za-z]+\s+(?:Optical|Sun)\s+Frame\s+\d{2}-\d{2}-\d{3}", re.I)
# "ROADRUNNER 56O HVGR - acetate optical frame havana verde 56-16-148"
_DESC_LOWER = re.compile(r"^.+?\s+-\s+[a-z]+\s+(?:optical|sun)\s+frame\s+(.+?)\s+\d{2}-\d{2}-\d{3}", re.I)


def _clean_color(value: str) -> str:
    value = re.sub(r"\s*\(\w\)\s*$", "", value.strip())
    return value.rstrip(".").strip()


def split_description(model_line: str, description: str) -> tuple[str, str, str, Optional[str]]:
    """Return (model_name, color, size, color_code) for one frame block."""
    full_model = re.sub(r"^[\d\s]+", "", model_line).strip()
    model_name = re.split(r"\s+\d+", full_model)[0] or full_model.split(" ")[0]
    code = _COLOR_CODE.search(full_model)
    color_code = code.group(1) if code else None

    color = ""
    m = _DESC_FRAME.search(description)
    if m and not _DESC_LOWER.search(description):
        name_and_color = m.group(1).strip().split(None, 1)
        model_name = name_and_color[0]
        color = name_and_color[1] if len(name_and_color) > 1 else ""
    else:
        m = _DESC_LOWER.search(description) or _DESC_UPPER.search(description)
        if m:
            color = _clean_color(m.group(1))

    size = _SIZE.search(description)
    return model_name, color or (color_code or ""), size.group(1) if size else "", color_code


class EtniaBarcelonaParser(VendorParser):
    key = "etnia_barcelona"

    def _lines(self, content: EmailContent) -> list[str]:
        return [line.strip() for line in (content.pdf_text or content.text).splitlines()]

    def extract_header(self, content: EmailContent) -> OrderHeader:
        text = content.pdf_text or content.text
        return OrderHeader(
            order_number=search([r"Sales Order\s+(\d+)"], text),
            account_number=search([r"Customer ID\s+(\d+)"], text),
            order_date=search([r"Date\s+(\d{2}/\d{2}/\d{4})", r"^(\d{2}/\d{2}/\d{4})$"], text, re.I | re.M),
            customer_name=search([r"Billing Address:\s*\n\s*([A-Z][A-Z ]+)\s*\n"], text, 0),
        )

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        lines = self._lines(content)
        items: list[RawLineItem] = []
        brand = self.vendor.default_brand or self.vendor.name

        i = 0
        while i < len(lines):
            if not _BLOCK_START.match(lines[i]) or i + 1 >= len(lines):
                i += 1
                continue

            model_line = lines[i + 1]
            desc: list[str] = []
            j = i + 2
            while j < len(lines) and j < i + 6:
                line = lines[j]
                if _UPC_LINE.match(line) or re.match(r"^\d+\.\d+\s+PC", line) or _BLOCK_START.match(line):
                    break
                desc.append(line)
                j += 1

            upc = lines[j] if j < len(lines) and _UPC_LINE.match(lines[j]) else None
            price_line = lines[j + 1] if upc and j + 1 < len(lines) else (lines[j] if j < len(lines) else "")

            model_name, color, size, color_code = split_description(model_line, " ".join(desc))
            price = _PRICE_LINE.search(price_line)

            item = RawLineItem(
                brand=brand,
                model=model_name,
                color=color,
                color_code=color_code,
                size=normalize_size(size),
                upc=upc,
                quantity=int(float(price.group(1))) if price else 1,
                unit_cost=parse_money(price.group(2)) if price else None,
            )
            if not price:
                item.needs_review = True
                item.review_notes.append("pricing line not found, quantity assumed 1")
            items.append(item)
            i = j + 2 if upc else j + 1
        return items
