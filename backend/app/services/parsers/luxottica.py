"""
Parser for Luxottica (my.luxottica.com) order confirmations.

The order is a <pre> block. Once flattened to lines it reads:

  Agent reference: JOHN SMITH (1234)
  Customer Reference: VISION CENTER
  Customer code: 0001234567
  Cart number: 9876543
  Order date: 2025-01-15
  BURBERRY (3)                          <- brand header
  0BE2345 - DOUGLAS (2)                 <- model header (optional collection)
  3001 - BLACK                          <- color line
  54 8056597123456 USD 98.00 1 2025-01-20   <- size, UPC, price, qty, ship date
  ...
  Total Number of Items: 3

Brand headers contain letters only; model headers carry the style code.
"""

import logging
import re
from typing import Optional

from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.parsers.base import (
    VendorParser,
    html_to_text,
    make_soup,
    normalize_size,
    parse_money,
    search,
)

logger = logging.getLogger(__name__)

_BRAND_HEADER = re.compile(r"^([A-Z][A-Z\s&\-]*?)\s*\((\d+)\)$")
_MODEL_HEADER = re.compile(r"^(.+?)\s*(?:-\s*([^(]+?))?\s*\((\d+)\)$")
_COLOR_LINE = re.compile(r"^(\w+)\s*-\s*(.+)$")
_VARIANT_LINE = re.compile(r"^(\d{2})\s+(\d{8,14})\s+USD\s+([\d,]+\.\d{2})\s+(\d+)(?:\s+([\d\-]+))?")

_BRAND_ALIASES = {
    "DOLCE E GABBANA": "DOLCE & GABBANA",
    "D&G": "DOLCE & GABBANA",
    "RAYBAN": "RAY-BAN",
    "POLO": "POLO RALPH LAUREN",
}


def _brand_name(raw: str) -> str:
    name = " ".join(raw.split()).upper()
    return _BRAND_ALIASES.get(name, name)


class LuxotticaParser(VendorParser):
    key = "luxottica"

    def _lines(self, content: EmailContent) -> list[str]:
        text = ""
        if content.html:
            pre = make_soup(content.html).find("pre")
            text = html_to_text(str(pre)) if pre is not None else html_to_text(content.html)
        if not text:
            text = content.text
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        for i, line in enumerate(lines):
            if line.lower().startswith("total number of items"):
                return lines[:i]
        return lines

    def extract_header(self, content: EmailContent) -> OrderHeader:
        text = "\n".join(self._lines(content)) or content.text
        return OrderHeader(
            order_number=search([r"Cart number:\s*(\d+)"], text),
            customer_name=search([r"Customer Reference:\s*([^\n]+)"], text),
            account_number=search([r"Customer code:\s*(\d+)"], text),
            order_date=search([r"Order date:\s*([\d\-/]+)"], text),
            rep_name=search([r"Agent reference:\s*([^(\n]+)"], text),
        )

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        items: list[RawLineItem] = []
        brand: Optional[str] = None
        model: Optional[str] = None
        color_code: Optional[str] = None
        color: Optional[str] = None

        for line in self._lines(content):
            brand_m = _BRAND_HEADER.match(line)
            if brand_m:
                brand, model, color_code, color = _brand_name(brand_m.group(1)), None, None, None
                continue

            model_m = _MODEL_HEADER.match(line)
            if model_m and brand:
                model, color_code, color = model_m.group(1).strip(), None, None
                continue

            variant_m = _VARIANT_LINE.match(line)
            if variant_m:
                if not (brand and model):
                    logger.warning(f"Luxottica variant line outside a model section: {line!r}")
                    continue
                item = RawLineItem(
                    brand=brand,
                    model=model,
                    color=color or "",
                    color_code=color_code,
                    size=normalize_size(variant_m.group(1)),
                    upc=variant_m.group(2),
                    unit_cost=parse_money(variant_m.group(3)),
                    quantity=int(variant_m.group(4)) or 1,
                )
                items.append(item)
                continue

            color_m = _COLOR_LINE.match(line)
            if color_m and model:
                color_code, color = color_m.group(1), color_m.group(2).strip()

        return items
