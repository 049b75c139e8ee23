"""
Line-oriented parser for vendors without a dedicated format: any registry
entry pointing at "generic_text", and the fallback for unknown parser keys.

Each candidate line (a text line, or an HTML table row with its cells joined)
is matched against:

    BRAND - MODEL COLOR EE/BB/TTT QTY
    Acme Frames - AF100 Black 52-20-145 2

Brand comes from the line when present, else from vendor.default_brand.
"""

import logging
import re

from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.parsers.base import (
    VendorParser,
    cell_text,
    extract_date,
    extract_order_number,
    html_to_text,
    make_soup,
    normalize_size,
    search,
)

logger = logging.getLogger(__name__)

_SIZE = r"\d{2}(?:\s*[/\-□]\s*\d{2}(?:\s*[/\-□ ]\s*\d{3})?)?"
_BRANDED_LINE = re.compile(
    rf"^(?P<brand>[A-Za-z][\w &.'+]*?)\s+-\s+(?P<model>[A-Za-z0-9][\w.\-]*)\s+(?P<color>.+?)"
    rf"\s+(?P<size>{_SIZE})\s+(?:x\s*)?(?P<qty>\d{{1,3}})$"
)
_UNBRANDED_LINE = re.compile(
    rf"^(?P<model>[A-Z]{{1,4}}\d[\w\-]*)\s+(?P<color>.+?)\s+(?P<size>{_SIZE})\s+(?:x\s*)?(?P<qty>\d{{1,3}})$"
)


class GenericTextParser(VendorParser):
    key = "generic_text"

    def _row_lines(self, html: str) -> list[str]:
        lines: list[str] = []
        for row in make_soup(html).find_all("tr"):
            if row.find("table"):
                continue
            joined = " ".join(t for t in (cell_text(c) for c in row.find_all(["td", "th"])) if t)
            if joined:
                lines.append(joined)
        return lines

    def _text_lines(self, content: EmailContent) -> list[str]:
        text = content.text or html_to_text(content.html) or content.pdf_text
        return [line.strip() for line in text.splitlines() if line.strip()]

    def extract_header(self, content: EmailContent) -> OrderHeader:
        text = content.text or html_to_text(content.html) or content.pdf_text
        haystack = f"{content.subject}\n{text}"
        customer = re.search(r"Customer[:\s]*\n?\s*([^(\n]+?)\s*\((\d{4,10})\)", text, re.I)
        return OrderHeader(
            order_number=search([r"Order\s*#[:\s]*(\d+)", r"Order ID[:\s]*([A-Z0-9]+)"], haystack)
            or extract_order_number(haystack),
            order_date=extract_date(text),
            rep_name=search([r"Order Placed By Rep[:\s]*([^\n]+)", r"Sales Rep[:\s]*([^\n]+)"], text),
            customer_name=customer.group(1).strip() if customer else None,
            account_number=customer.group(2) if customer else None,
        )

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        items = self._match_lines(self._row_lines(content.html)) if content.html else []
        if not items:
            items = self._match_lines(self._text_lines(content))
        return items

    def _match_lines(self, lines: list[str]) -> list[RawLineItem]:
        items: list[RawLineItem] = []
        for line in lines:
            if "total" in line.lower():
                continue
            m = _BRANDED_LINE.match(line)
            brand = m.group("brand").strip() if m else None
            if m is None:
                m = _UNBRANDED_LINE.match(line)
            if m is None:
                continue
            items.append(
                RawLineItem(
                    brand=brand or self.vendor.default_brand or "",
                    model=m.group("model").strip(),
                    color=m.group("color").strip(),
                    size=normalize_size(m.group("size")),
                    quantity=int(m.group("qty")) or 1,
                )
            )
        return items
