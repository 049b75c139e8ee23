"""
Parser for Marchon order confirmations.

Email structure:
  Subject  "Marchon Order Confirmation for <CUSTOMER>"
  Header   "Order ID: ...", "SALES REP: ...", "DATE: 2025-06-24"
  Customer "Customer<br>FAMILY TREE EYE CARE (3075807)<br>address..."
  Items    three-cell rows: image link | style + color<br>(54 eye) | qty
           header rows are grey (#B2B4B2). The image link points at
           detail.cfm?frame=SF2223N&coll=SF&pickColor=744&pickSize=5417,
           where pickSize is eye + bridge.

Marchon emails never name the brand; it is inferred from the style prefix
(SF -> Salvatore Ferragamo, CK -> Calvin Klein, ...).
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from app.models.order import EmailContent, OrderHeader, RawLineItem, SizeSpec
from app.services.parsers.base import (
    VendorParser,
    cell_text,
    html_to_text,
    make_soup,
    parse_quantity,
    search,
)

logger = logging.getLogger(__name__)

_BRAND_PREFIXES = {
    "SF": "Salvatore Ferragamo",
    "CKJ": "Calvin Klein Jeans",
    "CK": "Calvin Klein",
    "NIKE": "Nike",
    "NK": "Nike",
    "COL": "Columbia",
    "C": "Columbia",
    "DRAGON": "Dragon",
    "DG": "Dragon",
    "FLEXON": "Flexon",
    "FL": "Flexon",
    "LACOSTE": "Lacoste",
    "LIU": "Liu Jo",
    "LO": "Longchamp",
    "L": "Lacoste",
    "MNYC": "Marchon NYC",
    "MNY": "Marchon NYC",
    "MCM": "MCM",
    "NW": "Nine West",
    "SKAGA": "Skaga",
    "SEAN": "Sean John",
    "JOE": "Joe by Joseph Abboud",
    "JSK": "JS Kids",
    "CHLOE": "Chloe",
    "CH": "Chloe",
    "KARL": "Karl Lagerfeld",
    "KL": "Karl Lagerfeld",
    "DKNY": "DKNY",
    "DK": "Donna Karan",
}
# Longest prefix wins: CKJ before CK, LO before L.
_PREFIX_ORDER = sorted(_BRAND_PREFIXES, key=len, reverse=True)

_EYE_SIZE = re.compile(r"\((\d{2})\s*eye\)", re.IGNORECASE)
_HEADER_GREY = ("#b2b4b2", "178, 180, 178")


def brand_from_style(style: str) -> Optional[str]:
    upper = style.upper()
    for prefix in _PREFIX_ORDER:
        if upper.startswith(prefix):
            return _BRAND_PREFIXES[prefix]
    return None


def product_url_params(href: Optional[str]) -> dict[str, str]:
    """Query parameters of a product link, unwrapping link-protection redirects."""
    if not href:
        return {}
    query = parse_qs(urlparse(href).query)
    wrapped = query.get("a")
    if wrapped:
        query = parse_qs(urlparse(wrapped[0]).query)
    return {k: v[0] for k, v in query.items()}


def _is_header_row(row) -> bool:
    style = f"{row.get('bgcolor', '')} {row.get('style', '')}".lower()
    first = row.find("td")
    if first is not None:
        style += " " + (first.get("style") or "").lower()
    return any(grey in style for grey in _HEADER_GREY)


class MarchonParser(VendorParser):
    key = "marchon"

    def extract_header(self, content: EmailContent) -> OrderHeader:
        text = content.text or html_to_text(content.html)
        customer = re.search(r"Customer[:\s]*\n\s*([^(\n]+?)\s*\((\d+)\)", text, re.IGNORECASE)
        return OrderHeader(
            order_number=search([r"Order ID[:\s]*([A-Z0-9]+)"], f"{content.subject}\n{text}"),
            order_date=search([r"DATE[:\s]*(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{2,4})"], text),
            rep_name=search([r"SALES REP[:\s]*([^\n]+)"], text),
            customer_name=customer.group(1).strip() if customer else None,
            account_number=customer.group(2) if customer else None,
        )

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        if not content.html:
            return []

        items: list[RawLineItem] = []
        for row in make_soup(content.html).find_all("tr"):
            cells = row.find_all("td", recursive=False)
            if len(cells) != 3 or _is_header_row(row):
                continue
            quantity = parse_quantity(cell_text(cells[2]))
            if quantity is None:
                continue
            item = self._parse_style_cell(cells[1], quantity)
            if item is None:
                continue

            link = cells[0].find("a")
            params = product_url_params(link.get("href") if link is not None else None)
            item.color_code = params.get("pickColor") or None
            pick_size = params.get("pickSize", "")
            if len(pick_size) == 4 and pick_size.isdigit():
                item.size.bridge = pick_size[2:]
                item.size.eye_size = item.size.eye_size or pick_size[:2]
            items.append(item)
        return items

    def _parse_style_cell(self, cell, quantity: int) -> Optional[RawLineItem]:
        for br in cell.find_all("br"):
            br.replace_with("\n")
        lines = [line.strip() for line in cell.get_text("\n").splitlines() if line.strip()]
        if not lines:
            return None

        joined = " ".join(lines)
        size_match = _EYE_SIZE.search(joined)
        style_line = _EYE_SIZE.sub("", lines[0]).strip() or joined
        if size_match is None and len(lines) < 2:
            # Not an item row: item rows always carry the "(54 eye)" line.
            return None

        model, _, color = style_line.partition(" ")
        brand = brand_from_style(model) or self.vendor.default_brand or ""
        item = RawLineItem(
            brand=brand,
            model=model,
            color=color.strip(),
            size=SizeSpec(
                raw=size_match.group(0) if size_match else "",
                eye_size=size_match.group(1) if size_match else None,
            ),
            quantity=quantity,
        )
        if not brand:
            item.review_notes.append(f"brand not recognised from style {model!r}")
        return item
