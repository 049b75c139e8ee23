"""
Parser for vendors whose order receipts are rendered by the jiecosystem
ordering portal (Modern Optical, Kenmark, L'Amy America).

Email structure:
  Subject  "<Vendor>: Your Receipt for Order Number 123456"
  Header   "Order Number: 123456", "Date: 01/15/2025", "Placed By Rep: Jane Doe"
  Customer <h3>Customer</h3><p>SHOP NAME (12345)<br>address...</p>
  Items    <tbody><tr> image | BRAND - MODEL | color | size | qty </tr>
           The image URL ends in the frame UPC:
           https://imageserver.jiecosystem.net/image/kenmark/715317146401

When no item table is present (plain-text only emails) the parser falls back
to one item per "BRAND - MODEL - COLOR SIZE QTY" line.
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, unquote, urlparse

from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.parsers.base import (
    VendorParser,
    cell_text,
    html_to_text,
    make_soup,
    normalize_size,
    parse_quantity,
    search,
)

logger = logging.getLogger(__name__)

_COLOR_ABBREVIATIONS = {
    "BLK": "Black", "BLACK": "Black",
    "GM": "Gunmetal", "GUN": "Gunmetal", "GUNMETAL": "Gunmetal",
    "SIL": "Silver", "SILVER": "Silver",
    "GLD": "Gold", "GOLD": "Gold",
    "BR": "Brown", "BRN": "Brown", "BROWN": "Brown",
    "BL": "Blue", "BLU": "Blue", "BLUE": "Blue",
    "GR": "Gray", "GRY": "Gray", "GRAY": "Gray", "GREY": "Grey",
    "GN": "Green", "GRN": "Green", "GREEN": "Green",
    "RD": "Red", "RED": "Red",
    "WH": "White", "WHITE": "White",
    "CL": "Clear", "CLEAR": "Clear",
    "TORT": "Tortoise", "TORTOISE": "Tortoise",
    "DEMI": "Demi",
    "NVY": "Navy", "NAVY": "Navy",
    "PK": "Pink", "PINK": "Pink",
    "BURG": "Burgundy", "BURGUNDY": "Burgundy",
    "CRY": "Crystal", "CRYST": "Crystal", "CRYSTAL": "Crystal",
}

_UPC_IN_URL = re.compile(r"/image/[A-Za-z0-9_\-]+/(\d{8,14})")
_COLOR_CODE_PREFIX = re.compile(r"^([A-Z0-9]{2,4})\s+(.+)$")
_TEXT_ITEM = re.compile(
    r"^(?P<brand>[A-Za-z][A-Za-z0-9 +&.']*?)\s+-\s+(?P<model>[A-Za-z0-9][A-Za-z0-9 .]*?)"
    r"\s+-\s+(?P<color>[A-Za-z][A-Za-z /_\-]*?)\s+(?P<size>\d{2}(?:[/\-]\d{2}(?:[/\-]\d{3})?)?)"
    r"\s+(?P<qty>\d+)\s*$"
)


def normalize_color(color: str) -> str:
    """'BLK/GLD' -> 'Black/Gold', 'matte tort' -> 'Matte Tortoise'."""
    def _part(word: str) -> str:
        upper = word.upper()
        if upper in _COLOR_ABBREVIATIONS:
            return _COLOR_ABBREVIATIONS[upper]
        return word[:1].upper() + word[1:].lower()

    pieces = []
    for chunk in color.strip().split("/"):
        pieces.append(" ".join(_part(w) for w in chunk.split()))
    return "/".join(pieces)


def _is_color_code(token: str, rest: str) -> bool:
    """'C01 Black' and 'BLK Black' carry a code prefix; 'RED TORT' does not."""
    if any(ch.isdigit() for ch in token):
        return True
    expansion = _COLOR_ABBREVIATIONS.get(token.upper())
    return bool(expansion) and rest.lower().startswith(expansion.lower())


def upc_from_image_url(src: Optional[str]) -> Optional[str]:
    """Pull the UPC out of a product image URL, unwrapping link-protection redirects."""
    if not src:
        return None
    url = unquote(src)
    wrapped = parse_qs(urlparse(url).query).get("a")
    if wrapped:
        url = unquote(wrapped[0])
    m = _UPC_IN_URL.search(url)
    return m.group(1) if m else None


class JiecosystemParser(VendorParser):
    key = "jiecosystem"

    def extract_header(self, content: EmailContent) -> OrderHeader:
        text = content.text or html_to_text(content.html)

        header = OrderHeader(
            order_number=search(
                [
                    r"Receipt for Order Number[:\s]*(\d+)",
                    r"Order\s*(?:Number|#)\s*:?\s*(\d+)",
                ],
                f"{content.subject}\n{text}",
            ),
            order_date=search([r"Date:\s*([\d/]+)"], text),
            rep_name=search([r"Placed By Rep:\s*([^\n]+)"], text),
        )

        customer_name, account_number = self._customer(content.html, text)
        header.customer_name = customer_name
        header.account_number = account_number
        return header

    def _customer(self, html: str, text: str) -> tuple[Optional[str], Optional[str]]:
        if html:
            soup = make_soup(html)
            for h3 in soup.find_all("h3"):
                if cell_text(h3).lower() != "customer":
                    continue
                block = h3.find_next("p")
                if block is None:
                    break
                m = re.search(r"([A-Z][A-Za-z0-9\s&.,'@-]+?)\s*\((\d{4,10})\)", block.get_text("\n"))
                if m:
                    return m.group(1).strip(), m.group(2)
        m = re.search(r"([A-Z][A-Z0-9\s&.,'@-]{3,60}?)\s*\((\d{4,10})\)", text)
        if m:
            return m.group(1).strip(), m.group(2)
        return None, search([r"Account\s*#?\s*:?\s*(\d{4,10})\b"], text)

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        items = self._table_items(content.html) if content.html else []
        if not items:
            items = self._text_items(content.text or html_to_text(content.html))
        return items

    def _table_items(self, html: str) -> list[RawLineItem]:
        items: list[RawLineItem] = []
        soup = make_soup(html)
        for row in soup.select("tbody tr"):
            cells = row.find_all("td")
            if len(cells) < 5:
                continue
            model_cell = cell_text(cells[1])
            if not model_cell or model_cell.lower() in ("model", "image"):
                continue

            if " - " in model_cell:
                brand, model = (p.strip() for p in model_cell.split(" - ", 1))
            else:
                brand, model = (self.vendor.default_brand or ""), model_cell

            color_raw = cell_text(cells[2])
            color_code = None
            m = _COLOR_CODE_PREFIX.match(color_raw)
            if m and _is_color_code(m.group(1), m.group(2)):
                color_code, color_raw = m.group(1), m.group(2)

            qty_text = cell_text(cells[4])
            quantity = parse_quantity(qty_text)
            img = cells[0].find("img")

            item = RawLineItem(
                brand=brand,
                model=model,
                color=normalize_color(color_raw) if color_raw else "",
                color_code=color_code,
                size=normalize_size(cell_text(cells[3])),
                quantity=quantity or 1,
                upc=upc_from_image_url(img.get("src") if img else None),
            )
            if quantity is None:
                item.needs_review = True
                item.review_notes.append(f"unreadable quantity {qty_text!r}")
            items.append(item)
        return items

    def _text_items(self, text: str) -> list[RawLineItem]:
        items: list[RawLineItem] = []
        for line in text.splitlines():
            line = line.strip()
            if "total" in line.lower():
                continue
            m = _TEXT_ITEM.match(line)
            if not m:
                continue
            items.append(
                RawLineItem(
                    brand=m.group("brand").strip(),
                    model=m.group("model").strip(),
                    color=normalize_color(m.group("color").replace("_", " ")),
                    size=normalize_size(m.group("size")),
                    quantity=int(m.group("qty")),
                )
            )
        if items:
            logger.info(f"{self.vendor.name}: parsed {len(items)} items from plain text")
        return items
