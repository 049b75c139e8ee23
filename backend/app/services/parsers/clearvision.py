"""
Parser for ClearVision Optical "New CVOGo Order" emails.

  Subject      "Jane Doe - New CVOGo Order: 123456"
  Header text  "Order #: 123456", "Customer ID: 4567", "Date: 01/15/2025"
  Bill-to      <th>Bill-To</th><th>Ship-To</th> table; first line is the shop
  Items        Line No. | (image) | SKU | Model | Description | Qty | List Price

The description carries brand prefix, model, color and size:
  "ADV MT69 GUNMETAL MATTE/GREEN 54/17/145"
"""

import logging
import re
from typing import Optional

from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.parsers.base import (
    VendorParser,
    cell_text,
    html_to_text,
    make_soup,
    normalize_size,
    parse_money,
    parse_quantity,
    search,
)

logger = logging.getLogger(__name__)

# Longest prefixes first so IZX wins over IZ and JMC over JM
BRAND_PREFIXES = {
    "IZX": "Izod Xtreme",
    "JMC": "Jessica McClintock",
    "ADV": "Advantage",
    "ASP": "Aspire",
    "CVO": "CVO",
    "DD": "Dilli Dalli",
    "IZ": "Izod",
    "JM": "Jessica McClintock",
    "PT": "Project Runway",
    "OP": "OP Ocean Pacific",
    "BD": "BD Eyewear",
}

_SIZE_AT_END = re.compile(r"(\d{2})[/\-](\d{1,2})[/\-](\d{2,3})$")


def brand_from_sku(sku: str) -> Optional[str]:
    upper = sku.upper()
    for prefix, name in BRAND_PREFIXES.items():
        if upper.startswith(prefix):
            return name
    return None


def split_description(description: str, model: str) -> tuple[Optional[str], str, str]:
    """
    'ADV MT69 GUNMETAL MATTE/GREEN 54/17/145', 'MT69'
        -> ('Advantage', 'GUNMETAL MATTE/GREEN', '54/17/145')
    """
    rest = description.strip()
    size = ""
    m = _SIZE_AT_END.search(rest)
    if m:
        size = m.group(0)
        rest = rest[: m.start()].strip()

    brand = None
    for prefix, name in BRAND_PREFIXES.items():
        if rest.upper().startswith(prefix + " "):
            brand = name
            rest = rest[len(prefix) + 1:].strip()
            break

    if model and rest.upper().startswith(model.upper()):
        rest = rest[len(model):].strip()
    return brand, rest, size


class ClearVisionParser(VendorParser):
    key = "clearvision"

    def extract_header(self, content: EmailContent) -> OrderHeader:
        text = content.text or html_to_text(content.html)
        haystack = f"{content.subject}\n{text}"
        header = OrderHeader(
            order_number=search(
                [r"Order\s*(?:Reference\s*)?#[:\s]*(\d+)", r"CVOGo\s*Order[:\s]*(\d+)"],
                haystack,
            ),
            account_number=search([r"Customer\s*ID[:\s]*(\d+)"], text),
            order_date=search([r"Date[:\s]*([\d/]+)"], text),
            rep_name=search([r"^\s*([A-Za-z]+\s+[A-Za-z]+)\s*-\s*New\s*CVOGo"], content.subject, re.I | re.M),
        )
        header.customer_name = self._bill_to_name(content.html)
        return header

    def _bill_to_name(self, html: str) -> Optional[str]:
        soup = make_soup(html)
        for table in soup.find_all("table"):
            labels = [cell_text(th).lower() for th in table.find_all("th")]
            if not any("bill-to" in label for label in labels):
                continue
            rows = table.find_all("tr")
            if len(rows) < 2:
                continue
            cells = rows[1].find_all("td")
            if not cells:
                continue
            lines = html_to_text(str(cells[0])).splitlines()
            if lines:
                return lines[0]
        return None

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        soup = make_soup(content.html)
        items: list[RawLineItem] = []

        for table in soup.find_all("table"):
            rows = table.find_all("tr")
            if not rows:
                continue
            header_cells = rows[0].find_all("th") or rows[0].find_all("td")
            labels = [cell_text(c).lower() for c in header_cells]
            if "sku" not in labels or "model" not in labels or not any("qty" in l for l in labels):
                continue

            for row in rows[1:]:
                cells = row.find_all("td")
                if len(cells) < 6 or cells[0].get("colspan"):
                    continue
                sku = cell_text(cells[2])
                model = cell_text(cells[3])
                if not sku or not model:
                    continue

                description = cell_text(cells[4])
                brand, color, size = split_description(description, model)
                qty_text = cell_text(cells[5])
                quantity = parse_quantity(qty_text)

                item = RawLineItem(
                    brand=brand or brand_from_sku(sku) or self.vendor.default_brand or "",
                    model=model,
                    color=color,
                    size=normalize_size(size),
                    quantity=quantity or 1,
                    unit_cost=parse_money(cell_text(cells[6])) if len(cells) > 6 else None,
                )
                if quantity is None:
                    item.needs_review = True
                    item.review_notes.append(f"unreadable quantity {qty_text!r}")
                items.append(item)
            if items:
                break

        return items
