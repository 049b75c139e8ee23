"""
Parser for I-Deal Optics web order confirmations.

The email is a set of HTML tables:
  - label / value cells: "Web Order #", "Order Date", "Ordered By", ...
  - "Account Information" table: account #, contact, address, city, state, zip
  - items table headed "Style Name | Color | Size | Quantity | Notes"

Every frame is an Ideal Optics house brand, so brand comes from the vendor
record rather than the email.
"""

import logging
from typing import Optional

from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.parsers.base import (
    VendorParser,
    cell_text,
    make_soup,
    normalize_size,
    parse_quantity,
)

logger = logging.getLogger(__name__)

_HEADER_LABELS = {
    "web order #": "order_number",
    "order date": "order_date",
    "ordered by": "rep_name",
}


def _table_headed_by(soup, label: str):
    for td in soup.find_all(["td", "th"]):
        if cell_text(td).lower() == label.lower():
            return td.find_parent("table"), td.find_parent("tr")
    return None, None


class IdealOpticsParser(VendorParser):
    key = "ideal_optics"

    def extract_header(self, content: EmailContent) -> OrderHeader:
        soup = make_soup(content.html)
        values: dict[str, Optional[str]] = {}

        for td in soup.find_all("td"):
            label = cell_text(td).rstrip(":").strip().lower()
            field = _HEADER_LABELS.get(label)
            if not field or field in values:
                continue
            sibling = td.find_next_sibling("td")
            value = cell_text(sibling)
            if value:
                values[field] = value

        header = OrderHeader(**values)

        table, header_row = _table_headed_by(soup, "Account Information")
        if table is not None:
            for row in table.find_all("tr"):
                if row is header_row:
                    continue
                cells = row.find_all("td")
                if len(cells) < 5 or cells[0].find(["strong", "b"]):
                    continue
                account = cell_text(cells[0])
                if account and "account" not in account.lower() and len(account) < 20:
                    header.account_number = account
                    header.customer_name = cell_text(cells[1]) or None
                    break
        return header

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        soup = make_soup(content.html)
        table, header_row = _table_headed_by(soup, "Style Name")
        if table is None:
            logger.warning("Ideal Optics items table not found")
            return []

        items: list[RawLineItem] = []
        for row in table.find_all("tr"):
            if row is header_row:
                continue
            cells = row.find_all("td")
            if len(cells) < 4:
                continue
            style = cell_text(cells[0])
            if not style or "total" in style.lower() or style.lower() == "style name":
                continue

            qty_text = cell_text(cells[3])
            quantity = parse_quantity(qty_text)
            item = RawLineItem(
                brand=self.vendor.default_brand or self.vendor.name,
                model=style,
                color=cell_text(cells[1]),
                size=normalize_size(cell_text(cells[2])),
                quantity=quantity or 1,
            )
            if quantity is None:
                item.needs_review = True
                item.review_notes.append(f"unreadable quantity {qty_text!r}")
            if len(cells) > 4 and cell_text(cells[4]):
                item.review_notes.append(f"vendor note: {cell_text(cells[4])}")
            items.append(item)
        return items
