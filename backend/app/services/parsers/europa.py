"""
Parser for Europa (europaeye.com) customer receipts.

Email structure (original and forwarded copies share the table layout; the
original uses CSS classes, forwarded copies inline styles):
  Subject  "Customer Receipt: Your Receipt for Order #1484047"
  Header   "Order #: 1484047", "Order Placed By Rep: ...", "Date: 6/24/2025"
  Sections nested tables, each headed by a title cell:
             Customer     Account | Name | Address | ... | Phone
             Ship Address Name | Address | ...
             Order Items  Order Type | Model | Color | Size | Qty | Available Status
  Model    "Brand - Model"             American Optical - Adams
  Color    "ColorCode ColorName[ - Lens]"  1 Black - Green Nylon Polarized - ST
  Size     eye size only                52

Columns are located by their header labels, so an extra or reordered column
does not shift the fields.
"""

import logging
import re
from typing import Optional

from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.parsers.base import (
    VendorParser,
    cell_text,
    extract_date,
    html_to_text,
    make_soup,
    normalize_size,
    parse_quantity,
    search,
)

logger = logging.getLogger(__name__)

_COLOR_CODE = re.compile(r"^(\d+)\s+(.+)$")
_SKIPPED_MODELS = ("displays / pop",)


def section_rows(soup, title: str) -> list[dict[str, str]]:
    """
    Rows of the innermost table titled `title`, keyed by the lowercased
    labels of the row that follows the title row.

    Rows whose cell count differs from the label row (spacers, notes) are
    skipped.
    """
    for td in soup.find_all("td"):
        if td.find("table") is not None or cell_text(td) != title:
            continue
        table = td.find_parent("table")
        rows = table.find_all("tr")
        title_row = td.find_parent("tr")
        start = rows.index(title_row) + 1
        if start >= len(rows):
            return []

        labels = [cell_text(c).lower() for c in rows[start].find_all("td")]
        result = []
        for row in rows[start + 1:]:
            cells = row.find_all("td")
            if len(cells) != len(labels):
                continue
            result.append({label: cell_text(cell) for label, cell in zip(labels, cells)})
        return result
    return []


def split_model(model_cell: str) -> tuple[str, str]:
    """'American Optical - Adams' -> ('American Optical', 'Adams'); no brand -> ('', cell)."""
    if " - " not in model_cell:
        return "", model_cell.strip()
    brand, model = model_cell.split(" - ", 1)
    return brand.strip(), model.strip()


class EuropaParser(VendorParser):
    key = "europa"

    def extract_header(self, content: EmailContent) -> OrderHeader:
        text = content.text or html_to_text(content.html)
        header = OrderHeader(
            order_number=search([r"Order\s*#[:\s]*(\d+)"], f"{content.subject}\n{text}"),
            order_date=extract_date(text),
            rep_name=search([r"Order Placed By Rep[:\s]*([^\n]+)"], text),
        )

        if content.html:
            customers = section_rows(make_soup(content.html), "Customer")
            if customers:
                header.account_number = customers[0].get("account") or None
                header.customer_name = customers[0].get("name") or None
        return header

    def extract_items(self, content: EmailContent) -> list[RawLineItem]:
        if not content.html:
            return []
        rows = section_rows(make_soup(content.html), "Order Items")
        if not rows:
            logger.warning("Europa Order Items table not found")
            return []

        items: list[RawLineItem] = []
        for row in rows:
            model_cell = row.get("model", "")
            if not model_cell or model_cell.lower() in _SKIPPED_MODELS:
                continue

            brand, model = split_model(model_cell)
            color = row.get("color", "")
            color_code: Optional[str] = None
            m = _COLOR_CODE.match(color)
            if m:
                color_code, color = m.group(1), m.group(2)

            qty_text = row.get("qty", "")
            quantity = parse_quantity(qty_text)
            item = RawLineItem(
                brand=brand or self.vendor.default_brand or "",
                model=model,
                color=color,
                color_code=color_code,
                size=normalize_size(row.get("size")),
                quantity=quantity or 1,
            )
            if quantity is None:
                item.needs_review = True
                item.review_notes.append(f"unreadable quantity {qty_text!r}")
            availability = row.get("available status", "")
            if availability and availability.lower() != "available":
                item.review_notes.append(f"availability: {availability}")
            items.append(item)
        return items
