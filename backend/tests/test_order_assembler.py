"""
OrderAssembler tests: order dedup, row folding and idempotent re-delivery.

Runs against the in-memory FakeSupabase from conftest, which enforces the
same unique constraints as the database.
"""

import os

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoiYW5vbiJ9.test")

from app.models.catalog import CatalogEntry, EnrichedLineItem
from app.models.order import EmailContent, OrderHeader, RawLineItem
from app.services.order_assembler import assemble, fallback_order_number, fold_duplicates
from app.services.parsers import get_parser
from app.services.parsers.base import normalize_size
from app.services.vendor_registry import get_vendor

from conftest import USER_ID, OTHER_USER_ID
import sample_emails as samples


def _line(model="MT100", color="Black", size="52/18/140", qty=1, brand="Modern Times", entry=None):
    item = RawLineItem(brand=brand, model=model, color=color, size=normalize_size(size), quantity=qty)
    return EnrichedLineItem(item=item, entry=entry, miss_reason=None if entry else "enrichment_not_configured")


def _entry(**overrides):
    fields = dict(
        cache_key="k",
        vendor="modern_optical",
        brand="modern times",
        model="mt100",
        color="black",
        eye_size="52",
        bridge="18",
        temple="140",
        full_size="52-18-140",
        a="52",
        upc="715317146401",
        wholesale_price=45.0,
        confidence=100,
    )
    fields.update(overrides)
    return CatalogEntry(**fields)


def _modern_optical_lines():
    parsed = get_parser(get_vendor("modern_optical")).parse(EmailContent(html=samples.MODERN_OPTICAL_HTML))
    return parsed.order_header, [EnrichedLineItem(item=i) for i in parsed.line_items]


class TestFoldDuplicates:
    def test_identical_rows_sum_quantity(self):
        folded = fold_duplicates([_line(qty=2), _line(qty=2), _line(model="MT200")])
        assert [(l.item.model, l.item.quantity) for l in folded] == [("MT100", 4), ("MT200", 1)]

    def test_key_ignores_case_and_spacing(self):
        folded = fold_duplicates([_line(color="Black"), _line(color=" BLACK ")])
        assert len(folded) == 1
        assert folded[0].item.quantity == 2

    def test_enriched_duplicate_supplies_entry(self):
        folded = fold_duplicates([_line(), _line(entry=_entry())])
        assert folded[0].entry is not None
        assert folded[0].miss_reason is None

    def test_inputs_are_not_mutated(self):
        first = _line(qty=2)
        fold_duplicates([first, _line(qty=3)])
        assert first.item.quantity == 2


class TestAssemble:
    def test_creates_order_and_pending_items(self, fake_db):
        header, lines = _modern_optical_lines()
        result = assemble(fake_db, USER_ID, "modern_optical", header, lines, email_id="e1", content_hash="abc")

        assert result.order.order_number == "12345"
        assert result.order.rep_name == "Jane Doe"
        assert result.created == 2
        assert result.merged is False

        rows = fake_db.rows("inventory")
        assert len(rows) == 2
        assert all(r["status"] == "pending" for r in rows)
        assert all(r["email_id"] == "e1" for r in rows)
        modern = next(r for r in rows if r["model"] == "MT100")
        assert modern["quantity"] == 4
        assert modern["size"] == "52-18-140"

    def test_reassembly_is_idempotent(self, fake_db):
        header, lines = _modern_optical_lines()
        assemble(fake_db, USER_ID, "modern_optical", header, lines, email_id="e1")
        again = assemble(fake_db, USER_ID, "modern_optical", header, lines, email_id="e1")

        assert len(fake_db.rows("orders")) == 1
        assert len(fake_db.rows("inventory")) == 2
        assert again.created == 0
        assert again.updated == 0
        assert again.merged is True
        assert len(again.items) == 2

    def test_reassembly_keeps_status(self, fake_db):
        header = OrderHeader(order_number="A1")
        first = assemble(fake_db, USER_ID, "europa", header, [_line()])
        item_id = first.items[0].id
        fake_db.tables["inventory"][0]["status"] = "current"

        again = assemble(fake_db, USER_ID, "europa", header, [_line(qty=3)])

        assert again.updated == 1
        row = fake_db.rows("inventory", id=item_id)[0]
        assert row["status"] == "current"
        assert row["quantity"] == 3

    def test_merge_fills_missing_header_fields(self, fake_db):
        assemble(fake_db, USER_ID, "europa", OrderHeader(order_number="A1"), [_line()])
        assemble(
            fake_db, USER_ID, "europa",
            OrderHeader(order_number="A1", customer_name="EYE CARE CENTER", rep_name="John"),
            [_line()],
        )
        assemble(fake_db, USER_ID, "europa", OrderHeader(order_number="A1", rep_name="Someone Else"), [_line()])

        order = fake_db.rows("orders")[0]
        assert order["customer_name"] == "EYE CARE CENTER"
        assert order["rep_name"] == "John"

    def test_new_lines_on_redelivery_are_added(self, fake_db):
        header = OrderHeader(order_number="A1")
        assemble(fake_db, USER_ID, "europa", header, [_line()])
        result = assemble(fake_db, USER_ID, "europa", header, [_line(), _line(model="MT200")])

        assert result.created == 1
        assert len(result.items) == 2

    def test_enrichment_applied_to_unenriched_row(self, fake_db):
        header = OrderHeader(order_number="A1")
        assemble(fake_db, USER_ID, "modern_optical", header, [_line()])
        assemble(fake_db, USER_ID, "modern_optical", header, [_line(entry=_entry())])

        row = fake_db.rows("inventory")[0]
        assert row["enriched"] is True
        assert row["full_size"] == "52-18-140"
        assert row["upc"] == "715317146401"
        assert row["wholesale_price"] == 45.0
        assert row["enrichment_confidence"] == 100

    def test_enriched_row_is_not_overwritten(self, fake_db):
        header = OrderHeader(order_number="A1")
        assemble(fake_db, USER_ID, "modern_optical", header, [_line(entry=_entry())])
        assemble(fake_db, USER_ID, "modern_optical", header, [_line(entry=_entry(upc="other", confidence=80))])

        row = fake_db.rows("inventory")[0]
        assert row["upc"] == "715317146401"
        assert row["enrichment_confidence"] == 100

    def test_missing_order_number_uses_content_hash(self, fake_db):
        result = assemble(fake_db, USER_ID, "europa", OrderHeader(), [_line()], content_hash="0123456789abcdef")
        assert result.order.order_number == "UNKNOWN-0123456789"
        assert fallback_order_number("0123456789abcdef") == "UNKNOWN-0123456789"

        again = assemble(fake_db, USER_ID, "europa", OrderHeader(), [_line()], content_hash="0123456789abcdef")
        assert again.order.id == result.order.id

    def test_orders_are_scoped_per_account(self, fake_db):
        header = OrderHeader(order_number="A1")
        mine = assemble(fake_db, USER_ID, "europa", header, [_line()])
        theirs = assemble(fake_db, OTHER_USER_ID, "europa", header, [_line()])

        assert mine.order.id != theirs.order.id
        assert len(fake_db.rows("orders")) == 2

    def test_same_number_different_vendor_is_a_new_order(self, fake_db):
        header = OrderHeader(order_number="A1")
        a = assemble(fake_db, USER_ID, "europa", header, [_line()])
        b = assemble(fake_db, USER_ID, "safilo", header, [_line()])
        assert a.order.id != b.order.id

    def test_lost_order_insert_race_reuses_winner(self, fake_db):
        """A concurrent request inserts the same order between our read and our insert."""
        state = {"done": False}

        def race(table, action):
            if table == "orders" and action == "insert" and not state["done"]:
                state["done"] = True
                fake_db.seed("orders", {
                    "account_id": USER_ID, "vendor": "europa", "order_number": "A1", "archived": False,
                })

        fake_db.hooks.append(race)
        result = assemble(fake_db, USER_ID, "europa", OrderHeader(order_number="A1"), [_line()])

        assert len(fake_db.rows("orders")) == 1
        assert result.merged is True
        assert len(fake_db.rows("inventory")) == 1

    def test_lost_item_insert_race_skips_existing(self, fake_db):
        state = {"done": False}
        header = OrderHeader(order_number="A1")

        def race(table, action):
            if table == "inventory" and action == "insert" and not state["done"]:
                state["done"] = True
                order_id = fake_db.rows("orders")[0]["id"]
                fake_db.seed("inventory", {
                    "account_id": USER_ID, "order_id": order_id, "vendor": "europa",
                    "brand": "Modern Times", "model": "MT100", "color": "Black",
                    "size": "52-18-140", "quantity": 1, "status": "pending",
                })

        fake_db.hooks.append(race)
        assemble(fake_db, USER_ID, "europa", header, [_line(), _line(model="MT200")])

        models = sorted(r["model"] for r in fake_db.rows("inventory"))
        assert models == ["MT100", "MT200"]
