"""
InventoryStateMachine tests.

Covers every allowed edge, rejection of the others, partial and concurrent
confirmations, and the order / brand / vendor bulk operations.
"""

import os

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoiYW5vbiJ9.test")

from app.models.inventory import ItemStatus
from app.services import inventory_state as sm
from app.services.errors import (
    ConcurrentConfirmationConflict,
    InvalidTransition,
    ItemNotFound,
    OrderNotFound,
)

from conftest import USER_ID, OTHER_USER_ID


def _order(db, account_id=USER_ID, order_number="A1", vendor="safilo"):
    return db.seed("orders", {
        "account_id": account_id, "vendor": vendor, "order_number": order_number, "archived": False,
    })[0]


def _item(db, order, status="pending", brand="Carrera", model="8869", account_id=None):
    return db.seed("inventory", {
        "account_id": account_id or order["account_id"],
        "order_id": order["id"],
        "vendor": order["vendor"],
        "brand": brand,
        "model": model,
        "color": "Black",
        "size": "54-18-145",
        "quantity": 1,
        "status": status,
    })[0]


def _status(db, item):
    return db.rows("inventory", id=item["id"])[0]["status"]


class TestTransitionTable:
    @pytest.mark.parametrize("current,target", [
        ("pending", "current"),
        ("pending", "archived"),
        ("current", "sold"),
        ("current", "archived"),
        ("archived", "current"),
    ])
    def test_allowed(self, current, target):
        assert sm.can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        ("pending", "sold"),
        ("sold", "current"),
        ("sold", "archived"),
        ("archived", "sold"),
        ("archived", "pending"),
        ("current", "pending"),
        ("bogus", "current"),
    ])
    def test_rejected(self, current, target):
        assert not sm.can_transition(current, target)


class TestSingleItemTransitions:
    def test_full_lifecycle(self, fake_db):
        order = _order(fake_db)
        item = _item(fake_db, order)

        sm.confirm_items(fake_db, USER_ID, order["id"], [item["id"]])
        archived = sm.archive_item(fake_db, USER_ID, item["id"])
        assert archived.status == ItemStatus.ARCHIVED
        assert archived.archived_at

        restored = sm.restore_item(fake_db, USER_ID, item["id"])
        assert restored.status == ItemStatus.CURRENT
        assert restored.archived_at is None

        sold = sm.mark_sold(fake_db, USER_ID, item["id"])
        assert sold.status == ItemStatus.SOLD
        assert sold.sold_at

    def test_pending_cannot_be_sold(self, fake_db):
        item = _item(fake_db, _order(fake_db))
        with pytest.raises(InvalidTransition) as exc:
            sm.mark_sold(fake_db, USER_ID, item["id"])
        assert exc.value.current == "pending"
        assert exc.value.target == "sold"
        assert _status(fake_db, item) == "pending"

    def test_sold_is_terminal(self, fake_db):
        item = _item(fake_db, _order(fake_db), status="sold")
        for op in (sm.archive_item, sm.restore_item, sm.mark_sold):
            with pytest.raises(InvalidTransition):
                op(fake_db, USER_ID, item["id"])

    def test_pending_can_be_archived_directly(self, fake_db):
        item = _item(fake_db, _order(fake_db))
        assert sm.archive_item(fake_db, USER_ID, item["id"]).status == ItemStatus.ARCHIVED

    def test_other_accounts_items_are_not_found(self, fake_db):
        item = _item(fake_db, _order(fake_db, account_id=OTHER_USER_ID))
        with pytest.raises(ItemNotFound):
            sm.archive_item(fake_db, USER_ID, item["id"])

    def test_status_changed_between_read_and_write(self, fake_db):
        """The conditional write matches nothing when another request moved the item."""
        item = _item(fake_db, _order(fake_db), status="current")

        def sell_first(table, action):
            if table == "inventory" and action == "update":
                fake_db.tables["inventory"][0]["status"] = "sold"

        fake_db.hooks.append(sell_first)
        with pytest.raises(InvalidTransition) as exc:
            sm.archive_item(fake_db, USER_ID, item["id"])
        assert exc.value.current == "sold"
        assert _status(fake_db, item) == "sold"


class TestDeleteArchivedItem:
    def test_deletes_archived(self, fake_db):
        item = _item(fake_db, _order(fake_db), status="archived")
        sm.delete_archived_item(fake_db, USER_ID, item["id"])
        assert fake_db.rows("inventory") == []

    @pytest.mark.parametrize("status", ["pending", "current", "sold"])
    def test_refuses_other_states(self, fake_db, status):
        item = _item(fake_db, _order(fake_db), status=status)
        with pytest.raises(InvalidTransition):
            sm.delete_archived_item(fake_db, USER_ID, item["id"])
        assert len(fake_db.rows("inventory")) == 1

    def test_missing_item(self, fake_db):
        with pytest.raises(ItemNotFound):
            sm.delete_archived_item(fake_db, USER_ID, "nope")


class TestConfirmItems:
    def test_partial_confirmation(self, fake_db):
        order = _order(fake_db)
        a = _item(fake_db, order, model="A")
        b = _item(fake_db, order, model="B")
        c = _item(fake_db, order, model="C")

        result = sm.confirm_items(fake_db, USER_ID, order["id"], [a["id"], b["id"]])

        assert {i.id for i in result.confirmed} == {a["id"], b["id"]}
        assert all(i.confirmed_at for i in result.confirmed)
        assert result.rejected == []
        assert result.remaining_pending == 1
        assert _status(fake_db, c) == "pending"

    def test_rejections_do_not_block_the_rest(self, fake_db):
        order = _order(fake_db)
        pending = _item(fake_db, order, model="A")
        sold = _item(fake_db, order, model="B", status="sold")
        other_order = _order(fake_db, order_number="B2")
        foreign = _item(fake_db, other_order, model="C")

        result = sm.confirm_items(
            fake_db, USER_ID, order["id"], [pending["id"], sold["id"], foreign["id"], "missing"]
        )

        assert [i.id for i in result.confirmed] == [pending["id"]]
        reasons = {r.item_id: (r.reason, r.status) for r in result.rejected}
        assert reasons == {
            sold["id"]: ("invalid_transition", "sold"),
            foreign["id"]: ("not_found", None),
            "missing": ("not_found", None),
        }
        assert _status(fake_db, foreign) == "pending"

    def test_repeated_ids_are_confirmed_once(self, fake_db):
        order = _order(fake_db)
        item = _item(fake_db, order)
        result = sm.confirm_items(fake_db, USER_ID, order["id"], [item["id"], item["id"]])
        assert len(result.confirmed) == 1

    def test_reconfirming_reports_invalid_transition(self, fake_db):
        order = _order(fake_db)
        item = _item(fake_db, order)
        sm.confirm_items(fake_db, USER_ID, order["id"], [item["id"]])

        result = sm.confirm_items(fake_db, USER_ID, order["id"], [item["id"]])
        assert result.confirmed == []
        assert result.rejected[0].reason == "invalid_transition"
        assert result.rejected[0].status == "current"

    def test_archived_item_cannot_be_confirmed(self, fake_db):
        """Archived items come back through restore, never through confirm."""
        order = _order(fake_db)
        item = _item(fake_db, order)
        sm.archive_item(fake_db, USER_ID, item["id"])
        before = fake_db.rows("inventory", id=item["id"])[0]

        result = sm.confirm_items(fake_db, USER_ID, order["id"], [item["id"]])

        assert result.confirmed == []
        assert len(result.rejected) == 1
        assert result.rejected[0].item_id == item["id"]
        assert result.rejected[0].reason == "invalid_transition"
        assert result.rejected[0].status == "archived"
        assert fake_db.rows("inventory", id=item["id"])[0] == before

    def test_empty_list_confirms_every_pending_item(self, fake_db):
        order = _order(fake_db)
        _item(fake_db, order, model="A")
        _item(fake_db, order, model="B")
        _item(fake_db, order, model="C", status="archived")

        result = sm.confirm_items(fake_db, USER_ID, order["id"], [])

        assert len(result.confirmed) == 2
        assert result.remaining_pending == 0
        assert len(fake_db.rows("inventory", status="archived")) == 1

    def test_unknown_order(self, fake_db):
        with pytest.raises(OrderNotFound):
            sm.confirm_items(fake_db, USER_ID, "nope", [])

    def test_other_accounts_order(self, fake_db):
        order = _order(fake_db, account_id=OTHER_USER_ID)
        with pytest.raises(OrderNotFound):
            sm.confirm_order(fake_db, USER_ID, order["id"])


class TestConcurrentConfirmation:
    def test_every_item_lost_raises_conflict(self, fake_db):
        order = _order(fake_db)
        a = _item(fake_db, order, model="A")
        b = _item(fake_db, order, model="B")

        def other_request_wins(table, action):
            if table == "inventory" and action == "update":
                for row in fake_db.tables["inventory"]:
                    row["status"] = "current"

        fake_db.hooks.append(other_request_wins)
        with pytest.raises(ConcurrentConfirmationConflict) as exc:
            sm.confirm_items(fake_db, USER_ID, order["id"], [a["id"], b["id"]])
        assert set(exc.value.item_ids) == {a["id"], b["id"]}

    def test_some_items_lost_is_a_partial_result(self, fake_db):
        order = _order(fake_db)
        a = _item(fake_db, order, model="A")
        b = _item(fake_db, order, model="B")

        def archive_b(table, action):
            if table == "inventory" and action == "update":
                for row in fake_db.tables["inventory"]:
                    if row["id"] == b["id"]:
                        row["status"] = "archived"

        fake_db.hooks.append(archive_b)
        result = sm.confirm_items(fake_db, USER_ID, order["id"], [a["id"], b["id"]])

        assert [i.id for i in result.confirmed] == [a["id"]]
        assert len(result.rejected) == 1
        assert result.rejected[0].reason == "concurrent_conflict"
        assert result.rejected[0].status == "archived"

    def test_no_item_confirmed_twice(self, fake_db):
        """Two sequential confirmations for the same item: only the first wins."""
        order = _order(fake_db)
        item = _item(fake_db, order)

        first = sm.confirm_items(fake_db, USER_ID, order["id"], [item["id"]])
        second = sm.confirm_items(fake_db, USER_ID, order["id"], [item["id"]])

        assert len(first.confirmed) + len(second.confirmed) == 1


class TestOrderOperations:
    def test_archive_order(self, fake_db):
        order = _order(fake_db)
        _item(fake_db, order, model="A")
        _item(fake_db, order, model="B", status="current")
        sold = _item(fake_db, order, model="C", status="sold")

        result = sm.archive_order(fake_db, USER_ID, order["id"])

        assert result["archived_items"] == 2
        assert result["order"]["archived"] is True
        assert _status(fake_db, sold) == "sold"

    def test_delete_order_blocked_by_current_items(self, fake_db):
        order = _order(fake_db)
        _item(fake_db, order, status="current")
        with pytest.raises(InvalidTransition):
            sm.delete_order(fake_db, USER_ID, order["id"])
        assert len(fake_db.rows("orders")) == 1

    def test_delete_order(self, fake_db):
        order = _order(fake_db)
        _item(fake_db, order, model="A")
        _item(fake_db, order, model="B", status="archived")
        keep = _order(fake_db, order_number="B2")
        _item(fake_db, keep)

        assert sm.delete_order(fake_db, USER_ID, order["id"]) == 2
        assert [o["id"] for o in fake_db.rows("orders")] == [keep["id"]]
        assert len(fake_db.rows("inventory")) == 1

    def test_item_confirmed_during_delete_keeps_order(self, fake_db):
        """A confirmation landing between the check and the delete is not lost."""
        order = _order(fake_db)
        racing = _item(fake_db, order, model="A")
        archived = _item(fake_db, order, model="B", status="archived")

        def confirm_first(table, action):
            if table == "inventory" and action == "delete":
                for row in fake_db.tables["inventory"]:
                    if row["id"] == racing["id"]:
                        row["status"] = "current"

        fake_db.hooks.append(confirm_first)
        with pytest.raises(InvalidTransition) as exc:
            sm.delete_order(fake_db, USER_ID, order["id"])

        assert exc.value.current == "current"
        assert _status(fake_db, racing) == "current"
        assert fake_db.rows("inventory", id=archived["id"]) == []
        assert [o["id"] for o in fake_db.rows("orders")] == [order["id"]]

    @pytest.mark.parametrize("statuses,expected", [
        ([], "pending"),
        (["pending", "pending"], "pending"),
        (["pending", "current"], "partial"),
        (["current", "archived", "sold"], "received"),
    ])
    def test_receipt_status(self, fake_db, statuses, expected):
        order = _order(fake_db)
        for i, status in enumerate(statuses):
            _item(fake_db, order, model=f"M{i}", status=status)

        result = sm.order_receipt_status(fake_db, USER_ID, order["id"])

        assert result.receipt_status == expected
        assert result.total_items == len(statuses)
        assert result.order_number == "A1"
        assert sum(result.counts.values()) == len(statuses)


class TestBulkOperations:
    def test_archive_brand(self, fake_db):
        order = _order(fake_db)
        _item(fake_db, order, model="A")
        _item(fake_db, order, model="B", status="current")
        _item(fake_db, order, model="C", status="sold")
        _item(fake_db, order, brand="Hugo Boss", model="D")

        assert sm.archive_brand(fake_db, USER_ID, "safilo", "Carrera") == 2
        assert len(fake_db.rows("inventory", brand="Carrera", status="archived")) == 2
        assert fake_db.rows("inventory", brand="Hugo Boss")[0]["status"] == "pending"

    def test_delete_archived_by_brand(self, fake_db):
        order = _order(fake_db)
        _item(fake_db, order, model="A", status="archived")
        _item(fake_db, order, model="B", status="current")
        _item(fake_db, order, brand="Hugo Boss", model="C", status="archived")

        assert sm.delete_archived_by_brand(fake_db, USER_ID, "safilo", "Carrera") == 1
        assert len(fake_db.rows("inventory")) == 2

    def test_delete_archived_by_vendor(self, fake_db):
        order = _order(fake_db)
        _item(fake_db, order, model="A", status="archived")
        _item(fake_db, order, brand="Hugo Boss", model="C", status="archived")
        _item(fake_db, order, model="B", status="current")
        other = _order(fake_db, account_id=OTHER_USER_ID)
        _item(fake_db, other, status="archived")

        assert sm.delete_archived_by_vendor(fake_db, USER_ID, "safilo") == 2
        assert len(fake_db.rows("inventory")) == 2
