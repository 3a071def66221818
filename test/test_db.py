"""
Tests for the save hook: lock ordering, classify-before-write, reading orders back.

Runs against the in-memory pool from conftest; no Postgres needed.
"""
import asyncio
from decimal import Decimal

import pytest

from order_lifecycle.db import OrderNotFoundError, get_order, save_order
from order_lifecycle.order_state import OrderItem, StateClassifier
from order_lifecycle.statuses import StatusConfig, UnknownStateError


def _writes(conn) -> list[str]:
    return [sql for sql, _ in conn.statements if sql.startswith(("INSERT", "DELETE", "UPDATE"))]


class TestSaveOrder:

    def test_first_statement_is_per_order_advisory_lock(self, fake_pool, fake_conn, classifier, make_order):
        # no row exists yet, so a row lock would not serialize two first saves
        asyncio.run(save_order(fake_pool, "ord-1", make_order(), classifier))
        sql, args = fake_conn.statements[0]
        assert sql == "SELECT pg_advisory_xact_lock(hashtext($1));"
        assert args == ("ord-1",)

    def test_no_row_lock_on_order_read(self, fake_pool, fake_conn, classifier, make_order):
        asyncio.run(save_order(fake_pool, "ord-1", make_order(), classifier))
        assert not any("FOR UPDATE" in sql for sql, _ in fake_conn.statements)

    def test_saves_classified_state(self, fake_pool, fake_conn, classifier, make_order):
        result = asyncio.run(save_order(fake_pool, "ord-1", make_order(), classifier))
        assert result.state == "closed"
        upsert = next(args for sql, args in fake_conn.statements if sql.startswith("INSERT INTO orders"))
        assert upsert[:3] == ("ord-1", "closed", "closed_label")

    def test_quantities_written_as_decimal(self, fake_pool, fake_conn, classifier, make_order):
        order = make_order(can_ship=True, items=(OrderItem("simple", qty_ordered=1.5),))
        asyncio.run(save_order(fake_pool, "ord-1", order, classifier))
        (rows,) = next(args for sql, args in fake_conn.statements if sql.startswith("INSERT INTO order_items"))
        assert rows == [("ord-1", "simple", Decimal("1.5"), Decimal("0"), Decimal("0"))]

    def test_status_config_error_writes_nothing(self, fake_pool, fake_conn, make_order):
        classifier = StateClassifier(StatusConfig({}))
        with pytest.raises(UnknownStateError):
            asyncio.run(save_order(fake_pool, "ord-1", make_order(), classifier))
        assert _writes(fake_conn) == []


class TestGetOrder:

    def test_missing_order_raises(self, fake_pool):
        with pytest.raises(OrderNotFoundError) as exc_info:
            asyncio.run(get_order(fake_pool, "nope"))
        assert exc_info.value.order_id == "nope"

    def test_builds_snapshot_from_rows(self, fake_pool, fake_conn):
        fake_conn.order_row = {
            "state": "complete", "status": "complete", "is_canceled": False, "can_unhold": False,
            "can_invoice": False, "can_ship": False, "can_creditmemo": True, "is_in_process": False,
            "is_virtual": False, "total_due": Decimal("0.0000"),
        }
        fake_conn.items = [{"product_type": "simple", "qty_ordered": Decimal("2.0000"),
                            "qty_shipped": Decimal("2.0000"), "qty_refunded": Decimal("0.0000")}]
        fake_conn.invoices = [{"state": 2}]
        order = asyncio.run(get_order(fake_pool, "ord-1"))
        assert order.state == "complete"
        assert order.can_creditmemo is True
        assert order.items[0].qty_shipped == Decimal("2.0000")
        assert order.invoices[0].state == 2
