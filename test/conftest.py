"""
Pytest configuration and shared fixtures for order lifecycle tests.

Provides a stub status mapping, a classifier wired to it, an order snapshot
factory whose defaults clear every guard condition, and an in-memory stand-in
for the asyncpg pool that records every statement.
"""
import dataclasses
from contextlib import asynccontextmanager

import pytest

from order_lifecycle.order_state import OrderSnapshot, StateClassifier
from order_lifecycle.statuses import StatusConfig

STUB_STATUSES = {
    "new": "pending",
    "processing": "processing_label",
    "complete": "complete_label",
    "closed": "closed_label",
    "canceled": "canceled",
    "holded": "holded",
}


@pytest.fixture
def status_config() -> StatusConfig:
    return StatusConfig(STUB_STATUSES)


@pytest.fixture
def classifier(status_config: StatusConfig) -> StateClassifier:
    return StateClassifier(status_config.default_status_for)


@pytest.fixture
def make_order():
    """
    Factory: make_order(state="new", can_ship=True, ...).

    Defaults describe a processing, non-virtual order with nothing left to ship,
    invoice or refund, so it closes unless an override blocks it.
    """
    base = OrderSnapshot(state="processing", status="processing_label")

    def _make(**overrides) -> OrderSnapshot:
        return dataclasses.replace(base, **overrides)

    return _make


# ── Database Fixtures ────────────────────────────────────────────────


class FakeConnection:
    """Records (sql, args) for every statement; serves canned rows for reads."""

    def __init__(self, order_row: dict | None = None, items: list[dict] | None = None,
                 invoices: list[dict] | None = None):
        self.order_row = order_row
        self.items = items or []
        self.invoices = invoices or []
        self.statements: list[tuple[str, tuple]] = []

    def _record(self, sql: str, args: tuple) -> str:
        sql = " ".join(sql.split())
        self.statements.append((sql, args))
        return sql

    @asynccontextmanager
    async def transaction(self):
        yield

    async def execute(self, sql: str, *args) -> str:
        self._record(sql, args)
        return "OK"

    async def executemany(self, sql: str, rows) -> None:
        self._record(sql, (list(rows),))

    async def fetchrow(self, sql: str, *args):
        sql = self._record(sql, args)
        return self.order_row if "FROM orders" in sql else None

    async def fetch(self, sql: str, *args) -> list[dict]:
        sql = self._record(sql, args)
        if "FROM order_items" in sql:
            return self.items
        if "FROM invoices" in sql:
            return self.invoices
        return []


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_pool(fake_conn: FakeConnection) -> FakePool:
    return FakePool(fake_conn)
