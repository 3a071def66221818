"""
Async Postgres: orders (aggregate state + capability flags), order_items, invoices.
Each save runs in a single transaction: take a per-order advisory lock, run the lifecycle
state handler, write order with the resulting state/status, replace items and invoices.
"""
import logging
from decimal import Decimal

import asyncpg

from order_lifecycle.config import settings
from order_lifecycle.order_state import (
    ClassificationResult,
    Invoice,
    OrderItem,
    OrderSnapshot,
    StateClassifier,
    apply,
)
from order_lifecycle.statuses import StatusConfigError

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


class OrderNotFoundError(Exception):
    """Raised when no order row exists for order_id."""
    def __init__(self, order_id: str | None = None):
        self.order_id = order_id
        super().__init__(order_id)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                order_id VARCHAR(255) PRIMARY KEY,
                state VARCHAR(32),
                status VARCHAR(32),
                is_canceled BOOLEAN NOT NULL DEFAULT FALSE,
                can_unhold BOOLEAN NOT NULL DEFAULT FALSE,
                can_invoice BOOLEAN NOT NULL DEFAULT FALSE,
                can_ship BOOLEAN NOT NULL DEFAULT FALSE,
                can_creditmemo BOOLEAN NOT NULL DEFAULT FALSE,
                is_in_process BOOLEAN NOT NULL DEFAULT FALSE,
                is_virtual BOOLEAN NOT NULL DEFAULT FALSE,
                total_due NUMERIC(20, 4) NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id SERIAL PRIMARY KEY,
                order_id VARCHAR(255) NOT NULL REFERENCES orders(order_id) ON DELETE CASCADE,
                product_type VARCHAR(32),
                qty_ordered NUMERIC(12, 4) NOT NULL DEFAULT 0,
                qty_shipped NUMERIC(12, 4) NOT NULL DEFAULT 0,
                qty_refunded NUMERIC(12, 4) NOT NULL DEFAULT 0
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_items_order_id
            ON order_items(order_id);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS invoices (
                id SERIAL PRIMARY KEY,
                order_id VARCHAR(255) NOT NULL REFERENCES orders(order_id) ON DELETE CASCADE,
                state SMALLINT NOT NULL
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_invoices_order_id
            ON invoices(order_id);
        """)


async def save_order(
    pool: asyncpg.Pool,
    order_id: str,
    order: OrderSnapshot,
    classifier: StateClassifier,
) -> ClassificationResult:
    """
    Persist one order, adjusting its lifecycle state first.
    - Take a transaction-scoped advisory lock on order_id so concurrent saves of the same
      order serialize, including the first save when no row exists yet to lock.
    - Classify before writing anything: a status config error rolls back with nothing saved.
    Returns the classification that was applied.
    """
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1));", order_id)
            previous = await conn.fetchrow(
                "SELECT state FROM orders WHERE order_id = $1;",
                order_id,
            )
            try:
                result = classifier.classify(order)
            except StatusConfigError:
                logger.exception("Status configuration failed for order_id=%s", order_id)
                raise
            saved = apply(order, result)

            await conn.execute(
                """
                INSERT INTO orders (order_id, state, status, is_canceled, can_unhold, can_invoice,
                                    can_ship, can_creditmemo, is_in_process, is_virtual, total_due, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, NOW())
                ON CONFLICT (order_id) DO UPDATE SET
                    state = EXCLUDED.state,
                    status = EXCLUDED.status,
                    is_canceled = EXCLUDED.is_canceled,
                    can_unhold = EXCLUDED.can_unhold,
                    can_invoice = EXCLUDED.can_invoice,
                    can_ship = EXCLUDED.can_ship,
                    can_creditmemo = EXCLUDED.can_creditmemo,
                    is_in_process = EXCLUDED.is_in_process,
                    is_virtual = EXCLUDED.is_virtual,
                    total_due = EXCLUDED.total_due,
                    updated_at = NOW();
                """,
                order_id,
                _text(saved.state),
                saved.status,
                saved.is_canceled,
                saved.can_unhold,
                saved.can_invoice,
                saved.can_ship,
                saved.can_creditmemo,
                saved.is_in_process,
                saved.is_virtual,
                _numeric(saved.total_due),
            )

            await conn.execute("DELETE FROM order_items WHERE order_id = $1;", order_id)
            await conn.executemany(
                """
                INSERT INTO order_items (order_id, product_type, qty_ordered, qty_shipped, qty_refunded)
                VALUES ($1, $2, $3, $4, $5);
                """,
                [
                    (order_id, i.product_type, _numeric(i.qty_ordered), _numeric(i.qty_shipped), _numeric(i.qty_refunded))
                    for i in saved.items or ()
                ],
            )
            await conn.execute("DELETE FROM invoices WHERE order_id = $1;", order_id)
            await conn.executemany(
                "INSERT INTO invoices (order_id, state) VALUES ($1, $2);",
                [(order_id, int(inv.state)) for inv in saved.invoices or () if inv.state is not None],
            )

    if result.changed:
        logger.info(
            "Order %s: %s -> %s (status=%s)",
            order_id,
            previous["state"] if previous else None,
            _text(result.state),
            result.status,
        )
    return result


async def get_order(pool: asyncpg.Pool, order_id: str) -> OrderSnapshot:
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT * FROM orders WHERE order_id = $1;", order_id)
        if row is None:
            raise OrderNotFoundError(order_id)
        items = await conn.fetch(
            "SELECT product_type, qty_ordered, qty_shipped, qty_refunded FROM order_items WHERE order_id = $1 ORDER BY id;",
            order_id,
        )
        invoices = await conn.fetch(
            "SELECT state FROM invoices WHERE order_id = $1 ORDER BY id;",
            order_id,
        )

    return OrderSnapshot(
        state=row["state"],
        status=row["status"],
        is_canceled=row["is_canceled"],
        can_unhold=row["can_unhold"],
        can_invoice=row["can_invoice"],
        can_ship=row["can_ship"],
        can_creditmemo=row["can_creditmemo"],
        is_in_process=row["is_in_process"],
        is_virtual=row["is_virtual"],
        total_due=row["total_due"],
        items=tuple(
            OrderItem(
                product_type=r["product_type"],
                qty_ordered=r["qty_ordered"],
                qty_shipped=r["qty_shipped"],
                qty_refunded=r["qty_refunded"],
            )
            for r in items
        ),
        invoices=tuple(Invoice(state=r["state"]) for r in invoices),
    )


def _text(state) -> str | None:
    return getattr(state, "value", state)


def _numeric(value) -> Decimal:
    return Decimal(str(value or 0))
