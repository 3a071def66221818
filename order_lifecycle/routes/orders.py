from functools import lru_cache

import asyncpg
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from order_lifecycle.config import settings
from order_lifecycle.db import get_order, get_pool, save_order
from order_lifecycle.metrics import record_classification
from order_lifecycle.order_state import (
    Invoice,
    InvoiceState,
    OrderItem,
    OrderSnapshot,
    PRODUCT_TYPE_SIMPLE,
    StateClassifier,
)
from order_lifecycle.statuses import StatusConfig

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderItemBody(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    product_type: str | None = Field(default=PRODUCT_TYPE_SIMPLE, description="Catalog product type tag")
    qty_ordered: float = 0
    qty_shipped: float = 0
    qty_refunded: float = 0


class InvoiceBody(BaseModel):
    state: int = Field(default=InvoiceState.OPEN, description="1 = open, 2 = paid, 3 = canceled")


class OrderBody(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    state: str | None = Field(default=None, description="Current lifecycle state")
    status: str | None = Field(default=None, description="Current status label")
    is_canceled: bool = False
    can_unhold: bool = False
    can_invoice: bool = False
    can_ship: bool = False
    can_creditmemo: bool = False
    is_in_process: bool = False
    is_virtual: bool = False
    total_due: float = 0
    items: list[OrderItemBody] | None = None
    invoices: list[InvoiceBody] | None = None

    def to_snapshot(self) -> OrderSnapshot:
        return OrderSnapshot(
            state=self.state,
            status=self.status,
            is_canceled=self.is_canceled,
            can_unhold=self.can_unhold,
            can_invoice=self.can_invoice,
            can_ship=self.can_ship,
            can_creditmemo=self.can_creditmemo,
            is_in_process=self.is_in_process,
            is_virtual=self.is_virtual,
            total_due=self.total_due,
            items=tuple(OrderItem(**i.model_dump()) for i in self.items or []),
            invoices=tuple(Invoice(state=inv.state) for inv in self.invoices or []),
        )


@lru_cache
def get_classifier() -> StateClassifier:
    return StateClassifier(StatusConfig.from_settings(settings))


@router.post("/classify")
async def classify_order(
    body: OrderBody,
    classifier: StateClassifier = Depends(get_classifier),
) -> JSONResponse:
    """Dry run: report the state/status the order would be saved with. Nothing is persisted."""
    order = body.to_snapshot()
    result = classifier.classify(order)
    record_classification(order, result)
    return JSONResponse(
        status_code=200,
        content={"state": result.state, "status": result.status, "changed": result.changed},
    )


@router.put("/{order_id}")
async def put_order(
    order_id: str,
    body: OrderBody,
    classifier: StateClassifier = Depends(get_classifier),
    pool: asyncpg.Pool = Depends(get_pool),
) -> JSONResponse:
    """
    Save an order. Its lifecycle state is adjusted (processing / complete / closed)
    in the same transaction, before the row is written.
    """
    order = body.to_snapshot()
    result = await save_order(pool, order_id, order, classifier)
    record_classification(order, result)
    return JSONResponse(
        status_code=200,
        content={
            "order_id": order_id,
            "state": result.state,
            "status": result.status,
            "changed": result.changed,
        },
    )


@router.get("/{order_id}")
async def read_order(order_id: str, pool: asyncpg.Pool = Depends(get_pool)) -> JSONResponse:
    order = await get_order(pool, order_id)
    return JSONResponse(
        status_code=200,
        content={
            "order_id": order_id,
            "state": order.state,
            "status": order.status,
            "total_due": _decimal_text(order.total_due),
            "items": [
                {
                    "product_type": i.product_type,
                    "qty_ordered": _decimal_text(i.qty_ordered),
                    "qty_shipped": _decimal_text(i.qty_shipped),
                    "qty_refunded": _decimal_text(i.qty_refunded),
                }
                for i in order.items or ()
            ],
            "invoices": [{"state": inv.state} for inv in order.invoices or ()],
        },
    )


def _decimal_text(value) -> str:
    # NUMERIC comes back as Decimal; str keeps every stored digit
    return str(value if value is not None else 0)
