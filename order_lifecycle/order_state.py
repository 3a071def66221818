"""
Order lifecycle state handler. Decides, before an order is saved, whether it should
be moved to processing, complete or closed. Pure: reads an order snapshot, returns
the (state, status) pair the caller should persist.
"""
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

PRODUCT_TYPE_SIMPLE = "simple"

# state -> default status label, resolved from configuration by the caller
StatusResolver = Callable[[str], str]

Quantity = int | float | Decimal | None


class OrderState(str, Enum):
    NEW = "new"
    PENDING_PAYMENT = "pending_payment"
    PROCESSING = "processing"
    COMPLETE = "complete"
    CLOSED = "closed"
    CANCELED = "canceled"
    HOLDED = "holded"
    PAYMENT_REVIEW = "payment_review"


class InvoiceState(IntEnum):
    OPEN = 1
    PAID = 2
    CANCELED = 3


@dataclass(frozen=True)
class OrderItem:
    product_type: str | None = PRODUCT_TYPE_SIMPLE
    qty_ordered: Quantity = 0
    qty_shipped: Quantity = 0
    qty_refunded: Quantity = 0


@dataclass(frozen=True)
class Invoice:
    state: int | None = InvoiceState.OPEN


@dataclass(frozen=True)
class OrderSnapshot:
    """
    Read-only view of an order aggregate. Capability flags (can_ship, can_invoice, ...)
    are computed by the aggregate from its own totals; this module only reads them.
    """
    state: str | None = None
    status: str | None = None
    is_canceled: bool = False
    can_unhold: bool = False
    can_invoice: bool = False
    can_ship: bool = False
    can_creditmemo: bool = False
    is_in_process: bool = False
    is_virtual: bool = False
    total_due: Quantity = 0
    items: tuple[OrderItem, ...] | None = field(default_factory=tuple)
    invoices: tuple[Invoice, ...] | None = field(default_factory=tuple)

    @property
    def is_not_virtual(self) -> bool:
        return not self.is_virtual


@dataclass(frozen=True)
class ClassificationResult:
    state: str | None
    status: str | None
    changed: bool


def _qty(value: Quantity) -> int:
    """Truncate to a whole quantity; missing, non-finite or negative counts as zero."""
    if value is None or not math.isfinite(value):
        return 0
    return max(int(value), 0)


def _items(order: OrderSnapshot) -> Iterable[OrderItem]:
    return order.items or ()


class StateClassifier:
    """
    Adjusts an order's lifecycle state before save.

    Checks run in a fixed order: promotion new -> processing, then a guard that stops
    on canceled / held / invoiceable / unpaid-invoice orders, then closed, then complete.
    """

    def __init__(self, default_status_for: StatusResolver):
        self._default_status_for = default_status_for

    def classify(self, order: OrderSnapshot) -> ClassificationResult:
        state, status = order.state, order.status

        if self._check_for_processing_state(order, state):
            state = OrderState.PROCESSING.value
            status = self._default_status_for(state)
            logger.debug("Promoting order from %s to %s", order.state, state)

        if (
            order.is_canceled
            or order.can_unhold
            or order.can_invoice
            or (self._has_open_invoices(order) and _qty(order.total_due) > 0)
        ):
            return self._result(order, state, status)

        if self._check_for_closed_state(order, state, status):
            state = OrderState.CLOSED.value
            return self._result(order, state, self._default_status_for(state))

        if self._check_for_complete_state(order, state):
            state = OrderState.COMPLETE.value
            return self._result(order, state, self._default_status_for(state))

        return self._result(order, state, status)

    def is_partially_refunded_order_shipped(self, order: OrderSnapshot) -> bool:
        """True when every simple unit ordered has been either shipped or refunded."""
        shipped = self._shipped_qty(order)
        return shipped > 0 and self._qty_to_ship(order) <= self._refunded_qty(order) + shipped

    @staticmethod
    def _result(order: OrderSnapshot, state: str | None, status: str | None) -> ClassificationResult:
        changed = (state, status) != (order.state, order.status)
        if changed:
            logger.debug("Order state %s/%s -> %s/%s", order.state, order.status, state, status)
        return ClassificationResult(state=state, status=status, changed=changed)

    @staticmethod
    def _check_for_processing_state(order: OrderSnapshot, current_state: str | None) -> bool:
        return current_state == OrderState.NEW and order.is_in_process

    @staticmethod
    def _check_for_closed_state(order: OrderSnapshot, current_state: str | None, current_status: str | None) -> bool:
        if (
            current_state in (OrderState.PROCESSING, OrderState.COMPLETE)
            and not order.can_creditmemo
            and not order.can_ship
            and order.is_not_virtual
        ):
            return True
        # virtual orders: a "closed" status label is authoritative
        return order.is_virtual and current_status == OrderState.CLOSED.value

    def _check_for_complete_state(self, order: OrderSnapshot, current_state: str | None) -> bool:
        return current_state == OrderState.PROCESSING and (
            not order.can_ship or self.is_partially_refunded_order_shipped(order)
        )

    @staticmethod
    def _has_open_invoices(order: OrderSnapshot) -> bool:
        return any(invoice.state == InvoiceState.OPEN for invoice in order.invoices or ())

    @staticmethod
    def _qty_to_ship(order: OrderSnapshot) -> int:
        # only simple products are accountable for the order qty
        return sum(_qty(i.qty_ordered) for i in _items(order) if i.product_type == PRODUCT_TYPE_SIMPLE)

    @staticmethod
    def _refunded_qty(order: OrderSnapshot) -> int:
        return sum(_qty(i.qty_refunded) for i in _items(order) if i.product_type == PRODUCT_TYPE_SIMPLE)

    @staticmethod
    def _shipped_qty(order: OrderSnapshot) -> int:
        # all product types, unlike ordered/refunded
        return sum(_qty(i.qty_shipped) for i in _items(order))


def apply(order: OrderSnapshot, result: ClassificationResult) -> OrderSnapshot:
    """Copy of order with the classified state/status written in."""
    if not result.changed:
        return order
    return dataclasses.replace(order, state=result.state, status=result.status)
