from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, List, Mapping, Optional

from orderflow.config import Settings
from orderflow.errors import NotAllowedError, OrderNotFoundError
from orderflow.models import ORDER_STAGES, Bill, CartLine, Order, OrderStatus
from orderflow.services import StockLedger
from orderflow.store import Store

StatusListener = Callable[[Order, OrderStatus], None]

DEFAULT_CANCEL_REASON = "Changed my mind"
REFUND_INITIATED = "Refund initiated"
NO_PAYMENT_MADE = "No payment was made"
CASH_METHODS = ("cod", "cash")


def _recency_key(order: Order) -> tuple:
    return order.created_at, int(order.id) if order.id.isdigit() else 0


class OrderLifecycle:
    def __init__(self, store: Store, stock: StockLedger, settings: Optional[Settings] = None):
        self.store = store
        self.stock = stock
        self.settings = settings or Settings()
        self._listeners: List[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Call listener(order, previous_status) on every status change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_status(self, order: Order, status: OrderStatus) -> None:
        previous = order.status
        order.status = status
        order.status_history.append((status, self.store.now()))
        self.store.log(f"[order={order.id}] status: {previous.value} -> {status.value}")
        for listener in list(self._listeners):
            listener(order, previous)

    def find_by_checkout(self, checkout_id: str) -> Optional[Order]:
        for order in self.store.orders.values():
            if order.checkout_id == checkout_id:
                return order
        return None

    def create(
        self,
        lines: Iterable[CartLine],
        bill: Bill,
        payment_method: str,
        transaction_id: Optional[str] = None,
        *,
        customer: Optional[Mapping[str, str]] = None,
        checkout_id: Optional[str] = None,
    ) -> Order:
        if checkout_id:
            existing = self.find_by_checkout(checkout_id)
            if existing:
                self.store.log(f"[order={existing.id}] already created for checkout={checkout_id}")
                return existing

        now = self.store.now()
        order = Order(
            id=self.store.next_order_id(),
            items=tuple(lines),
            bill=bill,
            created_at=now,
            payment_method=payment_method,
            transaction_id=transaction_id,
            customer=dict(customer or {}),
            checkout_id=checkout_id,
            status_history=[(OrderStatus.PLACED, now)],
        )
        self.store.orders[order.id] = order
        self.store.log(
            f"[order={order.id}] created: lines={len(order.items)} total={bill.grand_total} "
            f"method={payment_method} txn={transaction_id}"
        )
        return order

    def discard(self, order_id: str) -> None:
        """Drop an order that never became visible (checkout rollback)."""
        if self.store.orders.pop(order_id, None) is not None:
            self.store.log(f"[order={order_id}] discarded")

    def get_by_id(self, order_id: str) -> Order:
        order = self.store.orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def list_by_recency(self) -> List[Order]:
        return sorted(self.store.orders.values(), key=_recency_key, reverse=True)

    def advance(self, order_id: str) -> Order:
        order = self.get_by_id(order_id)
        if order.status.is_terminal:
            raise NotAllowedError(f"Order {order_id} is {order.status.value}; no further status changes")
        position = ORDER_STAGES.index(order.status)
        self._set_status(order, ORDER_STAGES[position + 1])
        return order

    def advance_due(self, now: Optional[datetime] = None) -> List[Order]:
        """
        Time-driven progression: one stage per ``status_interval`` seconds since creation.

        Orders move one stage at a time so listeners see every stage.
        """
        now = now or self.store.now()
        interval = self.settings.status_interval
        changed: List[Order] = []
        for order in self.list_by_recency():
            if order.status.is_terminal:
                continue
            elapsed = (now - order.created_at).total_seconds()
            target = min(int(elapsed // interval), len(ORDER_STAGES) - 1)
            moved = False
            while ORDER_STAGES.index(order.status) < target:
                self._set_status(order, ORDER_STAGES[ORDER_STAGES.index(order.status) + 1])
                moved = True
            if moved:
                changed.append(order)
        return changed

    def cancel(self, order_id: str, reason: Optional[str] = None) -> Order:
        with self.store.transaction():
            order = self.get_by_id(order_id)
            if not order.can_cancel:
                raise NotAllowedError(f"Cancellation not allowed: order {order_id} is {order.status.value}")
            order.cancel_reason = reason or DEFAULT_CANCEL_REASON
            order.refund_status = NO_PAYMENT_MADE if order.payment_method.lower() in CASH_METHODS else REFUND_INITIATED
            self.stock.restore(order.items, ref=f"order={order.id}")
            self._set_status(order, OrderStatus.CANCELLED)
        self.store.log(f"[order={order.id}] cancelled: reason={order.cancel_reason!r} refund={order.refund_status!r}")
        return order
