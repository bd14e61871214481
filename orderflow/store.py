from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from orderflow.models import CartLine, Order

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Store:
    """
    In-memory state of one shop session.

    Holds only raw state:
    - authenticated cart and pending (pre-login) cart, keyed by sku_id
    - stock counters per sku_id (absent = never seen)
    - placed orders
    - a list of log lines (for demos and tests)

    The rules live in the services that wrap it (CartStore, StockLedger, OrderLifecycle).
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.cart: Dict[str, CartLine] = {}
        self.pending_cart: Dict[str, CartLine] = {}
        self.stock: Dict[str, int] = {}
        self.orders: Dict[str, Order] = {}

        self.logs: List[str] = []

        self.clock = clock or utc_now
        self._lock = threading.RLock()
        self._last_order_id = 0

    def log(self, message: str) -> None:
        self.logs.append(message)
        logger.info(message)

    def now(self) -> datetime:
        return self.clock()

    def next_order_id(self) -> str:
        # Millisecond timestamp, bumped when the clock has not moved so ids stay unique and sortable.
        candidate = int(self.now().timestamp() * 1000)
        self._last_order_id = max(candidate, self._last_order_id + 1)
        return str(self._last_order_id)

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Serialize a multi-step mutation and roll every collection back if it raises."""
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield self
            except BaseException:
                self._restore(snapshot)
                raise

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "cart": dict(self.cart),
            "pending_cart": dict(self.pending_cart),
            "stock": dict(self.stock),
            "orders": {
                oid: replace(o, status_history=list(o.status_history)) for oid, o in self.orders.items()
            },
            "last_order_id": self._last_order_id,
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.cart = snapshot["cart"]
        self.pending_cart = snapshot["pending_cart"]
        self.stock = snapshot["stock"]
        # Keep the caller's Order objects; put their fields back in place.
        restored = snapshot["orders"]
        for oid, saved in restored.items():
            current = self.orders.get(oid)
            if current is not None:
                current.status = saved.status
                current.cancel_reason = saved.cancel_reason
                current.refund_status = saved.refund_status
                current.status_history[:] = saved.status_history
                restored[oid] = current
        self.orders = restored
        self._last_order_id = snapshot["last_order_id"]

    # Seed helpers (handy for tests/demo)
    def set_stock(self, sku_id: str, on_hand: int) -> None:
        if on_hand < 0:
            raise ValueError("on_hand must be >= 0")
        self.stock[sku_id] = on_hand

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cart": [line.to_dict() for line in self.cart.values()],
            "pending_cart": [line.to_dict() for line in self.pending_cart.values()],
            "stock": dict(self.stock),
            "orders": [o.to_dict() for o in self.orders.values()],
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        cart = [CartLine.from_dict(d) for d in data.get("cart", [])]
        pending = [CartLine.from_dict(d) for d in data.get("pending_cart", [])]
        orders = [Order.from_dict(d) for d in data.get("orders", [])]

        self.cart = {line.sku_id: line for line in cart}
        self.pending_cart = {line.sku_id: line for line in pending}
        self.stock = {str(k): max(0, int(v)) for k, v in data.get("stock", {}).items()}
        self.orders = {o.id: o for o in orders}
        numeric_ids = [int(o.id) for o in orders if o.id.isdigit()]
        self._last_order_id = max(numeric_ids, default=0)
