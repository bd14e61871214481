from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Callable, List, Mapping, Optional

from orderflow.config import Settings
from orderflow.errors import UnavailableError, ValidationError
from orderflow.models import Bill, CartLine, CheckoutRequest, Order
from orderflow.orders import OrderLifecycle
from orderflow.payment import PaymentProvider, PaymentSimulator, Scheduler
from orderflow.pricing import compute_bill
from orderflow.saga import CheckoutSaga
from orderflow.services import CartStore, StockLedger
from orderflow.store import Store

if TYPE_CHECKING:
    from orderflow.persistence import SqliteStatePersistence
    from orderflow.remote import OrderServiceClient


class Shop:
    """
    Entry point for UI code: one instance per customer session.

    Composes cart, stock, pricing, payment and orders over a single Store.
    Each mutation and its save run in one store transaction, so a failed save
    (or a failed call to the remote order service) leaves the state untouched.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        settings: Optional[Settings] = None,
        persistence: Optional["SqliteStatePersistence"] = None,
        scheduler: Optional[Scheduler] = None,
        order_service: Optional["OrderServiceClient"] = None,
    ) -> None:
        self.store = store or Store()
        self.settings = settings or Settings()
        self.persistence = persistence
        self.scheduler = scheduler
        self.order_service = order_service

        self.cart = CartStore(self.store, self.settings)
        self.stock = StockLedger(self.store, self.settings)
        self.orders = OrderLifecycle(self.store, self.stock, self.settings)
        self.saga = CheckoutSaga(self.store, self.cart, self.stock, self.orders)

        self.authenticated = False

    def _persist(self) -> None:
        if self.persistence is not None:
            self.persistence.save(self.store)

    def load(self) -> None:
        if self.persistence is not None:
            self.persistence.load(self.store)

    # --- auth hooks ---

    def on_authenticated(self) -> int:
        """Call once per login transition; folds the pending cart into the cart."""
        with self.store.transaction():
            merged = self.cart.merge_pending_into_cart()
            self._persist()
        self.authenticated = True
        return merged

    def on_signed_out(self) -> None:
        self.authenticated = False

    # --- cart ---

    def available_for_purchase(self, sku_id: str) -> int:
        return self.stock.available_for_purchase(sku_id, self.cart.quantity_of(sku_id))

    def add_item(self, line: CartLine) -> CartLine:
        with self.store.transaction():
            if not self.authenticated:
                merged = self.cart.add_to_pending(line)
                self._persist()
                return merged

            available = self.available_for_purchase(line.sku_id)
            if line.quantity > available:
                raise UnavailableError(
                    f"Only {available} more of {line.name or line.sku_id} available", skus=[line.sku_id]
                )
            merged = self.cart.add_item(line)
            self._persist()
            return merged

    def update_quantity(self, sku_id: str, delta: int) -> Optional[CartLine]:
        with self.store.transaction():
            if delta > 0 and delta > self.available_for_purchase(sku_id):
                raise UnavailableError(f"No more {sku_id} available", skus=[sku_id])
            line = self.cart.update_quantity(sku_id, delta)
            self._persist()
            return line

    def remove_item(self, sku_id: str) -> None:
        with self.store.transaction():
            self.cart.remove_item(sku_id)
            self._persist()

    def clear_cart(self) -> None:
        with self.store.transaction():
            self.cart.clear()
            self._persist()

    def checkout_bill(self) -> Bill:
        return compute_bill(self.cart.items(), self.settings)

    # --- checkout ---

    def validate_checkout(self, customer: Mapping[str, str]) -> None:
        if not self.cart.items():
            raise ValidationError("Cart is empty")
        if not self.authenticated:
            raise ValidationError("Please login to continue")
        if not str(customer.get("address") or "").strip():
            raise ValidationError("Please add a delivery address")

    def start_checkout(self, provider: PaymentProvider, customer: Mapping[str, str]) -> PaymentSimulator:
        """
        Freeze the cart and bill, then start a payment for the grand total.

        The order only exists once the returned simulator settles; it is then
        available as ``simulator.order``.
        """
        self.validate_checkout(customer)
        self.stock.ensure_available(self.cart.items())

        lines = tuple(self.cart.items())
        bill = compute_bill(lines, self.settings)
        checkout_id = uuid.uuid4().hex[:12]
        customer = dict(customer)

        def settle(transaction_id: str) -> Order:
            req = CheckoutRequest(
                checkout_id=checkout_id,
                lines=lines,
                bill=bill,
                payment_method=provider.method,
                transaction_id=transaction_id,
                customer=customer,
            )
            with self.store.transaction():
                order = self.saga.execute(req)
                if self.order_service is not None:
                    self.order_service.create_order(order)
                self._persist()
            return order

        simulator = PaymentSimulator(self.store, checkout_id, settle, scheduler=self.scheduler)
        simulator.begin(provider, bill.grand_total)
        return simulator

    # --- orders ---

    def get_order(self, order_id: str) -> Order:
        return self.orders.get_by_id(order_id)

    def list_orders(self) -> List[Order]:
        return self.orders.list_by_recency()

    def cancel_order(self, order_id: str, reason: Optional[str] = None) -> Order:
        with self.store.transaction():
            order = self.orders.cancel(order_id, reason)
            if self.order_service is not None:
                self.order_service.cancel_order(order.id, order.cancel_reason)
            self._persist()
            return order

    def advance_order(self, order_id: str) -> Order:
        with self.store.transaction():
            order = self.orders.advance(order_id)
            self._persist()
            return order

    def refresh_statuses(self) -> List[Order]:
        with self.store.transaction():
            changed = self.orders.advance_due()
            if changed:
                self._persist()
            return changed

    def subscribe(self, listener: Callable[[Order, Any], None]) -> Callable[[], None]:
        return self.orders.subscribe(listener)
