from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from orderflow.models import CartLine, CheckoutRequest, Order
from orderflow.orders import OrderLifecycle
from orderflow.services import CartStore, StockLedger
from orderflow.store import Store


class SagaError(Exception):
    pass


class Step(ABC):
    def __init__(self, store: Store, checkout_id: str):
        self.store = store
        self.checkout_id = checkout_id

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def execute(self) -> None: ...

    @abstractmethod
    def compensate(self) -> None: ...

    def run(self) -> None:
        self.store.log(f"[checkout={self.checkout_id}] STEP {self.name()}")
        self.execute()
        self.store.log(f"[checkout={self.checkout_id}] STEP {self.name()} OK")

    def run_compensation(self) -> None:
        self.store.log(f"[checkout={self.checkout_id}] COMPENSATE {self.name()}")
        self.compensate()
        self.store.log(f"[checkout={self.checkout_id}] COMPENSATE {self.name()} OK")


class ReserveStock(Step):
    def __init__(self, store: Store, checkout_id: str, ledger: StockLedger, lines: List[CartLine]):
        super().__init__(store, checkout_id)
        self.ledger = ledger
        self.lines = lines

    def name(self) -> str:
        return "ReserveStock"

    def execute(self) -> None:
        # Availability seen when the item was added may be stale by settlement time.
        self.ledger.ensure_available(self.lines)
        self.ledger.deduct(self.lines, ref=f"checkout={self.checkout_id}")

    def compensate(self) -> None:
        self.ledger.restore(self.lines, ref=f"checkout={self.checkout_id}")


class CreateOrder(Step):
    def __init__(self, store: Store, checkout_id: str, lifecycle: OrderLifecycle, req: CheckoutRequest):
        super().__init__(store, checkout_id)
        self.lifecycle = lifecycle
        self.req = req
        self.order: Optional[Order] = None

    def name(self) -> str:
        return "CreateOrder"

    def execute(self) -> None:
        self.order = self.lifecycle.create(
            self.req.lines,
            self.req.bill,
            self.req.payment_method,
            self.req.transaction_id,
            customer=self.req.customer,
            checkout_id=self.req.checkout_id,
        )

    def compensate(self) -> None:
        if self.order is not None:
            self.lifecycle.discard(self.order.id)


class ClearCart(Step):
    def __init__(self, store: Store, checkout_id: str, cart: CartStore, lines: List[CartLine]):
        super().__init__(store, checkout_id)
        self.cart = cart
        self.lines = lines
        self.cleared: List[CartLine] = []

    def name(self) -> str:
        return "ClearCart"

    def execute(self) -> None:
        # Only what was paid for; lines added while the payment was processing stay.
        self.cleared = self.cart.remove_lines(self.lines)

    def compensate(self) -> None:
        self.cart.restore_lines(self.cleared)


class CheckoutSaga:
    """
    Runs deduct stock -> create order -> clear cart as one unit.

    Any failure compensates the completed steps in reverse and re-raises,
    so callers never see stock deducted without an order or vice versa.
    """

    def __init__(self, store: Store, cart: CartStore, stock: StockLedger, orders: OrderLifecycle):
        self.store = store
        self.cart = cart
        self.stock = stock
        self.orders = orders

    def execute(self, req: CheckoutRequest, fail_at_step: Optional[str] = None) -> Order:
        cid = req.checkout_id
        with self.store.transaction():
            existing = self.orders.find_by_checkout(cid)
            if existing is not None:
                self.store.log(f"[checkout={cid}] already settled as order={existing.id}")
                return existing

            self.store.log(
                f"[checkout={cid}] SAGA START lines={len(req.lines)} total={req.bill.grand_total} "
                f"method={req.payment_method}"
            )
            if not req.lines:
                raise ValueError("checkout needs at least one line")

            create_order = CreateOrder(self.store, cid, self.orders, req)
            steps: List[Step] = [
                ReserveStock(self.store, cid, self.stock, list(req.lines)),
                create_order,
                ClearCart(self.store, cid, self.cart, list(req.lines)),
            ]

            completed: List[Step] = []
            try:
                for step in steps:
                    if fail_at_step == step.name():
                        raise SagaError(f"Artificial failure at step {step.name()}")
                    step.run()
                    completed.append(step)
            except Exception as e:
                self.store.log(f"[checkout={cid}] SAGA FAILED: {e}")
                for step in reversed(completed):
                    try:
                        step.run_compensation()
                    except Exception as comp_exc:
                        self.store.log(f"[checkout={cid}] COMPENSATION FAILED at {step.name()}: {comp_exc}")
                self.store.log(f"[checkout={cid}] SAGA END (failed)")
                raise

            self.store.log(f"[checkout={cid}] SAGA OK order={create_order.order.id}")
            return create_order.order
