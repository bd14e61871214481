from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from orderflow.config import Settings
from orderflow.errors import UnavailableError, ValidationError
from orderflow.models import CartLine
from orderflow.store import Store


class CartStore:
    def __init__(self, store: Store, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()

    @property
    def cap(self) -> int:
        return self.settings.max_line_quantity

    def _validate(self, line: CartLine) -> None:
        if not line.sku_id:
            raise ValidationError("Cart line needs a sku_id")
        if line.quantity < 1:
            raise ValidationError(f"Quantity for {line.sku_id} must be >= 1, got {line.quantity}")
        if line.unit_price < 0:
            raise ValidationError(f"Price for {line.sku_id} must be >= 0, got {line.unit_price}")

    def _fold(self, target: Dict[str, CartLine], line: CartLine) -> CartLine:
        existing = target.get(line.sku_id)
        if existing:
            merged = existing.with_quantity(min(self.cap, existing.quantity + line.quantity))
        else:
            merged = line.with_quantity(min(self.cap, line.quantity))
        target[line.sku_id] = merged
        return merged

    def add_item(self, line: CartLine) -> CartLine:
        self._validate(line)
        merged = self._fold(self.store.cart, line)
        self.store.log(f"cart add: {line.sku_id} +{line.quantity} (qty={merged.quantity})")
        return merged

    def add_to_pending(self, line: CartLine) -> CartLine:
        self._validate(line)
        merged = self._fold(self.store.pending_cart, line)
        self.store.log(f"pending add: {line.sku_id} +{line.quantity} (qty={merged.quantity})")
        return merged

    def merge_pending_into_cart(self) -> int:
        """Fold every pending line into the cart and empty the pending cart. Returns lines merged."""
        pending = list(self.store.pending_cart.values())
        if not pending:
            return 0
        for line in pending:
            self._fold(self.store.cart, line)
        self.store.pending_cart.clear()
        self.store.log(f"pending merged: {len(pending)} line(s)")
        return len(pending)

    def update_quantity(self, sku_id: str, delta: int) -> Optional[CartLine]:
        existing = self.store.cart.get(sku_id)
        if existing is None:
            return None
        quantity = min(self.cap, max(0, existing.quantity + delta))
        if quantity == 0:
            del self.store.cart[sku_id]
            self.store.log(f"cart remove: {sku_id} (qty reached 0)")
            return None
        updated = existing.with_quantity(quantity)
        self.store.cart[sku_id] = updated
        self.store.log(f"cart update: {sku_id} {delta:+d} (qty={quantity})")
        return updated

    def remove_item(self, sku_id: str) -> None:
        if self.store.cart.pop(sku_id, None) is not None:
            self.store.log(f"cart remove: {sku_id}")

    def clear(self) -> None:
        self.store.cart.clear()
        self.store.log("cart cleared")

    def remove_lines(self, lines: Iterable[CartLine]) -> List[CartLine]:
        """
        Take the given quantities out of the cart, leaving anything else in place.

        Returns the touched lines as they were before, for restore_lines.
        """
        previous: List[CartLine] = []
        for line in lines:
            existing = self.store.cart.get(line.sku_id)
            if existing is None:
                continue
            previous.append(existing)
            remaining = existing.quantity - line.quantity
            if remaining > 0:
                self.store.cart[line.sku_id] = existing.with_quantity(remaining)
            else:
                del self.store.cart[line.sku_id]
        self.store.log(f"cart checked out: {len(previous)} line(s), {len(self.store.cart)} left")
        return previous

    def restore_lines(self, lines: Iterable[CartLine]) -> None:
        """Put lines back exactly as they were (used to undo a checkout)."""
        for line in lines:
            self.store.cart[line.sku_id] = line
        self.store.log("cart restored")

    def items(self) -> List[CartLine]:
        return list(self.store.cart.values())

    def pending_items(self) -> List[CartLine]:
        return list(self.store.pending_cart.values())

    def quantity_of(self, sku_id: str) -> int:
        line = self.store.cart.get(sku_id)
        return line.quantity if line else 0

    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.store.cart.values()), Decimal("0"))

    def count(self) -> int:
        return sum(line.quantity for line in self.store.cart.values())


class StockLedger:
    def __init__(self, store: Store, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()

    def on_hand(self, sku_id: str) -> int:
        return self.store.stock.get(sku_id, self.settings.default_stock_seed)

    def set_stock(self, sku_id: str, on_hand: int) -> None:
        self.store.set_stock(sku_id, on_hand)
        self.store.log(f"stock set: {sku_id} (on_hand={on_hand})")

    def available_for_purchase(self, sku_id: str, quantity_already_in_cart: int = 0) -> int:
        return max(0, self.on_hand(sku_id) - quantity_already_in_cart)

    def ensure_available(self, lines: Iterable[CartLine]) -> None:
        short = [line.sku_id for line in lines if self.available_for_purchase(line.sku_id) < line.quantity]
        if short:
            raise UnavailableError(f"Item no longer available: {', '.join(short)}", skus=short)

    def deduct(self, lines: Iterable[CartLine], ref: Optional[str] = None) -> None:
        prefix = f"[{ref}] " if ref else ""
        for line in lines:
            # Unseen SKUs start from the seed; never below zero.
            on_hand = max(0, self.on_hand(line.sku_id) - line.quantity)
            self.store.stock[line.sku_id] = on_hand
            self.store.log(f"{prefix}stock deducted: {line.sku_id} qty={line.quantity} (on_hand={on_hand})")

    def restore(self, lines: Iterable[CartLine], ref: Optional[str] = None) -> None:
        prefix = f"[{ref}] " if ref else ""
        for line in lines:
            on_hand = self.on_hand(line.sku_id) + line.quantity
            self.store.stock[line.sku_id] = on_hand
            self.store.log(f"{prefix}stock restored: {line.sku_id} qty={line.quantity} (on_hand={on_hand})")
