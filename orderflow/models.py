from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from orderflow.errors import ValidationError


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary float expansion
    return Decimal(str(value))


@dataclass(frozen=True, slots=True)
class CartLine:
    """
    One cart row. Only sku_id, unit_price and quantity matter to the engine;
    everything the catalog sends for display (image, veg flag, restaurant id...)
    rides along in metadata untouched.
    """

    sku_id: str
    unit_price: Decimal
    quantity: int = 1
    name: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def with_quantity(self, quantity: int) -> "CartLine":
        return replace(self, quantity=quantity)

    @classmethod
    def from_catalog(cls, record: Mapping[str, Any], quantity: int = 1) -> "CartLine":
        """Build a line from a restaurant/grocery catalog record (id falls back to name)."""
        sku_id = record.get("id") or record.get("_id") or record.get("name")
        if not sku_id:
            raise ValidationError("Catalog record has neither id nor name")
        metadata = {k: v for k, v in record.items() if k not in ("id", "_id", "name", "price", "quantity")}
        return cls(
            sku_id=str(sku_id),
            unit_price=record.get("price", 0),
            quantity=int(record.get("quantity", quantity)),
            name=str(record.get("name", "")),
            metadata=metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku_id": self.sku_id,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "name": self.name,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartLine":
        return cls(
            sku_id=data["sku_id"],
            unit_price=data["unit_price"],
            quantity=int(data["quantity"]),
            name=data.get("name", ""),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True, slots=True)
class Bill:
    subtotal: Decimal
    tax: Decimal
    delivery_fee: Decimal
    grand_total: Decimal
    discount: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, str]:
        return {
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "delivery_fee": str(self.delivery_fee),
            "grand_total": str(self.grand_total),
            "discount": str(self.discount),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Bill":
        return cls(
            subtotal=Decimal(data["subtotal"]),
            tax=Decimal(data["tax"]),
            delivery_fee=Decimal(data["delivery_fee"]),
            grand_total=Decimal(data["grand_total"]),
            discount=Decimal(data.get("discount", "0")),
        )


class OrderStatus(str, Enum):
    PLACED = "Order Placed"
    CONFIRMED = "Confirmed"
    PREPARING = "Preparing"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


# Fixed progression; CANCELLED is reachable only from PLACED and sits outside it.
ORDER_STAGES: Tuple[OrderStatus, ...] = (
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)


@dataclass(slots=True)
class Order:
    """
    Placed order. items and bill are frozen snapshots taken at creation;
    only status and the cancellation fields change afterwards.
    """

    id: str
    items: Tuple[CartLine, ...]
    bill: Bill
    created_at: datetime
    payment_method: str
    transaction_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PLACED
    customer: Mapping[str, str] = field(default_factory=dict)
    checkout_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    refund_status: Optional[str] = None
    status_history: List[Tuple[OrderStatus, datetime]] = field(default_factory=list)

    @property
    def can_cancel(self) -> bool:
        return self.status is OrderStatus.PLACED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "items": [line.to_dict() for line in self.items],
            "bill": self.bill.to_dict(),
            "created_at": self.created_at.isoformat(),
            "payment_method": self.payment_method,
            "transaction_id": self.transaction_id,
            "status": self.status.value,
            "customer": dict(self.customer),
            "checkout_id": self.checkout_id,
            "cancel_reason": self.cancel_reason,
            "refund_status": self.refund_status,
            "status_history": [[s.value, ts.isoformat()] for s, ts in self.status_history],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            items=tuple(CartLine.from_dict(d) for d in data["items"]),
            bill=Bill.from_dict(data["bill"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            payment_method=data["payment_method"],
            transaction_id=data.get("transaction_id"),
            status=OrderStatus(data["status"]),
            customer=data.get("customer") or {},
            checkout_id=data.get("checkout_id"),
            cancel_reason=data.get("cancel_reason"),
            refund_status=data.get("refund_status"),
            status_history=[(OrderStatus(s), datetime.fromisoformat(ts)) for s, ts in data.get("status_history", [])],
        )


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    """Everything a settled payment hands to the checkout saga."""

    checkout_id: str
    lines: Tuple[CartLine, ...]
    bill: Bill
    payment_method: str
    transaction_id: Optional[str] = None
    customer: Mapping[str, str] = field(default_factory=dict)
