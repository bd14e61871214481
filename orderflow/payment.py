"""
Simulated payment flow.

No payment network is involved: a provider descriptor decides whether a
credential is needed and how long "processing" takes, then settlement hands
a fresh transaction id to the success callback (the checkout saga).
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol

from orderflow.errors import NotAllowedError, ValidationError
from orderflow.models import Order, to_decimal
from orderflow.store import Store

logger = logging.getLogger(__name__)

CARD_FIELDS = ("number", "expiry", "cvv", "name")


class PaymentState(str, Enum):
    IDLE = "idle"
    AWAITING_CREDENTIAL = "awaiting_credential"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentState.SUCCEEDED, PaymentState.FAILED, PaymentState.CANCELLED)


@dataclass(frozen=True, slots=True)
class PaymentProvider:
    name: str
    label: str
    method: str  # upi | card | cod
    credential: Optional[str] = None  # pin | card | None
    prefix: str = ""
    processing_delay: float = 4.0


GPAY = PaymentProvider("gpay", "Google Pay", "upi", credential="pin", prefix="", processing_delay=4.0)
PHONEPE = PaymentProvider("phonepe", "PhonePe", "upi", credential="pin", prefix="T", processing_delay=4.0)
PAYTM = PaymentProvider("paytm", "Paytm", "upi", credential="pin", prefix="PTM", processing_delay=4.0)
CARD = PaymentProvider("card", "Credit / Debit Card", "card", credential="card", prefix="CRD", processing_delay=3.0)
CASH_ON_DELIVERY = PaymentProvider("cod", "Cash on Delivery", "cod", credential=None, prefix="COD", processing_delay=0.0)

PROVIDERS = {p.name: p for p in (GPAY, PHONEPE, PAYTM, CARD, CASH_ON_DELIVERY)}


def get_provider(name: str) -> PaymentProvider:
    try:
        return PROVIDERS[name.lower()]
    except KeyError:
        raise ValidationError(f"Unknown payment provider {name!r}") from None


class Cancellable(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], Cancellable]


def timer_scheduler(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


def validate_credential(provider: PaymentProvider, credential: Any) -> None:
    if provider.credential == "pin":
        pin = credential if isinstance(credential, str) else ""
        if not (len(pin) == 4 and pin.isascii() and pin.isdigit()):
            raise ValidationError("Please enter 4-digit UPI PIN")
    elif provider.credential == "card":
        fields = credential if isinstance(credential, Mapping) else {}
        missing = [f for f in CARD_FIELDS if not str(fields.get(f) or "").strip()]
        if missing:
            raise ValidationError(f"Please fill in all card details (missing: {', '.join(missing)})")


class PaymentSimulator:
    """
    idle -> awaiting_credential -> processing -> succeeded | failed, cancelled from any
    non-terminal state.

    ``on_success(transaction_id)`` runs at most once per simulator; repeated or late
    settlement callbacks are ignored.
    """

    def __init__(
        self,
        store: Store,
        checkout_id: str,
        on_success: Callable[[str], Order],
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.store = store
        self.checkout_id = checkout_id
        self._on_success = on_success
        self._schedule = scheduler or timer_scheduler
        self._lock = threading.RLock()
        self._timer: Optional[Cancellable] = None

        self.state = PaymentState.IDLE
        self.provider: Optional[PaymentProvider] = None
        self.amount = Decimal("0")
        self.transaction_id: Optional[str] = None
        self.order: Optional[Order] = None
        self.error: Optional[Exception] = None

    def _log(self, message: str) -> None:
        self.store.log(f"[checkout={self.checkout_id}] payment {message}")

    def _new_transaction_id(self) -> str:
        digits = uuid.uuid4().int % 10**12
        return f"{self.provider.prefix}{digits:012d}"

    def begin(self, provider: PaymentProvider, amount: Any) -> PaymentState:
        with self._lock:
            if self.state is not PaymentState.IDLE:
                raise NotAllowedError(f"Payment already {self.state.value}")
            self.provider = provider
            self.amount = to_decimal(amount)
            self._log(f"begin: {provider.label} amount={self.amount}")
            if provider.credential:
                self.state = PaymentState.AWAITING_CREDENTIAL
            else:
                self._start_processing()
            return self.state

    def submit_credential(self, credential: Any) -> PaymentState:
        with self._lock:
            if self.state is not PaymentState.AWAITING_CREDENTIAL:
                raise NotAllowedError(f"Not waiting for a credential (state={self.state.value})")
            try:
                validate_credential(self.provider, credential)
            except ValidationError as exc:
                self._log(f"credential rejected: {exc}")
                raise
            self._log("credential accepted")
            self._start_processing()
            return self.state

    def _start_processing(self) -> None:
        self.state = PaymentState.PROCESSING
        delay = self.provider.processing_delay
        if delay <= 0:
            self.on_settle()
            return
        self._log(f"processing (settles in {delay}s)")
        self._timer = self._schedule(delay, self._settle_from_timer)

    def _settle_from_timer(self) -> None:
        try:
            self.on_settle()
        except Exception as exc:
            # Already recorded on self.error and in the store log; nobody waits on a timer thread.
            logger.warning("[checkout=%s] settlement failed: %s", self.checkout_id, exc)

    def on_settle(self) -> Optional[Order]:
        with self._lock:
            if self.state is not PaymentState.PROCESSING:
                self._log(f"settle ignored (state={self.state.value})")
                return self.order
            self._timer = None
            transaction_id = self._new_transaction_id()
            try:
                self.order = self._on_success(transaction_id)
            except Exception as exc:
                self.state = PaymentState.FAILED
                self.error = exc
                self._log(f"failed: {exc}")
                raise
            self.transaction_id = transaction_id
            self.state = PaymentState.SUCCEEDED
            self._log(f"succeeded: txn={transaction_id} order={self.order.id}")
            return self.order

    def cancel(self) -> PaymentState:
        with self._lock:
            if self.state.is_terminal:
                raise NotAllowedError(f"Payment already {self.state.value}")
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self.state = PaymentState.CANCELLED
            self._log("cancelled")
            return self.state
