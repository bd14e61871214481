"""Pytest fixtures for the ordering core."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from orderflow.config import Settings
from orderflow.models import CartLine
from orderflow.orders import OrderLifecycle
from orderflow.services import CartStore, StockLedger
from orderflow.shop import Shop
from orderflow.store import Store


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class ManualScheduler:
    """Collects settlement callbacks; tests fire them explicitly."""

    class Handle:
        def __init__(self, delay, callback) -> None:
            self.delay = delay
            self.callback = callback
            self.cancelled = False

        def cancel(self) -> None:
            self.cancelled = True

    def __init__(self) -> None:
        self.pending = []

    def __call__(self, delay, callback):
        handle = self.Handle(delay, callback)
        self.pending.append(handle)
        return handle

    def fire_all(self) -> None:
        handles, self.pending = self.pending, []
        for handle in handles:
            if not handle.cancelled:
                handle.callback()


def line(sku: str = "sku-1", price="100", qty: int = 1, **metadata) -> CartLine:
    return CartLine(sku_id=sku, unit_price=Decimal(price), quantity=qty, name=sku, metadata=metadata)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def store(clock) -> Store:
    return Store(clock=clock)


@pytest.fixture
def cart(store, settings) -> CartStore:
    return CartStore(store, settings)


@pytest.fixture
def ledger(store, settings) -> StockLedger:
    return StockLedger(store, settings)


@pytest.fixture
def lifecycle(store, ledger, settings) -> OrderLifecycle:
    return OrderLifecycle(store, ledger, settings)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def shop(store, settings, scheduler) -> Shop:
    shop = Shop(store=store, settings=settings, scheduler=scheduler)
    shop.on_authenticated()

    shop.stock.set_stock("sku-1", 3)
    shop.stock.set_stock("sku-2", 5)
    shop.stock.set_stock("sku-empty", 0)  # Out of stock
    return shop


CUSTOMER = {"name": "User", "address": "12 Food Street", "phone": "9999999999"}
