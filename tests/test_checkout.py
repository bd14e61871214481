"""Tests for checkout orchestration: payment settlement, stock, orders and cart together."""
import logging
from decimal import Decimal

import pytest

from conftest import CUSTOMER, line
from orderflow.errors import UnavailableError, ValidationError
from orderflow.models import CheckoutRequest, OrderStatus
from orderflow.payment import CASH_ON_DELIVERY, PHONEPE, PaymentState
from orderflow.pricing import compute_bill
from orderflow.saga import ClearCart, SagaError
from orderflow.shop import Shop

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def _checkout_logs(store, checkout_id: str) -> list[str]:
    return [l for l in store.logs if f"[checkout={checkout_id}]" in l]


def _pay(shop, scheduler, provider=PHONEPE):
    payment = shop.start_checkout(provider, CUSTOMER)
    if provider.credential == "pin":
        payment.submit_credential("1234")
    scheduler.fire_all()
    return payment


def _request(shop, checkout_id="c1"):
    lines = tuple(shop.cart.items())
    return CheckoutRequest(
        checkout_id=checkout_id,
        lines=lines,
        bill=compute_bill(lines),
        payment_method="upi",
        transaction_id="TXN",
        customer=CUSTOMER,
    )


def test_successful_checkout(shop, scheduler):
    """Settlement places one order, empties the stock for the sku and clears the cart."""
    logging.info("\n=== TEST: Successful checkout ===")

    shop.add_item(line("sku-1", price="100", qty=3))

    payment = _pay(shop, scheduler)

    # Assertions
    assert payment.state is PaymentState.SUCCEEDED
    order = payment.order
    assert shop.list_orders() == [order]
    assert order.bill.subtotal == Decimal("300")
    assert order.bill.grand_total == Decimal("340")
    assert order.transaction_id == payment.transaction_id
    assert order.customer["address"] == CUSTOMER["address"]
    assert shop.stock.on_hand("sku-1") == 0
    assert shop.cart.items() == []

    logs = _checkout_logs(shop.store, payment.checkout_id)
    assert any("STEP ReserveStock OK" in l for l in logs)
    assert any("STEP CreateOrder OK" in l for l in logs)
    assert any("STEP ClearCart OK" in l for l in logs)
    assert any("SAGA OK" in l for l in logs)
    assert not any("COMPENSATE" in l for l in logs)

    logging.info("✓ Checkout completed successfully")


def test_cancel_restores_stock(shop, scheduler):
    shop.add_item(line("sku-1", price="100", qty=3))
    order = _pay(shop, scheduler).order

    cancelled = shop.cancel_order(order.id)

    assert cancelled.status is OrderStatus.CANCELLED
    assert shop.stock.on_hand("sku-1") == 3
    assert cancelled.bill.subtotal == Decimal("300")


def test_nothing_happens_before_settlement(shop, scheduler):
    shop.add_item(line("sku-1", qty=2))

    payment = shop.start_checkout(PHONEPE, CUSTOMER)
    payment.submit_credential("1234")

    assert payment.state is PaymentState.PROCESSING
    assert shop.list_orders() == []
    assert shop.stock.on_hand("sku-1") == 3
    assert shop.cart.quantity_of("sku-1") == 2


def test_cancelled_payment_creates_nothing(shop, scheduler):
    shop.add_item(line("sku-1", qty=2))
    payment = shop.start_checkout(PHONEPE, CUSTOMER)
    payment.submit_credential("1234")

    payment.cancel()
    scheduler.fire_all()

    assert payment.state is PaymentState.CANCELLED
    assert shop.list_orders() == []
    assert shop.stock.on_hand("sku-1") == 3
    assert shop.cart.quantity_of("sku-1") == 2


def test_items_added_while_payment_processes_stay_in_cart(shop, scheduler):
    """Settlement takes only what was paid for out of the cart."""
    logging.info("\n=== TEST: Cart edits during payment processing ===")

    shop.add_item(line("sku-1", qty=1))
    payment = shop.start_checkout(PHONEPE, CUSTOMER)
    payment.submit_credential("1234")

    shop.add_item(line("sku-2", price="40", qty=2))
    shop.add_item(line("sku-1", qty=1))
    scheduler.fire_all()

    # Assertions
    assert payment.state is PaymentState.SUCCEEDED
    assert [(l.sku_id, l.quantity) for l in payment.order.items] == [("sku-1", 1)]
    assert shop.cart.quantity_of("sku-2") == 2
    assert shop.cart.quantity_of("sku-1") == 1
    assert shop.stock.on_hand("sku-1") == 2
    assert shop.stock.on_hand("sku-2") == 5

    logging.info("✓ Later additions kept for the next checkout")


def test_failed_clear_puts_back_only_the_touched_lines(shop):
    shop.add_item(line("sku-1", qty=2))
    req = _request(shop)
    shop.add_item(line("sku-2", price="40", qty=1))
    clear = ClearCart(shop.store, "c1", shop.cart, list(req.lines))

    clear.run()
    assert shop.cart.quantity_of("sku-1") == 0
    assert shop.cart.quantity_of("sku-2") == 1

    clear.run_compensation()
    assert shop.cart.quantity_of("sku-1") == 2
    assert shop.cart.quantity_of("sku-2") == 1


def test_second_checkout_for_same_stock_fails_at_settlement(shop, scheduler):
    """Two tabs check out the same cart; the stock re-check stops the second one."""
    logging.info("\n=== TEST: Stock re-check at settlement ===")

    shop.add_item(line("sku-1", qty=3))
    first = shop.start_checkout(PHONEPE, CUSTOMER)
    second = shop.start_checkout(PHONEPE, CUSTOMER)
    first.submit_credential("1111")
    second.submit_credential("2222")

    first.on_settle()
    with pytest.raises(UnavailableError, match="no longer available"):
        second.on_settle()

    # Assertions
    assert first.state is PaymentState.SUCCEEDED
    assert second.state is PaymentState.FAILED
    assert len(shop.list_orders()) == 1
    assert shop.stock.on_hand("sku-1") == 0

    logs = _checkout_logs(shop.store, second.checkout_id)
    assert any("SAGA FAILED" in l for l in logs)
    assert any("COMPENSATE" in l for l in logs) is False  # nothing was deducted

    logging.info("✓ Second checkout rejected without side effects")


def test_unavailable_at_settlement_keeps_cart(shop, scheduler):
    shop.add_item(line("sku-2", qty=4))
    payment = shop.start_checkout(PHONEPE, CUSTOMER)
    payment.submit_credential("1234")

    # another customer buys stock while this payment is processing
    shop.stock.deduct([line("sku-2", qty=3)])
    scheduler.fire_all()

    assert payment.state is PaymentState.FAILED
    assert isinstance(payment.error, UnavailableError)
    assert shop.list_orders() == []
    assert shop.stock.on_hand("sku-2") == 2
    assert shop.cart.quantity_of("sku-2") == 4


@pytest.mark.parametrize(
    "fail_at, compensated",
    [
        ("ReserveStock", []),
        ("CreateOrder", ["ReserveStock"]),
        ("ClearCart", ["CreateOrder", "ReserveStock"]),
    ],
)
def test_artificial_failure_compensates_completed_steps(shop, fail_at, compensated):
    shop.add_item(line("sku-1", qty=2))
    shop.add_item(line("sku-2", price="40", qty=1))
    req = _request(shop)

    with pytest.raises(SagaError):
        shop.saga.execute(req, fail_at_step=fail_at)

    assert shop.list_orders() == []
    assert shop.stock.on_hand("sku-1") == 3
    assert shop.stock.on_hand("sku-2") == 5
    assert shop.cart.quantity_of("sku-1") == 2
    assert shop.cart.quantity_of("sku-2") == 1

    logs = _checkout_logs(shop.store, "c1")
    done = [l.split("COMPENSATE ")[1] for l in logs if "COMPENSATE" in l and not l.endswith("OK")]
    assert done == compensated
    assert logs[-1].endswith("SAGA END (failed)")


def test_saga_is_idempotent_per_checkout(shop):
    shop.add_item(line("sku-1", qty=1))
    req = _request(shop)

    order = shop.saga.execute(req)
    again = shop.saga.execute(req)

    assert again is order
    assert shop.stock.on_hand("sku-1") == 2
    assert len(shop.list_orders()) == 1


def test_cash_on_delivery_places_order_immediately(shop):
    shop.add_item(line("sku-2", price="250", qty=2))

    payment = shop.start_checkout(CASH_ON_DELIVERY, CUSTOMER)

    assert payment.state is PaymentState.SUCCEEDED
    assert payment.order.payment_method == "cod"
    assert payment.order.bill.delivery_fee == Decimal("0")
    assert shop.cart.items() == []


@pytest.mark.parametrize(
    "prepare, customer, message",
    [
        (lambda s: None, CUSTOMER, "Cart is empty"),
        (lambda s: s.add_item(line("sku-1")), {"name": "User", "address": "  "}, "address"),
        (lambda s: (s.add_item(line("sku-1")), s.on_signed_out()), CUSTOMER, "login"),
    ],
)
def test_checkout_validation(shop, prepare, customer, message):
    prepare(shop)

    with pytest.raises(ValidationError, match=message):
        shop.start_checkout(PHONEPE, customer)
    assert shop.list_orders() == []


def test_checkout_refused_when_already_out_of_stock(shop):
    shop.add_item(line("sku-1", qty=2))
    shop.stock.set_stock("sku-1", 1)

    with pytest.raises(UnavailableError):
        shop.start_checkout(PHONEPE, CUSTOMER)


def test_add_item_respects_availability(shop):
    shop.add_item(line("sku-1", qty=2))

    assert shop.available_for_purchase("sku-1") == 1
    with pytest.raises(UnavailableError):
        shop.add_item(line("sku-1", qty=2))
    with pytest.raises(UnavailableError):
        shop.add_item(line("sku-empty"))
    with pytest.raises(UnavailableError):
        shop.update_quantity("sku-1", 2)

    assert shop.cart.quantity_of("sku-1") == 2
    assert shop.update_quantity("sku-1", 1).quantity == 3


def test_guest_items_merge_on_login(store, settings, scheduler):
    shop = Shop(store=store, settings=settings, scheduler=scheduler)
    shop.add_item(line("sku-1", qty=2))
    shop.add_item(line("sku-1", qty=1))

    assert shop.cart.items() == []
    assert shop.on_authenticated() == 1
    assert shop.cart.quantity_of("sku-1") == 3
    assert shop.on_authenticated() == 0
    assert shop.cart.quantity_of("sku-1") == 3
