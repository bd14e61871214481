from __future__ import annotations

import argparse
import logging

from orderflow.config import Settings
from orderflow.errors import CheckoutError
from orderflow.models import CartLine
from orderflow.payment import PROVIDERS
from orderflow.persistence import SqliteStatePersistence
from orderflow.shop import Shop


def run_inline(delay, callback):
    # settle immediately so the demo does not wait for the simulated delay
    callback()
    return _Done()


class _Done:
    def cancel(self) -> None:
        pass


def seed(shop: Shop) -> None:
    for sku, on_hand in (("paneer-tikka", 3), ("masala-dosa", 10)):
        if sku not in shop.store.stock:
            shop.stock.set_stock(sku, on_hand)


def main() -> None:
    # plain logs without noisy prefixes
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    p = argparse.ArgumentParser(description="Run one checkout end to end and print the resulting state.")
    p.add_argument("--sku", type=str, default="paneer-tikka")
    p.add_argument("--price", type=str, default="100")
    p.add_argument("--qty", type=int, default=3)
    p.add_argument("--provider", choices=sorted(PROVIDERS), default="phonepe")
    p.add_argument("--pin", type=str, default="1234")
    p.add_argument("--address", type=str, default="Home Address")
    p.add_argument("--cancel", action="store_true", help="Cancel the order right after it is placed")
    p.add_argument("--db", type=str, default=None, help="SQLite file to load/save state")
    args = p.parse_args()

    persistence = SqliteStatePersistence(args.db) if args.db else None
    shop = Shop(settings=Settings.from_env(), persistence=persistence, scheduler=run_inline)
    shop.load()
    seed(shop)

    # item added as a guest, merged on login
    shop.add_item(CartLine(sku_id=args.sku, unit_price=args.price, quantity=args.qty, name=args.sku))
    shop.on_authenticated()

    provider = PROVIDERS[args.provider]
    print("bill:", shop.checkout_bill())
    try:
        payment = shop.start_checkout(provider, {"name": "User", "address": args.address})
        if provider.credential == "pin":
            payment.submit_credential(args.pin)
        elif provider.credential == "card":
            payment.submit_credential({"number": "4111111111111111", "expiry": "12/30", "cvv": "123", "name": "User"})
        order = payment.order
        if order and args.cancel:
            shop.cancel_order(order.id)
    except CheckoutError as exc:
        print("checkout failed:", exc)

    print("\n=== RESULT ===")
    print("cart:", shop.cart.items())
    print("stock:", shop.store.stock)
    for order in shop.list_orders():
        print("order:", order.id, order.status.value, order.bill.grand_total, order.transaction_id)


if __name__ == "__main__":
    main()
