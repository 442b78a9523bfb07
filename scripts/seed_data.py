#!/usr/bin/env python3
"""
Seed a development database with a small catalogue and a few orders.

Drops all tables, recreates them (with the append-only triggers on
PostgreSQL), registers a staff user, books opening stock for each product
through the ledger, and runs a handful of orders through the lifecycle.

Usage:
    python3 scripts/seed_data.py
    python3 scripts/seed_data.py --config config/fulfillment.yaml
"""

import argparse
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# (sku, name, price in paisa, opening stock)
CATALOGUE = [
    ("KRT-001", "Embroidered cotton kurta", 450000, 25),
    ("SHL-002", "Pashmina shawl", 1200000, 8),
    ("CHP-003", "Peshawari chappal", 350000, 15),
    ("MUG-004", "Truck-art mug", 90000, 40),
]

CUSTOMER = {
    "customer_email": "ayesha@example.com",
    "customer_name": "Ayesha Khan",
    "customer_phone": "+92 300 1234567",
    "shipping_country": "Pakistan",
    "shipping_address_line1": "House 12, Street 4, F-7/2",
    "shipping_city": "Islamabad",
    "shipping_postal_code": "44000",
}


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Reset the database and load demo data")
    p.add_argument(
        "--config",
        default=None,
        help="YAML config file (default: $FULFILLMENT_CONFIG, else built-in defaults)",
    )
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from fulfillment_kernel.config import load_config
    from fulfillment_kernel.db.engine import create_tables, drop_tables, session_scope
    from fulfillment_kernel.models.product import Product
    from fulfillment_kernel.models.user import User
    from fulfillment_kernel.services.fulfillment_service import FulfillmentService

    config = load_config(args.config)
    service = FulfillmentService.from_config(config)

    print(f"Resetting schema on {config.database.url} ...")
    drop_tables()
    create_tables()

    with session_scope() as session:
        staff = User(
            display_name="Bilal Ahmed",
            email="bilal@shop.example",
            role_names=["admin", "warehouse"],
        )
        session.add(staff)
        products = [
            Product(sku=sku, name=name, price_cents=price, currency="PKR")
            for sku, name, price, _ in CATALOGUE
        ]
        session.add_all(products)
        session.flush()
        staff_id = staff.id
        product_ids = {p.sku: p.id for p in products}

    for sku, name, _, opening in CATALOGUE:
        result = service.adjust_stock(product_ids[sku], opening, "Opening stock", staff_id)
        print(f"  {sku:<8} {name:<28} stock={result.stock_quantity}")

    placed = service.create_order(
        "seed-checkout-1",
        [
            {"product_id": product_ids["KRT-001"], "quantity": 2},
            {"product_id": product_ids["MUG-004"], "quantity": 4},
        ],
        CUSTOMER,
    )
    service.transition_order_status(placed["order_id"], "CONFIRMED")
    service.assign_staff(placed["order_id"], staff_id)
    service.transition_order_status(placed["order_id"], "SHIPPED")

    cancelled = service.create_order(
        "seed-checkout-2",
        [{"product_id": product_ids["SHL-002"], "quantity": 1}],
        CUSTOMER,
    )
    service.transition_order_status(cancelled["order_id"], "CANCELLED")

    orders = service.list_orders()
    print(f"Seeded {len(CATALOGUE)} products and {orders.total} orders:")
    for view in orders.items:
        print(f"  {view.id}  {view.status.value:<10} {view.total_cents / 100:>12,.2f} {view.currency}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
