from __future__ import annotations

import argparse

from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.db.models import Product, Service, Shop, User
from sqlalchemy.orm import Session

USERS = (
    # id, name, phone, role, location
    ("u-customer", "Asha", "9876543210", "customer", "Gandhi Nagar"),
    ("u-owner", "Ravi", "9123456780", "business", "Main Bazaar"),
    ("u-owner-2", "Lakshmi", "9988776655", "business", "Temple Street"),
    ("u-provider-1", "Suresh", "9000000001", "customer", "Rail Colony"),
    ("u-provider-2", "Meena", "9000000002", "customer", "Bus Stand Road"),
)

SHOPS = (
    ("shop-1", "u-owner", "Ravi Kirana", "Main Bazaar"),
    ("shop-2", "u-owner-2", "Lakshmi Sweets", "Temple Street"),
)

PRODUCTS = (
    # id, shop_id, name, price in paise, active
    ("p-rice", "shop-1", "Sona Masoori Rice 1kg", 5500, True),
    ("p-dal", "shop-1", "Toor Dal 1kg", 12000, True),
    ("p-laddu", "shop-2", "Besan Laddu 500g", 25000, True),
    ("p-retired", "shop-2", "Seasonal Box", 40000, False),
)

SERVICES = (
    ("svc-plumbing", "Plumbing", "Leaks, fittings and bathroom repairs"),
    ("svc-electrician", "Electrician", "Wiring, fans and switchboards"),
)


def seed(db: Session) -> None:
    """Insert the demo rows that are missing; existing rows are left untouched."""

    for uid, name, phone, role, location in USERS:
        if db.get(User, uid) is None:
            db.add(User(id=uid, name=name, phone=phone, role=role, location=location))

    for shop_id, owner_id, name, location in SHOPS:
        if db.get(Shop, shop_id) is None:
            db.add(Shop(id=shop_id, owner_id=owner_id, name=name, location=location))

    for product_id, shop_id, name, price_paise, active in PRODUCTS:
        if db.get(Product, product_id) is None:
            db.add(
                Product(
                    id=product_id,
                    shop_id=shop_id,
                    name=name,
                    price_paise=price_paise,
                    is_active=active,
                )
            )

    for service_id, name, description in SERVICES:
        if db.get(Service, service_id) is None:
            db.add(Service(id=service_id, name=name, description=description))

    db.commit()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed Manacity demo data")
    parser.parse_args()

    init_db()

    db = db_session()
    try:
        seed(db)
        print(f"Seeded {len(USERS)} users, {len(SHOPS)} shops, {len(PRODUCTS)} products")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
