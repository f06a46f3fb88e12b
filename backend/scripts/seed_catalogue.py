#!/usr/bin/env python3
"""
Seed suppliers and products, either from a JSON file or from a small
built-in set (enough to exercise orders, returns and sales by hand).

The JSON file may be {"suppliers": [...], "products": [...]} or a plain
list of products.

Usage:
    python scripts/seed_catalogue.py
    python scripts/seed_catalogue.py --file catalogue.json --reset
"""
import argparse
import json
import os
import sys
from decimal import Decimal, InvalidOperation

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tiberio.db import SessionLocal, init_db
from tiberio.models.product import Product
from tiberio.models.supplier import Supplier

DEFAULT_SUPPLIERS = [
    {"name": "Medisupply Co", "contact_person": "Ana Reyes", "contact_number": "555-0100"},
    {"name": "Northwind Pharma", "contact_person": "Lee Park", "email": "orders@northwind.test"},
]

DEFAULT_PRODUCTS = [
    {"code": "GAUZE-01", "description": "Sterile gauze pads 10x10", "unit_price": "2.50", "stock": 40},
    {"code": "SYR-05", "description": "Syringe 5ml", "unit_price": "0.80", "stock": 200},
    {"code": "AMOX-500", "description": "Amoxicillin 500mg (box)", "unit_price": "4.00", "stock": 25},
]


def _normalize_product(entry):
    code = entry.get("code") or entry.get("sku")
    try:
        unit_price = Decimal(str(entry.get("unit_price", entry.get("price", 0)) or 0))
    except InvalidOperation:
        unit_price = Decimal("0")
    try:
        stock = int(entry.get("stock", 0) or 0)
    except (TypeError, ValueError):
        stock = 0
    return {
        "code": code,
        "description": entry.get("description") or entry.get("name") or "",
        "unit_price": unit_price,
        "stock": stock,
    }


def load_source(path):
    if not path:
        return DEFAULT_SUPPLIERS, DEFAULT_PRODUCTS
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        return DEFAULT_SUPPLIERS, data
    return data.get("suppliers", DEFAULT_SUPPLIERS), data.get("products", [])


def seed(suppliers, products):
    db = SessionLocal()
    created = {"suppliers": 0, "products": 0}
    try:
        for s in suppliers:
            if not db.query(Supplier).filter(Supplier.name == s["name"]).first():
                db.add(Supplier(**s))
                created["suppliers"] += 1

        for entry in map(_normalize_product, products):
            if not entry["code"]:
                continue
            existing = db.query(Product).filter(Product.code == entry["code"]).first()
            if existing:
                existing.description = entry["description"]
                existing.unit_price = entry["unit_price"]
                existing.stock = entry["stock"]
            else:
                db.add(Product(**entry))
                created["products"] += 1

        db.commit()
        print("Seeded:", created)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", "-f", default=None, help="JSON file with suppliers/products")
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables first")
    args = parser.parse_args()
    if args.file and not os.path.exists(args.file):
        print("File not found:", args.file)
        sys.exit(1)
    init_db(reset=args.reset)
    seed(*load_source(args.file))
